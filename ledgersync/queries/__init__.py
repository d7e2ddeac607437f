"""Collection query package."""

from ledgersync.queries.summary import LedgerSummary, summarize

__all__ = ["LedgerSummary", "summarize"]

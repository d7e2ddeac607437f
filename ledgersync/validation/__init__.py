"""Draft validation package."""

from ledgersync.validation.validator import DraftValidator

__all__ = ["DraftValidator"]

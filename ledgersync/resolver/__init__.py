"""Reference resolution package."""

from ledgersync.resolver.entity_resolver import (
    PARENT_FIELDS,
    EntityResolver,
    ResolveError,
    ResolveErrorKind,
    normalize_label,
)
from ledgersync.resolver.recent import RecentReferenceStore, ReferenceOption

__all__ = [
    "EntityResolver",
    "PARENT_FIELDS",
    "RecentReferenceStore",
    "ReferenceOption",
    "ResolveError",
    "ResolveErrorKind",
    "normalize_label",
]

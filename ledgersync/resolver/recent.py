"""
Recently used references, persisted across sessions.

One bounded list per entity type, most recent first and deduplicated
by identifier. The file is shared by every resolver in the process and
by other processes; writes are last-writer-wins.
"""

import json
from pathlib import Path
from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError


logger = structlog.get_logger(__name__)


class ReferenceOption(BaseModel):
    """A selectable lookup-table record: its id and display label."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    label: str


class RecentReferenceStore:
    """
    JSON-file backed recent lists.

    Args:
        path: File holding {entity_type: [{id, label}, ...]}
        limit: How many options are stored per entity type
        visible: How many of those visible() returns
    """

    def __init__(self, path: Path, limit: int = 10, visible: int = 5):
        if visible > limit:
            raise ValueError(f"visible ({visible}) exceeds limit ({limit})")
        self._path = Path(path)
        self._limit = limit
        self._visible = visible

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, list[ReferenceOption]]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            return {
                entity_type: [ReferenceOption.model_validate(o) for o in options]
                for entity_type, options in raw.items()
            }
        except (OSError, ValueError, AttributeError, TypeError, ValidationError) as e:
            # An unreadable file only loses history
            logger.warning("recent_file_unreadable", path=str(self._path), error=str(e))
            return {}

    def _write(self, lists: dict[str, list[ReferenceOption]]) -> None:
        payload = {
            entity_type: [option.model_dump() for option in options]
            for entity_type, options in lists.items()
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning("recent_file_write_failed", path=str(self._path), error=str(e))

    def push(self, entity_type: str, option: ReferenceOption) -> list[ReferenceOption]:
        """Move `option` to the front of its list and persist. Returns the stored list."""
        lists = self._read()
        current = [o for o in lists.get(entity_type, []) if o.id != option.id]
        lists[entity_type] = [option, *current][:self._limit]
        self._write(lists)
        return list(lists[entity_type])

    def stored(self, entity_type: str) -> list[ReferenceOption]:
        return self._read().get(entity_type, [])

    def visible(self, entity_type: str) -> list[ReferenceOption]:
        return self.stored(entity_type)[:self._visible]

    def clear(self, entity_type: Optional[str] = None) -> None:
        """Forget one entity type's list, or all of them."""
        if entity_type is None:
            self._write({})
            return
        lists = self._read()
        if lists.pop(entity_type, None) is not None:
            self._write(lists)

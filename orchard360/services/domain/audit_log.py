"""
Domain service: append-only audit log and field-level diffs.
"""
from typing import Any, Iterable, Optional, Sequence, Tuple
from enum import Enum
from pydantic import BaseModel

from orchard360.domain.models import AuditEntity, AuditEntry
from orchard360.utils.timestamps import Clock, format_timestamp, new_id, utc_now

# Rendered in place of a value that did not exist before the write
NO_VALUE = "∅"

EVENT_DIFF_FIELDS = (
    "sector_id",
    "orchard_id",
    "block_id",
    "quantity",
    "status",
    "tce",
    "notes",
    "rootstock",
    "age",
)


def _render(value: Any) -> str:
    if value is None:
        return NO_VALUE
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def diff_fields(
    before: Optional[BaseModel],
    after: BaseModel,
    fields: Iterable[str],
) -> list[str]:
    """
    Compare two records field by field.
    
    Args:
        before: Prior record, or None when the record is new
        after: Record being written
        fields: Field names to compare
        
    Returns:
        One 'field: before → after' string per differing field, in the
        order the fields were given
    """
    changes = []
    for field in fields:
        old = getattr(before, field) if before is not None else None
        new = getattr(after, field)
        if old == new:
            continue
        changes.append(f"{field}: {_render(old)} → {_render(new)}")
    return changes


def diff_message(changes: Sequence[str]) -> str:
    return " | ".join(changes)


class AuditLog:
    """
    Append-only sequence of audit entries, most recent first.
    
    Entries are frozen models; the log exposes no way to edit or remove
    one once appended.
    """
    
    def __init__(
        self,
        entries: Iterable[AuditEntry] = (),
        clock: Clock = utc_now,
    ):
        self._entries: Tuple[AuditEntry, ...] = tuple(entries)
        self._clock = clock
    
    def __len__(self) -> int:
        return len(self._entries)
    
    def entries(self) -> Tuple[AuditEntry, ...]:
        """The whole sequence, most recent first."""
        return self._entries
    
    def build_entry(
        self,
        entity: AuditEntity,
        entity_id: str,
        message: str,
        who: str,
    ) -> AuditEntry:
        """Create (but do not append) a new entry stamped with the current time."""
        return AuditEntry(
            id=new_id(),
            at=format_timestamp(self._clock()),
            who=who,
            entity=entity,
            entity_id=entity_id,
            message=message,
        )
    
    def with_entries(self, new_entries: Sequence[AuditEntry]) -> Tuple[AuditEntry, ...]:
        """
        The sequence that appending `new_entries` would produce.
        
        `new_entries` are given oldest first and end up prepended, so the
        last one is the first of the result.
        """
        return tuple(reversed(new_entries)) + self._entries
    
    def commit(self, new_entries: Sequence[AuditEntry]) -> None:
        """Prepend `new_entries` (oldest first) once they are persisted."""
        self._entries = self.with_entries(new_entries)

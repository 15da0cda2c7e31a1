"""
Domain service: the entity store, source of truth for the inventory.

Holds sectors, orchards, blocks, tree events and the audit log, enforces
referential integrity on mutation and persists every change through a
storage provider. One store object is created per session and passed to
whoever needs it; there is no module-level instance.

Every mutation builds the new collection, persists it, and only then
swaps it into memory, so a failed save leaves the store unchanged. The
audit entry for a write is persisted afterwards as a separate save.

Mutations are serialized by a write lock held from the integrity checks
through the final swap, so concurrent requests never interleave inside
one write.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Optional, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as ModelValidationError

from orchard360.domain.errors import (
    ReferentialIntegrityError,
    StorageUnavailable,
    ValidationError,
)
from orchard360.domain.models import (
    AuditEntity,
    AuditEntry,
    Block,
    Orchard,
    Sector,
    TreeEvent,
)
from orchard360.infrastructure.api_constants import Collections
from orchard360.infrastructure.remote_storage import ExternalAPIError
from orchard360.infrastructure.storage import StorageProvider
from orchard360.services.domain.audit_log import (
    EVENT_DIFF_FIELDS,
    AuditLog,
    diff_fields,
    diff_message,
)
from orchard360.services.domain.master_data import MasterData
from orchard360.utils.timestamps import Clock, new_id, next_timestamp, utc_now

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

SECTOR_DIFF_FIELDS = ("name",)
ORCHARD_DIFF_FIELDS = ("sector_id", "name")
BLOCK_DIFF_FIELDS = (
    "orchard_id",
    "name",
    "variety",
    "structure_type",
    "row_count",
    "hectares",
    "latitude",
    "longitude",
    "health",
)

_MODELS: Dict[str, Type[BaseModel]] = {
    Collections.SECTORS: Sector,
    Collections.ORCHARDS: Orchard,
    Collections.BLOCKS: Block,
    Collections.EVENTS: TreeEvent,
}


class EntityStore:
    """
    In-memory entity collections backed by a storage provider.

    Create/update/delete operations exist for sectors, orchards and
    blocks; events are written with `upsert_event`/`upsert_events` and
    removed with `delete_event`. Updates use replace-by-id semantics: the
    whole record is replaced, or inserted when the id is unknown.
    """

    def __init__(
        self,
        provider: StorageProvider,
        clock: Clock = utc_now,
        actor: str = "system",
    ):
        """
        Initialize an empty store.

        Args:
            provider: Storage provider used for loads and saves
            clock: Source of "now" for timestamps
            actor: Default `who` for audit entries
        """
        self.provider = provider
        self.actor = actor
        self._clock = clock
        self._collections: Dict[str, Dict[str, BaseModel]] = {
            key: {} for key in _MODELS
        }
        self.audit = AuditLog(clock=clock)
        self.loading = False
        self._write_lock = asyncio.Lock()
        self._writer: Optional[asyncio.Task] = None

    @asynccontextmanager
    async def writing(self) -> AsyncIterator[None]:
        """
        Hold the store's write lock.

        Every mutation runs inside this block. A caller composing several
        mutations (such as a CSV import) can hold it around all of them;
        nested use from the task that already holds it does not block.
        """
        task = asyncio.current_task()
        if task is not None and self._writer is task:
            yield
            return
        async with self._write_lock:
            self._writer = task
            try:
                yield
            finally:
                self._writer = None

    # ------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------

    async def load(self) -> Dict[str, bool]:
        """
        Load every collection from the provider.

        Collections are fetched concurrently and independently; each one
        becomes visible as soon as it resolves. A collection that fails
        to load is left empty.

        Returns:
            Mapping of collection key to whether it loaded
        """
        self.loading = True
        try:
            results = await asyncio.gather(
                *(self._load_collection(key) for key in Collections.ALL)
            )
        finally:
            self.loading = False

        outcome = dict(zip(Collections.ALL, results))
        logger.info(
            f"Store loaded: {len(self.sectors())} sectors, {len(self.orchards())} orchards, "
            f"{len(self.blocks())} blocks, {len(self.events())} events, "
            f"{len(self.audit)} audit entries"
        )
        return outcome

    async def _load_collection(self, key: str) -> bool:
        try:
            records = await self.provider.load(key)
        except (StorageUnavailable, ExternalAPIError) as e:
            logger.warning(f"Collection '{key}' unavailable, continuing with it empty: {e}")
            return False

        if key == Collections.AUDIT:
            entries = self._parse_records(key, AuditEntry, records)
            self.audit = AuditLog(entries, clock=self._clock)
        else:
            models = self._parse_records(key, _MODELS[key], records)
            self._collections[key] = {m.id: m for m in models}
        return True

    @staticmethod
    def _parse_records(
        key: str,
        model: Type[ModelT],
        records: Iterable[dict],
    ) -> List[ModelT]:
        parsed = []
        for record in records:
            try:
                parsed.append(model.model_validate(record))
            except ModelValidationError as e:
                logger.warning(f"Skipping malformed record in '{key}': {e.error_count()} error(s)")
        return parsed

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------

    def sectors(self) -> List[Sector]:
        return list(self._collections[Collections.SECTORS].values())

    def orchards(self) -> List[Orchard]:
        return list(self._collections[Collections.ORCHARDS].values())

    def blocks(self) -> List[Block]:
        return list(self._collections[Collections.BLOCKS].values())

    def events(self) -> List[TreeEvent]:
        return list(self._collections[Collections.EVENTS].values())

    def audit_entries(self) -> Tuple[AuditEntry, ...]:
        return self.audit.entries()

    def get_sector(self, sector_id: str) -> Optional[Sector]:
        return self._collections[Collections.SECTORS].get(sector_id)

    def get_orchard(self, orchard_id: str) -> Optional[Orchard]:
        return self._collections[Collections.ORCHARDS].get(orchard_id)

    def get_block(self, block_id: str) -> Optional[Block]:
        return self._collections[Collections.BLOCKS].get(block_id)

    def get_event(self, event_id: str) -> Optional[TreeEvent]:
        return self._collections[Collections.EVENTS].get(event_id)

    def master_data(self) -> MasterData:
        """Snapshot of sectors, orchards and blocks for derived views."""
        return MasterData(
            sectors=dict(self._collections[Collections.SECTORS]),
            orchards=dict(self._collections[Collections.ORCHARDS]),
            blocks=dict(self._collections[Collections.BLOCKS]),
        )

    def is_empty(self) -> bool:
        return not any(self._collections.values())

    # ------------------------------------------------------------
    # Sectors
    # ------------------------------------------------------------

    async def create_sector(self, sector: Sector, who: Optional[str] = None) -> Sector:
        """Insert `sector` under a freshly generated id."""
        return await self.update_sector(new_id(), sector, who=who)

    async def update_sector(
        self, sector_id: str, sector: Sector, who: Optional[str] = None
    ) -> Sector:
        """Replace (or insert) the sector stored under `sector_id`."""
        record = sector.model_copy(update={"id": sector_id})
        self._require_name(record.name, "Sector")
        async with self.writing():
            return await self._put_master(
                Collections.SECTORS, AuditEntity.SECTOR, record, SECTOR_DIFF_FIELDS, who
            )

    async def delete_sector(self, sector_id: str, who: Optional[str] = None) -> bool:
        """
        Delete a sector.

        Raises:
            ReferentialIntegrityError: If any orchard belongs to the sector
        """
        async with self.writing():
            dependents = [o for o in self.orchards() if o.sector_id == sector_id]
            return await self._delete_master(
                Collections.SECTORS, AuditEntity.SECTOR, sector_id, dependents, "orchard", who
            )

    # ------------------------------------------------------------
    # Orchards
    # ------------------------------------------------------------

    async def create_orchard(self, orchard: Orchard, who: Optional[str] = None) -> Orchard:
        """Insert `orchard` under a freshly generated id."""
        return await self.update_orchard(new_id(), orchard, who=who)

    async def update_orchard(
        self, orchard_id: str, orchard: Orchard, who: Optional[str] = None
    ) -> Orchard:
        """
        Replace (or insert) the orchard stored under `orchard_id`.

        Raises:
            ValidationError: If the name is empty or the sector does not exist
        """
        record = orchard.model_copy(update={"id": orchard_id})
        self._require_name(record.name, "Orchard")
        async with self.writing():
            if self.get_sector(record.sector_id) is None:
                raise ValidationError(f"Sector '{record.sector_id}' does not exist")
            return await self._put_master(
                Collections.ORCHARDS, AuditEntity.ORCHARD, record, ORCHARD_DIFF_FIELDS, who
            )

    async def delete_orchard(self, orchard_id: str, who: Optional[str] = None) -> bool:
        """
        Delete an orchard.

        Raises:
            ReferentialIntegrityError: If any block belongs to the orchard
        """
        async with self.writing():
            dependents = [b for b in self.blocks() if b.orchard_id == orchard_id]
            return await self._delete_master(
                Collections.ORCHARDS, AuditEntity.ORCHARD, orchard_id, dependents, "block", who
            )

    # ------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------

    async def create_block(self, block: Block, who: Optional[str] = None) -> Block:
        """Insert `block` under a freshly generated id."""
        return await self.update_block(new_id(), block, who=who)

    async def update_block(
        self, block_id: str, block: Block, who: Optional[str] = None
    ) -> Block:
        """
        Replace (or insert) the block stored under `block_id`.

        Raises:
            ValidationError: If the name is empty or the orchard does not exist
        """
        record = block.model_copy(update={"id": block_id})
        self._require_name(record.name, "Block")
        async with self.writing():
            if self.get_orchard(record.orchard_id) is None:
                raise ValidationError(f"Orchard '{record.orchard_id}' does not exist")
            return await self._put_master(
                Collections.BLOCKS, AuditEntity.BLOCK, record, BLOCK_DIFF_FIELDS, who
            )

    async def delete_block(self, block_id: str, who: Optional[str] = None) -> bool:
        """
        Delete a block.

        Raises:
            ReferentialIntegrityError: If any event references the block
        """
        async with self.writing():
            dependents = [e for e in self.events() if e.block_id == block_id]
            return await self._delete_master(
                Collections.BLOCKS, AuditEntity.BLOCK, block_id, dependents, "event", who
            )

    # ------------------------------------------------------------
    # Events
    # ------------------------------------------------------------

    async def upsert_event(self, event: TreeEvent, who: Optional[str] = None) -> TreeEvent:
        """
        Save an event (replace-by-id, insert when new).

        Validation runs before the timestamp refresh and before any audit
        entry is produced. On success `last_updated` is refreshed to now
        (strictly after the prior value) and, when any tracked field
        changed, exactly one audit entry is appended.

        Args:
            event: Event to save; an empty id is replaced by a fresh one
            who: Actor recorded on the audit entry

        Returns:
            The stored event

        Raises:
            ValidationError: If a scope id is empty or quantity is missing/negative
        """
        stored = await self.upsert_events([event], who=who)
        return stored[0]

    async def upsert_events(
        self, events: Sequence[TreeEvent], who: Optional[str] = None
    ) -> List[TreeEvent]:
        """
        Save several events as one write.

        Every event is validated before anything changes, so a rejected
        batch applies nothing. The events collection is then persisted
        once, followed by one audit save for all resulting entries.

        Raises:
            ValidationError: If any event fails validation
        """
        for position, event in enumerate(events, start=1):
            try:
                self._validate_event(event)
            except ValidationError as e:
                if len(events) == 1:
                    raise
                raise ValidationError(f"Event {position}: {e.message}") from e

        async with self.writing():
            working = dict(self._collections[Collections.EVENTS])
            stored: List[TreeEvent] = []
            pending_audit: List[AuditEntry] = []

            for event in events:
                event_id = event.id or new_id()
                prior = working.get(event_id)
                record = event.model_copy(update={
                    "id": event_id,
                    "last_updated": next_timestamp(
                        prior.last_updated if prior else None, clock=self._clock
                    ),
                })
                working[event_id] = record
                stored.append(record)

                changes = diff_fields(prior, record, EVENT_DIFF_FIELDS)
                if changes:
                    pending_audit.append(self.audit.build_entry(
                        AuditEntity.TREE, event_id, diff_message(changes), who or self.actor
                    ))

            await self._commit(Collections.EVENTS, working)
            logger.info(f"Saved {len(stored)} event(s), {len(pending_audit)} with changes")
            await self._append_audit(pending_audit)
        return stored

    async def delete_event(self, event_id: str, who: Optional[str] = None) -> bool:
        """Hard-delete an event. Returns False when the id is unknown."""
        async with self.writing():
            working = dict(self._collections[Collections.EVENTS])
            if working.pop(event_id, None) is None:
                return False

            await self._commit(Collections.EVENTS, working)
            logger.info(f"Deleted event {event_id}")
            await self._append_audit([
                self.audit.build_entry(AuditEntity.TREE, event_id, "deleted", who or self.actor)
            ])
        return True

    @staticmethod
    def _validate_event(event: TreeEvent) -> None:
        if not event.sector_id:
            raise ValidationError("Sector is required")
        if not event.orchard_id:
            raise ValidationError("Orchard is required")
        if not event.block_id:
            raise ValidationError("Block is required")
        if event.quantity is None or event.quantity < 0:
            raise ValidationError("Quantity must be zero or greater")

    # ------------------------------------------------------------
    # Shared write path
    # ------------------------------------------------------------

    @staticmethod
    def _require_name(name: str, kind: str) -> None:
        if not name or not name.strip():
            raise ValidationError(f"{kind} name is required")

    async def _put_master(
        self,
        key: str,
        entity: AuditEntity,
        record: ModelT,
        fields: Sequence[str],
        who: Optional[str],
    ) -> ModelT:
        working = dict(self._collections[key])
        prior = working.get(record.id)
        working[record.id] = record

        await self._commit(key, working)
        logger.info(f"{'Updated' if prior else 'Created'} {entity.value} {record.id}")

        changes = diff_fields(prior, record, fields)
        if changes:
            await self._append_audit([
                self.audit.build_entry(entity, record.id, diff_message(changes), who or self.actor)
            ])
        return record

    async def _delete_master(
        self,
        key: str,
        entity: AuditEntity,
        entity_id: str,
        dependents: Sequence[BaseModel],
        dependent_kind: str,
        who: Optional[str],
    ) -> bool:
        if dependents:
            logger.warning(
                f"Refusing to delete {entity.value} {entity_id}: "
                f"{len(dependents)} {dependent_kind}(s) still reference it"
            )
            raise ReferentialIntegrityError(
                f"Cannot delete {entity.value}: {len(dependents)} {dependent_kind}(s) still reference it",
                entity=entity.value,
                entity_id=entity_id,
                dependents=len(dependents),
            )

        working = dict(self._collections[key])
        if working.pop(entity_id, None) is None:
            return False

        await self._commit(key, working)
        logger.info(f"Deleted {entity.value} {entity_id}")
        await self._append_audit([
            self.audit.build_entry(entity, entity_id, "deleted", who or self.actor)
        ])
        return True

    async def _commit(self, key: str, working: Dict[str, BaseModel]) -> None:
        """Persist a whole collection, then make it the live one."""
        await self._save(key, [m.model_dump(mode="json") for m in working.values()])
        self._collections[key] = working

    async def _append_audit(self, entries: Sequence[AuditEntry]) -> None:
        if not entries:
            return
        records = [
            e.model_dump(mode="json")
            for e in self.audit.with_entries(entries)
        ]
        await self._save(Collections.AUDIT, records)
        self.audit.commit(entries)

    async def _save(self, key: str, records: List[dict]) -> None:
        try:
            await self.provider.save(key, records)
        except ExternalAPIError as e:
            logger.error(f"Remote save of '{key}' failed: {e.message}")
            raise StorageUnavailable(
                f"Could not save {key}: {e.message}", collection=key
            ) from e

"""
Application service: CSV export and import orchestration.

Coordinates the CSV codec with the entity store. No CSV rules live here;
this layer resolves names to ids, creates missing master records and
merges the resulting events by id.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from orchard360.domain.models import (
    Block,
    EventStatus,
    LegacyTreeStatus,
    Orchard,
    Sector,
    TreeEvent,
)
from orchard360.services.domain.csv_codec import (
    CsvDocument,
    CsvRecord,
    encode_events,
    export_filename,
    parse_csv,
)
from orchard360.services.domain.entity_store import EntityStore
from orchard360.services.domain.event_filter import EventFilter, filter_events
from orchard360.utils.timestamps import Clock, new_id, utc_now

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "Unknown"

# Legacy per-tree statuses with an event counterpart; OK/Attention have none
LEGACY_STATUS_MAP = {
    LegacyTreeStatus.NEW.value: EventStatus.NEW_PLANTING,
    LegacyTreeStatus.REMOVED.value: EventStatus.REMOVED,
}


@dataclass
class SkippedRow:
    line: int
    reason: str


@dataclass
class ImportReport:
    """Outcome of one CSV import."""
    events_created: int = 0
    events_updated: int = 0
    sectors_created: int = 0
    orchards_created: int = 0
    blocks_created: int = 0
    legacy_format: bool = False
    skipped: List[SkippedRow] = field(default_factory=list)


class CsvTransferService:
    """
    Application service for CSV export/import.

    Export can cover the whole store or a filtered subset. Import parses
    the text (failing only when there is no header), re-resolves sector,
    orchard and block names to ids, and merges events by id in a single
    store write.
    """

    def __init__(
        self,
        store: EntityStore,
        filename_prefix: str = "orchard360_export",
        clock: Clock = utc_now,
    ):
        """
        Initialize the service with dependencies.

        Args:
            store: Entity store to export from and import into
            filename_prefix: Prefix for export file names
            clock: Source of "now" for file names and default timestamps
        """
        self.store = store
        self.filename_prefix = filename_prefix
        self.clock = clock

    def export_csv(self, criteria: Optional[EventFilter] = None) -> Tuple[str, str]:
        """
        Export events to CSV.

        Args:
            criteria: Optional filter; the whole store is exported without one

        Returns:
            Tuple of (file name, CSV text)
        """
        master = self.store.master_data()
        events = self.store.events()
        if criteria is not None and not criteria.is_unfiltered:
            events = filter_events(events, criteria, master)

        logger.info(f"Exporting {len(events)} event(s) to CSV")
        return export_filename(self.filename_prefix, self.clock), encode_events(events, master)

    async def import_csv(self, text: str, who: Optional[str] = None) -> ImportReport:
        """
        Import CSV text into the store.

        This method orchestrates:
        1. Parsing the text (ParseError when there is no header)
        2. Mapping each row's status and quantity, skipping rows that
           cannot become events
        3. Resolving names to ids, queuing missing sectors/orchards/blocks
        4. Saving the queued master records, then merging all events by
           id in one write

        The store's write lock is held from name resolution to the event
        write, so no other request can change the hierarchy in between.
        Nothing is written until every row has been resolved.

        Args:
            text: CSV text in the export or legacy format
            who: Actor recorded on audit entries

        Returns:
            ImportReport describing what changed and what was skipped

        Raises:
            ParseError: If the text cannot be split into a header and rows
        """
        document = parse_csv(text, clock=self.clock)
        report = ImportReport(legacy_format=document.is_legacy)

        accepted: List[Tuple[CsvRecord, EventStatus, int]] = []
        for record in document.records:
            status = self._map_status(record.status)
            if status is None:
                report.skipped.append(SkippedRow(
                    record.line, f"Status '{record.status}' has no tree event equivalent"
                ))
                continue
            quantity = self._quantity(record, document)
            if quantity < 0:
                report.skipped.append(SkippedRow(record.line, "Quantity must be zero or greater"))
                continue
            accepted.append((record, status, quantity))

        async with self.store.writing():
            resolver = _NameResolver(self.store)
            events = []
            seen = set()
            for record, status, quantity in accepted:
                sector_id, orchard_id, block_id = resolver.resolve(record)
                if record.id not in seen:
                    if self.store.get_event(record.id) is None:
                        report.events_created += 1
                    else:
                        report.events_updated += 1
                    seen.add(record.id)
                events.append(TreeEvent(
                    id=record.id,
                    sector_id=sector_id,
                    orchard_id=orchard_id,
                    block_id=block_id,
                    quantity=quantity,
                    status=status,
                    tce=record.tce,
                    rootstock=record.rootstock,
                    notes=record.notes,
                    age=record.age,
                    last_updated=record.last_updated,
                ))

            if events:
                await resolver.save_pending(report, who)
                await self.store.upsert_events(events, who=who)

        logger.info(
            f"Imported {len(events)} row(s): {report.events_created} new, "
            f"{report.events_updated} updated, {len(report.skipped)} skipped"
        )
        return report


    @staticmethod
    def _map_status(value: str) -> Optional[EventStatus]:
        try:
            return EventStatus(value)
        except ValueError:
            return LEGACY_STATUS_MAP.get(value)

    @staticmethod
    def _quantity(record: CsvRecord, document: CsvDocument) -> int:
        # A legacy row describes a single tree
        return record.quantity if document.has_quantity else 1




class _NameResolver:
    """
    Resolves sector/orchard/block names to ids.

    Names with no match get a fresh id and a queued record; nothing is
    written until `save_pending`.
    """

    def __init__(self, store: EntityStore):
        self.store = store
        self.sectors: Dict[str, str] = {}
        self.orchards: Dict[Tuple[str, str], str] = {}
        self.blocks: Dict[Tuple[str, str], str] = {}
        self.pending_sectors: List[Sector] = []
        self.pending_orchards: List[Orchard] = []
        self.pending_blocks: List[Block] = []
        for sector in store.sectors():
            self.sectors.setdefault(sector.name, sector.id)
        for orchard in store.orchards():
            self.orchards.setdefault((orchard.sector_id, orchard.name), orchard.id)
        for block in store.blocks():
            self.blocks.setdefault((block.orchard_id, block.name), block.id)

    def resolve(self, record: CsvRecord) -> Tuple[str, str, str]:
        sector_name = record.sector or UNKNOWN_NAME
        sector_id = self.sectors.get(sector_name)
        if sector_id is None:
            sector = Sector(id=new_id(), name=sector_name)
            self.pending_sectors.append(sector)
            sector_id = self.sectors[sector_name] = sector.id

        orchard_name = record.orchard or UNKNOWN_NAME
        orchard_id = self.orchards.get((sector_id, orchard_name))
        if orchard_id is None:
            orchard = Orchard(id=new_id(), sector_id=sector_id, name=orchard_name)
            self.pending_orchards.append(orchard)
            orchard_id = self.orchards[(sector_id, orchard_name)] = orchard.id

        block_name = record.block or UNKNOWN_NAME
        block_id = self.blocks.get((orchard_id, block_name))
        if block_id is None:
            block = self._new_block(record, orchard_id, block_name)
            self.pending_blocks.append(block)
            block_id = self.blocks[(orchard_id, block_name)] = block.id

        return sector_id, orchard_id, block_id

    async def save_pending(self, report: ImportReport, who: Optional[str]) -> None:
        """Write queued master records, parents before children."""
        for sector in self.pending_sectors:
            await self.store.update_sector(sector.id, sector, who=who)
            report.sectors_created += 1
        for orchard in self.pending_orchards:
            await self.store.update_orchard(orchard.id, orchard, who=who)
            report.orchards_created += 1
        for block in self.pending_blocks:
            await self.store.update_block(block.id, block, who=who)
            report.blocks_created += 1

    @staticmethod
    def _new_block(record: CsvRecord, orchard_id: str, name: str) -> Block:
        has_gps = record.latitude is not None and record.longitude is not None
        health = record.block_health
        return Block(
            id=new_id(),
            orchard_id=orchard_id,
            name=name,
            variety=record.variety,
            structure_type=record.structure_type,
            row_count=record.row_count,
            hectares=record.hectares,
            latitude=record.latitude if has_gps else None,
            longitude=record.longitude if has_gps else None,
            health=None if health is None else max(0.0, min(100.0, health)),
        )

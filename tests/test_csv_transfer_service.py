"""
Tests for CSV export/import orchestration against a real store.

Tests cover:
- Full and filtered export
- Merge-by-id import
- Name re-resolution and creation of missing master data
- Legacy flat-format import
- Import failures applying nothing
"""
import asyncio

import pytest

from orchard360.domain.errors import ParseError, ReferentialIntegrityError
from orchard360.domain.models import EventStatus, Orchard, Sector
from orchard360.infrastructure.storage import LocalStorageProvider
from orchard360.services.application.csv_transfer_service import CsvTransferService
from orchard360.services.domain.csv_codec import EXPORT_COLUMNS, LEGACY_COLUMNS, parse_csv
from orchard360.services.domain.entity_store import EntityStore
from orchard360.services.domain.event_filter import EventFilter

HEADER = ",".join(EXPORT_COLUMNS)


class RecordingProvider(LocalStorageProvider):
    """File provider that logs each save and yields before writing."""

    def __init__(self, data_dir):
        super().__init__(data_dir)
        self.writes = []

    async def save(self, collection_key, records):
        await asyncio.sleep(0.01)
        self.writes.append(collection_key)
        await super().save(collection_key, records)


@pytest.fixture
def transfer(store, clock) -> CsvTransferService:
    return CsvTransferService(store, filename_prefix="orchard360_export", clock=clock)


# ============================================================
# Export Tests
# ============================================================

class TestExport:
    """Tests for CSV export."""

    @pytest.mark.asyncio
    async def test_export_whole_store(self, populated_store, transfer):
        filename, text = transfer.export_csv()

        document = parse_csv(text)
        assert filename.startswith("orchard360_export_")
        assert filename.endswith(".csv")
        assert sorted(r.quantity for r in document.records) == [18, 19]
        assert {r.block for r in document.records} == {"B3"}

    @pytest.mark.asyncio
    async def test_export_filtered_subset(self, populated_store, transfer):
        _, text = transfer.export_csv(EventFilter(status="Grafted"))

        document = parse_csv(text)
        assert [r.id for r in document.records] == [populated_store.grafted.id]


# ============================================================
# Import Tests
# ============================================================

class TestImport:
    """Tests for CSV import."""

    @pytest.mark.asyncio
    async def test_import_replaces_existing_id(self, populated_store, transfer):
        store = populated_store.store
        event_id = populated_store.kneecapped.id
        text = f"{HEADER}\n{event_id},North,Tutaekuri,B3,Kneecapped,25,,Recounted,,,,,,,,\n"

        report = await transfer.import_csv(text)

        assert report.events_updated == 1
        assert report.events_created == 0
        assert report.sectors_created == report.orchards_created == report.blocks_created == 0
        stored = store.get_event(event_id)
        assert stored.quantity == 25
        assert stored.notes == "Recounted"
        assert stored.block_id == populated_store.block.id
        assert len(store.events()) == 2

    @pytest.mark.asyncio
    async def test_blank_id_gets_fresh_distinct_id(self, populated_store, transfer):
        store = populated_store.store
        existing = {e.id for e in store.events()}
        text = f"{HEADER}\n,North,Tutaekuri,B3,New Planting,12,,,,,,,,,,\n"

        report = await transfer.import_csv(text)

        assert report.events_created == 1
        new_ids = {e.id for e in store.events()} - existing
        assert len(new_ids) == 1
        assert new_ids.isdisjoint(existing)

    @pytest.mark.asyncio
    async def test_missing_master_data_created_by_name(self, store, transfer):
        text = (
            f"{HEADER}\n"
            "e-1,Coast,Haumoana,H1,Replanting,40,0.5,,,Envy,Vertical Axis,10,1.2,-39.6,176.9,91\n"
            "e-2,Coast,Haumoana,H1,Removed,3,,,,,,,,,,\n"
        )

        report = await transfer.import_csv(text)

        assert (report.sectors_created, report.orchards_created, report.blocks_created) == (1, 1, 1)
        block = store.blocks()[0]
        assert block.name == "H1"
        assert block.variety == "Envy"
        assert block.row_count == 10
        assert (block.latitude, block.longitude) == (-39.6, 176.9)
        assert block.health == 91
        assert {e.block_id for e in store.events()} == {block.id}

    @pytest.mark.asyncio
    async def test_export_then_import_into_empty_store(self, populated_store, transfer, clock, tmp_path):
        _, text = transfer.export_csv()
        fresh = EntityStore(LocalStorageProvider(tmp_path / "other"), clock=clock)

        report = await CsvTransferService(fresh, clock=clock).import_csv(text)

        assert report.events_created == 2
        assert [s.name for s in fresh.sectors()] == ["North"]
        assert sorted(e.quantity for e in fresh.events()) == [18, 19]
        assert {e.status for e in fresh.events()} == {EventStatus.KNEECAPPED, EventStatus.GRAFTED}

    @pytest.mark.asyncio
    async def test_legacy_import(self, store, transfer):
        header = ",".join(LEGACY_COLUMNS)
        text = (
            f"{header}\n"
            "t-1,Puketapu,A2,1,1,Pink Lady,MM106,6,95,0.52,,New,,,\n"
            "t-2,Clive,Q1,7,4,Envy,M26,3,0,0,Removed winter 2024,Removed,,,\n"
            "t-3,Clive,Q1,7,3,Envy,M26,3,77,0.38,Trunk rub,Attention,,,\n"
        )

        report = await transfer.import_csv(text)

        assert report.legacy_format
        assert report.events_created == 2
        assert [s.line for s in report.skipped] == [4]
        assert [s.name for s in store.sectors()] == ["Unknown"]
        t1 = store.get_event("t-1")
        assert t1.status == EventStatus.NEW_PLANTING
        assert t1.quantity == 1
        assert t1.rootstock == "MM106"
        assert store.get_event("t-2").status == EventStatus.REMOVED

    @pytest.mark.asyncio
    async def test_negative_quantity_row_skipped(self, store, transfer):
        text = f"{HEADER}\ne-1,North,Tutaekuri,B3,Grafted,-2,,,,,,,,,,\n"

        report = await transfer.import_csv(text)

        assert report.skipped[0].reason == "Quantity must be zero or greater"
        assert store.events() == []
        assert store.sectors() == []

    @pytest.mark.asyncio
    async def test_unparseable_text_applies_nothing(self, populated_store, transfer):
        store = populated_store.store
        before = (store.events(), store.audit_entries())

        with pytest.raises(ParseError):
            await transfer.import_csv("   ")

        assert (store.events(), store.audit_entries()) == before

    @pytest.mark.asyncio
    async def test_import_writes_audit_entries(self, populated_store, transfer):
        store = populated_store.store
        count = len(store.audit_entries())
        event_id = populated_store.grafted.id
        text = f"{HEADER}\n{event_id},North,Tutaekuri,B3,Grafted,21,,,,,,,,,,\n"

        await transfer.import_csv(text, who="importer")

        latest = store.audit_entries()[0]
        assert len(store.audit_entries()) == count + 1
        assert latest.who == "importer"
        assert latest.message == "quantity: 19 → 21"


# ============================================================
# Import Write Ordering Tests
# ============================================================

class TestImportWrites:
    """Tests for how an import reaches storage."""

    @pytest.fixture
    def recording_store(self, tmp_path, clock):
        provider = RecordingProvider(tmp_path / "recorded")
        return EntityStore(provider, clock=clock), provider

    @pytest.mark.asyncio
    async def test_masters_saved_before_events(self, recording_store, clock):
        store, provider = recording_store
        text = (
            f"{HEADER}\n"
            "e-1,Coast,Haumoana,H1,Replanting,40,,,,,,,,,,\n"
            "e-2,Coast,Haumoana,H2,Grafted,3,,,,,,,,,,\n"
        )

        await CsvTransferService(store, clock=clock).import_csv(text)

        data_writes = [key for key in provider.writes if key != "audit"]
        assert data_writes == ["sectors", "orchards", "blocks", "blocks", "events"]

    @pytest.mark.asyncio
    async def test_delete_during_import_sees_new_block(self, recording_store, clock):
        store, _ = recording_store
        sector = await store.create_sector(Sector(name="North"))
        orchard = await store.create_orchard(Orchard(sector_id=sector.id, name="Tutaekuri"))
        text = f"{HEADER}\ne-1,North,Tutaekuri,B9,Grafted,3,,,,,,,,,,\n"

        results = await asyncio.gather(
            CsvTransferService(store, clock=clock).import_csv(text),
            store.delete_orchard(orchard.id),
            return_exceptions=True,
        )

        assert isinstance(results[1], ReferentialIntegrityError)
        assert [b.name for b in store.blocks()] == ["B9"]
        assert store.get_orchard(orchard.id) is not None

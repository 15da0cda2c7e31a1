"""
Shared pytest fixtures for all tests.

This module provides common fixtures including:
- A deterministic clock
- Sample master data and events (North → Tutaekuri → B3)
- An entity store over local file storage
- FastAPI test client bound to that store
"""
import pytest
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from fastapi.testclient import TestClient

from orchard360.main import app
from orchard360.api.dependencies import get_store
from orchard360.domain.models import Block, EventStatus, Orchard, Sector, TreeEvent
from orchard360.infrastructure.storage import LocalStorageProvider
from orchard360.services.domain.entity_store import EntityStore
from orchard360.services.domain.master_data import MasterData


class TickingClock:
    """Clock that moves forward by `step` on every call."""
    
    def __init__(self, start: datetime, step: timedelta = timedelta(seconds=1)):
        self.now = start
        self.step = step
    
    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


# ============================================================
# Clock & Storage Fixtures
# ============================================================

@pytest.fixture
def clock() -> TickingClock:
    return TickingClock(datetime(2024, 5, 1, 8, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def provider(tmp_path) -> LocalStorageProvider:
    return LocalStorageProvider(tmp_path / "data")


@pytest.fixture
def store(provider, clock) -> EntityStore:
    """Empty store over file storage in a temporary directory."""
    return EntityStore(provider, clock=clock, actor="tester")


# ============================================================
# Sample Data Fixtures
# ============================================================

@pytest.fixture
def sample_master() -> MasterData:
    """Two sectors, two orchards and two blocks with fixed ids."""
    return MasterData.from_lists(
        sectors=[
            Sector(id="s-north", name="North"),
            Sector(id="s-south", name="South"),
        ],
        orchards=[
            Orchard(id="o-tut", sector_id="s-north", name="Tutaekuri"),
            Orchard(id="o-clive", sector_id="s-south", name="Clive"),
        ],
        blocks=[
            Block(
                id="b-b3", orchard_id="o-tut", name="B3", variety="Jazz",
                structure_type="2D Planar", row_count=24, hectares=2.4,
                latitude=-39.5903, longitude=176.8506, health=88,
            ),
            Block(
                id="b-q1", orchard_id="o-clive", name="Q1", variety="Envy",
                structure_type="Vertical Axis", row_count=16, hectares=1.6, health=76,
            ),
        ],
    )


@pytest.fixture
def sample_events() -> list[TreeEvent]:
    """Kneecapped 18 and Grafted 19 in B3, Removed 4 in Q1."""
    return [
        TreeEvent(
            id="e-1", sector_id="s-north", orchard_id="o-tut", block_id="b-b3",
            quantity=18, status=EventStatus.KNEECAPPED, tce=0.45,
            notes="Slight mite pressure", last_updated="2024-05-01T08:00:01.000Z",
        ),
        TreeEvent(
            id="e-2", sector_id="s-north", orchard_id="o-tut", block_id="b-b3",
            quantity=19, status=EventStatus.GRAFTED, tce=0.48,
            last_updated="2024-05-01T08:00:02.000Z",
        ),
        TreeEvent(
            id="e-3", sector_id="s-south", orchard_id="o-clive", block_id="b-q1",
            quantity=4, status=EventStatus.REMOVED, notes="Removed winter 2024",
            last_updated="2024-05-01T08:00:03.000Z",
        ),
    ]


@pytest.fixture
async def populated_store(store) -> SimpleNamespace:
    """Store holding North → Tutaekuri → B3 (Jazz) with two events."""
    north = await store.create_sector(Sector(name="North"))
    tutaekuri = await store.create_orchard(Orchard(sector_id=north.id, name="Tutaekuri"))
    b3 = await store.create_block(Block(
        orchard_id=tutaekuri.id, name="B3", variety="Jazz", structure_type="2D Planar",
        row_count=24, hectares=2.4, health=88,
    ))
    kneecapped = await store.upsert_event(TreeEvent(
        sector_id=north.id, orchard_id=tutaekuri.id, block_id=b3.id,
        quantity=18, status=EventStatus.KNEECAPPED,
    ))
    grafted = await store.upsert_event(TreeEvent(
        sector_id=north.id, orchard_id=tutaekuri.id, block_id=b3.id,
        quantity=19, status=EventStatus.GRAFTED,
    ))
    return SimpleNamespace(
        store=store,
        sector=north,
        orchard=tutaekuri,
        block=b3,
        kneecapped=kneecapped,
        grafted=grafted,
    )


# ============================================================
# FastAPI Test Client Fixtures
# ============================================================

@pytest.fixture
def test_client(store) -> TestClient:
    """Synchronous test client bound to the temporary store."""
    app.dependency_overrides[get_store] = lambda: store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()

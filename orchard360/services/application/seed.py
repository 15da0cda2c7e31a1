"""
Application service: demo data for an empty store.
"""
import logging

from orchard360.domain.models import Block, EventStatus, Orchard, Sector, TreeEvent
from orchard360.services.domain.entity_store import EntityStore

logger = logging.getLogger(__name__)


async def seed_demo_data(store: EntityStore) -> bool:
    """
    Seed a small two-sector hierarchy when the store holds nothing.

    Returns:
        True when data was seeded
    """
    if not store.is_empty():
        return False

    north = await store.create_sector(Sector(id="", name="North"))
    south = await store.create_sector(Sector(id="", name="South"))

    tutaekuri = await store.create_orchard(Orchard(id="", sector_id=north.id, name="Tutaekuri"))
    clive = await store.create_orchard(Orchard(id="", sector_id=south.id, name="Clive"))

    b3 = await store.create_block(Block(
        id="", orchard_id=tutaekuri.id, name="B3", variety="Jazz",
        structure_type="2D Planar", row_count=24, hectares=2.4,
        latitude=-39.5903, longitude=176.8506, health=88,
    ))
    q1 = await store.create_block(Block(
        id="", orchard_id=clive.id, name="Q1", variety="Envy",
        structure_type="Vertical Axis", row_count=16, hectares=1.6, health=77,
    ))

    await store.upsert_events([
        TreeEvent(
            id="", sector_id=north.id, orchard_id=tutaekuri.id, block_id=b3.id,
            quantity=18, status=EventStatus.KNEECAPPED, tce=0.45, rootstock="M9",
            age=5, notes="Slight mite pressure",
        ),
        TreeEvent(
            id="", sector_id=north.id, orchard_id=tutaekuri.id, block_id=b3.id,
            quantity=19, status=EventStatus.GRAFTED, tce=0.48, rootstock="M9", age=5,
        ),
        TreeEvent(
            id="", sector_id=south.id, orchard_id=clive.id, block_id=q1.id,
            quantity=4, status=EventStatus.REMOVED, rootstock="M26", age=3,
            notes="Removed winter 2024",
        ),
    ])

    logger.info("Seeded demo hierarchy into empty store")
    return True

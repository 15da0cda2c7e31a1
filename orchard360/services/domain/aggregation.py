"""
Domain service: per-block rollups of tree events.

Groups an (already filtered) event set by block and derives the totals
shown in block views and on the dashboard.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, List

from orchard360.domain.models import Block, EventStatus, TreeEvent
from orchard360.services.domain.master_data import MasterData

logger = logging.getLogger(__name__)


@dataclass
class BlockGroup:
    """All events of one block, with their rollups."""
    block: Block
    sector_id: str
    orchard_id: str
    events: List[TreeEvent] = field(default_factory=list)
    total_qty: int = 0
    last_updated: str = ""


@dataclass
class InventorySummary:
    """Dashboard figures for a set of events."""
    event_count: int
    total_quantity: int
    block_count: int
    average_health: int
    removals: int


def aggregate_by_block(
    events: Iterable[TreeEvent],
    master: MasterData,
) -> List[BlockGroup]:
    """
    Group events by block.
    
    Each group takes its sector/orchard ids from the first event seen for
    the block rather than from the block record, since master data edits
    may lag behind the events. Events whose block no longer exists are
    dropped.
    
    Args:
        events: Events to group
        master: Master data used to resolve blocks and names
        
    Returns:
        Groups sorted by sector, orchard and block name (unresolved names
        sort as empty strings)
    """
    groups: dict[str, BlockGroup] = {}
    orphans = 0
    
    for event in events:
        block = master.block(event.block_id)
        if block is None:
            orphans += 1
            continue
        
        group = groups.get(event.block_id)
        if group is None:
            group = BlockGroup(
                block=block,
                sector_id=event.sector_id,
                orchard_id=event.orchard_id,
            )
            groups[event.block_id] = group
        
        group.events.append(event)
        group.total_qty += event.quantity or 0
        if event.last_updated > group.last_updated:
            group.last_updated = event.last_updated
    
    if orphans:
        logger.debug(f"Dropped {orphans} event(s) referencing unknown blocks")
    
    for group in groups.values():
        group.events.sort(key=lambda e: e.last_updated, reverse=True)
    
    return sorted(
        groups.values(),
        key=lambda g: (
            master.sector_name(g.sector_id),
            master.orchard_name(g.orchard_id),
            g.block.name,
        ),
    )


def summarize(events: Iterable[TreeEvent], master: MasterData) -> InventorySummary:
    """
    Compute dashboard KPIs for a set of events.
    
    Average health is taken over the distinct resolved blocks that carry
    a health value, rounded to a whole number (0 when there are none).
    """
    events = list(events)
    groups = aggregate_by_block(events, master)
    healths = [g.block.health for g in groups if g.block.health is not None]
    
    return InventorySummary(
        event_count=len(events),
        total_quantity=sum(e.quantity or 0 for e in events),
        block_count=len(groups),
        average_health=round(sum(healths) / len(healths)) if healths else 0,
        removals=sum(1 for e in events if e.status == EventStatus.REMOVED),
    )

"""
Domain service: filter/search pipeline over tree events.

Stages run in order and are AND-combined: scope (sector, orchard, block),
variety, status, then free text over a synthesized searchable string.
Selecting a higher scope level resets the levels beneath it, so a stale
lower-level selection can never narrow a broadened parent.
"""
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional

from orchard360.domain.models import Block, Orchard, Sector, TreeEvent
from orchard360.services.domain.master_data import MasterData

ALL = "all"


@dataclass(frozen=True)
class EventFilter:
    """Current filter selection; every field defaults to 'all' / no query."""
    sector_id: str = ALL
    orchard_id: str = ALL
    block_id: str = ALL
    status: str = ALL
    variety: str = ALL
    query: str = ""
    
    @property
    def is_unfiltered(self) -> bool:
        return (
            self.sector_id == ALL
            and self.orchard_id == ALL
            and self.block_id == ALL
            and self.status == ALL
            and self.variety == ALL
            and not self.query.strip()
        )


# ============================================================
# Cascading selection
# ============================================================

def select_sector(current: EventFilter, sector_id: str) -> EventFilter:
    """Select a sector; orchard and block reset to 'all'."""
    return replace(current, sector_id=sector_id or ALL, orchard_id=ALL, block_id=ALL)


def select_orchard(current: EventFilter, orchard_id: str) -> EventFilter:
    """Select an orchard; block resets to 'all'."""
    return replace(current, orchard_id=orchard_id or ALL, block_id=ALL)


def select_block(current: EventFilter, block_id: str) -> EventFilter:
    return replace(current, block_id=block_id or ALL)


# ============================================================
# Pipeline
# ============================================================

def searchable_text(event: TreeEvent, master: MasterData) -> str:
    """
    Lower-cased blob the free-text query is matched against.
    
    Joins sector, orchard and block names, block variety and structure
    type, event status, quantity and notes.
    """
    block = master.block(event.block_id)
    parts = [
        master.sector_name(event.sector_id),
        master.orchard_name(event.orchard_id),
        block.name if block else "",
        block.variety if block else "",
        block.structure_type if block else "",
        event.status.value,
        "" if event.quantity is None else str(event.quantity),
        event.notes or "",
    ]
    return " ".join(parts).lower()


def matches(event: TreeEvent, criteria: EventFilter, master: MasterData) -> bool:
    """Whether a single event passes every stage of the pipeline."""
    if criteria.sector_id != ALL and event.sector_id != criteria.sector_id:
        return False
    if criteria.orchard_id != ALL and event.orchard_id != criteria.orchard_id:
        return False
    if criteria.block_id != ALL and event.block_id != criteria.block_id:
        return False
    
    if criteria.variety != ALL:
        block = master.block(event.block_id)
        if block is None or block.variety != criteria.variety:
            return False
    
    if criteria.status != ALL and event.status.value != criteria.status:
        return False
    
    query = criteria.query.strip().lower()
    if not query:
        return True
    return query in searchable_text(event, master)


def filter_events(
    events: Iterable[TreeEvent],
    criteria: EventFilter,
    master: MasterData,
) -> List[TreeEvent]:
    """Events passing `criteria`, in their original order."""
    return [e for e in events if matches(e, criteria, master)]


# ============================================================
# Selector options
# ============================================================

@dataclass
class ScopeOptions:
    """Choices offered by the cascading sector/orchard/block selectors."""
    sectors: List[Sector]
    orchards: List[Orchard]
    blocks: List[Block]
    varieties: List[str]


def scope_options(
    master: MasterData,
    sector_id: Optional[str] = ALL,
    orchard_id: Optional[str] = ALL,
) -> ScopeOptions:
    """
    Options for each selector given the current parent selections.
    
    Orchards are limited to the selected sector; blocks to the selected
    orchard, or else to the selected sector's orchards. Lists are sorted
    by name.
    """
    sector_id = sector_id or ALL
    orchard_id = orchard_id or ALL
    
    orchards = [
        o for o in master.orchards.values()
        if sector_id == ALL or o.sector_id == sector_id
    ]
    orchard_ids = {o.id for o in orchards}
    
    blocks = [
        b for b in master.blocks.values()
        if (orchard_id == ALL and b.orchard_id in orchard_ids) or b.orchard_id == orchard_id
    ]
    if sector_id == ALL and orchard_id == ALL:
        blocks = list(master.blocks.values())
    
    return ScopeOptions(
        sectors=sorted(master.sectors.values(), key=lambda s: s.name),
        orchards=sorted(orchards, key=lambda o: o.name),
        blocks=sorted(blocks, key=lambda b: b.name),
        varieties=sorted({b.variety for b in master.blocks.values() if b.variety}),
    )

"""
Read-only snapshot of the master data (sectors, orchards, blocks) used to
resolve ids to names in derived views.
"""
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from orchard360.domain.models import Block, Orchard, Sector


@dataclass(frozen=True)
class MasterData:
    """Id-indexed sectors, orchards and blocks."""
    sectors: Mapping[str, Sector] = field(default_factory=dict)
    orchards: Mapping[str, Orchard] = field(default_factory=dict)
    blocks: Mapping[str, Block] = field(default_factory=dict)
    
    @classmethod
    def from_lists(
        cls,
        sectors: Iterable[Sector] = (),
        orchards: Iterable[Orchard] = (),
        blocks: Iterable[Block] = (),
    ) -> "MasterData":
        return cls(
            sectors={s.id: s for s in sectors},
            orchards={o.id: o for o in orchards},
            blocks={b.id: b for b in blocks},
        )
    
    def block(self, block_id: str) -> Optional[Block]:
        return self.blocks.get(block_id)
    
    # Unresolved references render as empty names
    def sector_name(self, sector_id: str) -> str:
        sector = self.sectors.get(sector_id)
        return sector.name if sector else ""
    
    def orchard_name(self, orchard_id: str) -> str:
        orchard = self.orchards.get(orchard_id)
        return orchard.name if orchard else ""
    
    def block_name(self, block_id: str) -> str:
        block = self.blocks.get(block_id)
        return block.name if block else ""

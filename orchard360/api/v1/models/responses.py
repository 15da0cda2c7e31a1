"""
API response models using Pydantic.
"""
from typing import List
from pydantic import Field

from orchard360.domain.models import Block, DomainModel, Orchard, Sector, TreeEvent
from orchard360.services.application.csv_transfer_service import ImportReport
from orchard360.services.domain.aggregation import BlockGroup, InventorySummary
from orchard360.services.domain.event_filter import ScopeOptions
from orchard360.services.domain.master_data import MasterData


class BlockGroupResponse(DomainModel):
    """Events of one block with their rollups."""
    block: Block
    sector_id: str
    orchard_id: str
    sector_name: str = Field(description="Resolved sector name, empty when unknown")
    orchard_name: str = Field(description="Resolved orchard name, empty when unknown")
    events: List[TreeEvent] = Field(description="Events, most recently updated first")
    total_qty: int = Field(description="Sum of event quantities")
    last_updated: str = Field(description="Latest lastUpdated across the events")
    
    @classmethod
    def from_group(cls, group: BlockGroup, master: MasterData) -> "BlockGroupResponse":
        return cls(
            block=group.block,
            sector_id=group.sector_id,
            orchard_id=group.orchard_id,
            sector_name=master.sector_name(group.sector_id),
            orchard_name=master.orchard_name(group.orchard_id),
            events=group.events,
            total_qty=group.total_qty,
            last_updated=group.last_updated,
        )


class SummaryResponse(DomainModel):
    """Dashboard KPIs for the filtered events."""
    event_count: int
    total_quantity: int
    block_count: int
    average_health: int = Field(description="Average block health (0-100)")
    removals: int
    
    @classmethod
    def from_summary(cls, summary: InventorySummary) -> "SummaryResponse":
        return cls(
            event_count=summary.event_count,
            total_quantity=summary.total_quantity,
            block_count=summary.block_count,
            average_health=summary.average_health,
            removals=summary.removals,
        )


class ScopeOptionsResponse(DomainModel):
    """Options for the cascading sector/orchard/block selectors."""
    sectors: List[Sector]
    orchards: List[Orchard]
    blocks: List[Block]
    varieties: List[str]
    
    @classmethod
    def from_options(cls, options: ScopeOptions) -> "ScopeOptionsResponse":
        return cls(
            sectors=options.sectors,
            orchards=options.orchards,
            blocks=options.blocks,
            varieties=options.varieties,
        )


class SkippedRowResponse(DomainModel):
    line: int
    reason: str


class ImportReportResponse(DomainModel):
    """Outcome of a CSV import."""
    events_created: int
    events_updated: int
    sectors_created: int
    orchards_created: int
    blocks_created: int
    legacy_format: bool
    skipped: List[SkippedRowResponse]
    
    @classmethod
    def from_report(cls, report: ImportReport) -> "ImportReportResponse":
        return cls(
            events_created=report.events_created,
            events_updated=report.events_updated,
            sectors_created=report.sectors_created,
            orchards_created=report.orchards_created,
            blocks_created=report.blocks_created,
            legacy_format=report.legacy_format,
            skipped=[SkippedRowResponse(line=s.line, reason=s.reason) for s in report.skipped],
        )

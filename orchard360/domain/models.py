"""
Domain models for the orchard inventory hierarchy.

Sector -> Orchard -> Block -> TreeEvent, plus the append-only AuditEntry.
These models are independent of any storage or transport concern: field
names are snake_case (matching remote table columns) and serialize to
camelCase aliases for JSON clients.
"""
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, model_validator
from pydantic.alias_generators import to_camel


class EventStatus(str, Enum):
    """Kind of tree change recorded by an event."""
    NEW_PLANTING = "New Planting"
    REPLANTING = "Replanting"
    KNEECAPPED = "Kneecapped"
    GRAFTED = "Grafted"
    REMOVED = "Removed"


class LegacyTreeStatus(str, Enum):
    """Status enum of the flat per-tree model, accepted on CSV import only."""
    OK = "OK"
    ATTENTION = "Attention"
    REMOVED = "Removed"
    NEW = "New"


class AuditEntity(str, Enum):
    SECTOR = "sector"
    ORCHARD = "orchard"
    BLOCK = "block"
    TREE = "tree"


class DomainModel(BaseModel):
    """Base for all entities: camelCase on the wire, snake_case in Python."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class Sector(DomainModel):
    """Top of the hierarchy."""
    id: str = ""
    name: str


class Orchard(DomainModel):
    """A named growing site belonging to one sector."""
    id: str = ""
    sector_id: str
    name: str


class Block(DomainModel):
    """A planted sub-area of an orchard (a lot) with one variety/structure."""
    id: str = ""
    orchard_id: str
    name: str
    variety: str = ""
    structure_type: str = ""
    row_count: int = 0
    hectares: float = 0.0
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    health: Optional[float] = Field(
        default=None,
        ge=0,
        le=100,
        description="Block health score (0-100)",
    )

    @model_validator(mode="after")
    def _check_gps_pair(self) -> "Block":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be given together")
        return self


class TreeEvent(DomainModel):
    """
    A recorded change affecting some quantity of trees within one block.

    Scope ids and quantity are checked by the entity store on save, not
    by the model.
    """
    id: str = ""
    sector_id: str = ""
    orchard_id: str = ""
    block_id: str = ""
    quantity: Optional[int] = None
    status: EventStatus = EventStatus.NEW_PLANTING
    tce: Optional[float] = Field(default=None, description="Estimated TCE value")
    rootstock: Optional[str] = None
    notes: Optional[str] = None
    age: Optional[int] = None
    last_updated: str = ""


class AuditEntry(DomainModel):
    """Immutable record of a change to an event or master entity."""
    id: str
    at: str
    who: str
    entity: AuditEntity
    entity_id: str
    message: str

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        frozen = True

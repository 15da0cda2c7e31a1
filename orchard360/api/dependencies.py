"""
Dependency injection for FastAPI.
"""
from typing import Annotated, Optional
from fastapi import Depends, Header, Query, Request

from orchard360.config import settings
from orchard360.services.application.csv_transfer_service import CsvTransferService
from orchard360.services.domain.entity_store import EntityStore
from orchard360.services.domain.event_filter import ALL, EventFilter


def get_store(request: Request) -> EntityStore:
    """
    Dependency factory for the session's EntityStore.
    
    The store is created in the application lifespan and kept on
    `app.state`; it is never a module-level global.
    
    Returns:
        EntityStore instance
    """
    return request.app.state.store


def get_csv_transfer_service(
    store: Annotated[EntityStore, Depends(get_store)],
) -> CsvTransferService:
    """
    Dependency factory for CsvTransferService.
    
    Args:
        store: Entity store (injected)
        
    Returns:
        CsvTransferService instance
    """
    return CsvTransferService(store=store, filename_prefix=settings.export_filename_prefix)


def get_actor(
    x_actor: Annotated[Optional[str], Header(description="Name recorded on audit entries")] = None,
) -> Optional[str]:
    """Actor for audit entries; None falls back to the configured default."""
    return x_actor or None


def get_event_filter(
    sector: Annotated[str, Query(description="Sector id or 'all'")] = ALL,
    orchard: Annotated[str, Query(description="Orchard id or 'all'")] = ALL,
    block: Annotated[str, Query(description="Block id or 'all'")] = ALL,
    status: Annotated[str, Query(description="Event status or 'all'")] = ALL,
    variety: Annotated[str, Query(description="Block variety or 'all'")] = ALL,
    q: Annotated[str, Query(description="Free-text search")] = "",
) -> EventFilter:
    """Build an EventFilter from query parameters."""
    return EventFilter(
        sector_id=sector,
        orchard_id=orchard,
        block_id=block,
        status=status,
        variety=variety,
        query=q,
    )


# Type aliases for cleaner route signatures
StoreDep = Annotated[EntityStore, Depends(get_store)]
CsvTransferServiceDep = Annotated[CsvTransferService, Depends(get_csv_transfer_service)]
ActorDep = Annotated[Optional[str], Depends(get_actor)]
EventFilterDep = Annotated[EventFilter, Depends(get_event_filter)]

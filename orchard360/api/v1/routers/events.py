"""
API router for tree events and their derived views.
"""
from typing import List, Optional
from fastapi import APIRouter, HTTPException, Query, status

from orchard360.api.dependencies import ActorDep, EventFilterDep, StoreDep
from orchard360.api.v1.models.responses import (
    BlockGroupResponse,
    ScopeOptionsResponse,
    SummaryResponse,
)
from orchard360.domain.models import TreeEvent
from orchard360.services.domain.aggregation import aggregate_by_block, summarize
from orchard360.services.domain.event_filter import ALL, filter_events, scope_options


router = APIRouter(tags=["events"])


@router.get(
    "/events",
    response_model=List[TreeEvent],
    summary="List tree events",
    description="""
    Return events matching the filter, most recently updated first.
    
    Filters are AND-combined: sector, orchard and block scope, block
    variety, status, then a case-insensitive text search over sector,
    orchard and block names, variety, structure type, status, quantity
    and notes.
    """,
)
async def list_events(store: StoreDep, criteria: EventFilterDep) -> List[TreeEvent]:
    events = filter_events(store.events(), criteria, store.master_data())
    return sorted(events, key=lambda e: e.last_updated, reverse=True)


@router.get(
    "/events/groups",
    response_model=List[BlockGroupResponse],
    summary="Events grouped by block",
)
async def list_block_groups(store: StoreDep, criteria: EventFilterDep) -> List[BlockGroupResponse]:
    """
    Aggregate the filtered events per block.
    
    Events referencing a block that no longer exists are left out.
    """
    master = store.master_data()
    events = filter_events(store.events(), criteria, master)
    return [BlockGroupResponse.from_group(g, master) for g in aggregate_by_block(events, master)]


@router.get("/events/summary", response_model=SummaryResponse, summary="Dashboard KPIs")
async def get_summary(store: StoreDep, criteria: EventFilterDep) -> SummaryResponse:
    master = store.master_data()
    events = filter_events(store.events(), criteria, master)
    return SummaryResponse.from_summary(summarize(events, master))


@router.post(
    "/events",
    response_model=TreeEvent,
    status_code=status.HTTP_201_CREATED,
    summary="Record a tree event",
    responses={400: {"description": "Missing scope or invalid quantity"}},
)
async def create_event(event: TreeEvent, store: StoreDep, actor: ActorDep) -> TreeEvent:
    """Record a new event under a fresh id."""
    return await store.upsert_event(event.model_copy(update={"id": ""}), who=actor)


@router.put(
    "/events/{event_id}",
    response_model=TreeEvent,
    summary="Save a tree event",
    responses={400: {"description": "Missing scope or invalid quantity"}},
)
async def save_event(
    event_id: str,
    event: TreeEvent,
    store: StoreDep,
    actor: ActorDep,
) -> TreeEvent:
    """Replace the event with this id, inserting it when absent."""
    return await store.upsert_event(event.model_copy(update={"id": event_id}), who=actor)


@router.delete(
    "/events/{event_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a tree event",
)
async def delete_event(event_id: str, store: StoreDep, actor: ActorDep) -> None:
    if not await store.delete_event(event_id, who=actor):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Event with ID '{event_id}' not found",
        )


@router.get(
    "/scope/options",
    response_model=ScopeOptionsResponse,
    summary="Options for the cascading scope selectors",
)
async def get_scope_options(
    store: StoreDep,
    sector: Optional[str] = Query(default=ALL, description="Selected sector id or 'all'"),
    orchard: Optional[str] = Query(default=ALL, description="Selected orchard id or 'all'"),
) -> ScopeOptionsResponse:
    options = scope_options(store.master_data(), sector_id=sector, orchard_id=orchard)
    return ScopeOptionsResponse.from_options(options)

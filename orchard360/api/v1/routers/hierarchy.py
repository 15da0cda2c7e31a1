"""
API router for master data: sectors, orchards and blocks.
"""
from typing import Annotated, List
from fastapi import APIRouter, HTTPException, Path, status

from orchard360.api.dependencies import ActorDep, StoreDep
from orchard360.domain.models import Block, Orchard, Sector


router = APIRouter(tags=["hierarchy"])

CONFLICT_RESPONSE = {409: {"description": "Entity still has dependents"}}


def _not_found(kind: str, entity_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"{kind} with ID '{entity_id}' not found",
    )


# ============================================================
# Sectors
# ============================================================

@router.get("/sectors", response_model=List[Sector], summary="List sectors")
async def list_sectors(store: StoreDep) -> List[Sector]:
    return store.sectors()


@router.post(
    "/sectors",
    response_model=Sector,
    status_code=status.HTTP_201_CREATED,
    summary="Create a sector",
)
async def create_sector(sector: Sector, store: StoreDep, actor: ActorDep) -> Sector:
    """Create a sector; any id in the body is replaced by a fresh one."""
    return await store.create_sector(sector, who=actor)


@router.put("/sectors/{sector_id}", response_model=Sector, summary="Replace a sector")
async def update_sector(
    sector_id: Annotated[str, Path(description="Sector id")],
    sector: Sector,
    store: StoreDep,
    actor: ActorDep,
) -> Sector:
    """Replace the sector with this id, inserting it when absent."""
    return await store.update_sector(sector_id, sector, who=actor)


@router.delete(
    "/sectors/{sector_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a sector",
    responses=CONFLICT_RESPONSE,
)
async def delete_sector(sector_id: str, store: StoreDep, actor: ActorDep) -> None:
    if not await store.delete_sector(sector_id, who=actor):
        raise _not_found("Sector", sector_id)


# ============================================================
# Orchards
# ============================================================

@router.get("/orchards", response_model=List[Orchard], summary="List orchards")
async def list_orchards(store: StoreDep) -> List[Orchard]:
    return store.orchards()


@router.post(
    "/orchards",
    response_model=Orchard,
    status_code=status.HTTP_201_CREATED,
    summary="Create an orchard",
)
async def create_orchard(orchard: Orchard, store: StoreDep, actor: ActorDep) -> Orchard:
    return await store.create_orchard(orchard, who=actor)


@router.put("/orchards/{orchard_id}", response_model=Orchard, summary="Replace an orchard")
async def update_orchard(
    orchard_id: str,
    orchard: Orchard,
    store: StoreDep,
    actor: ActorDep,
) -> Orchard:
    return await store.update_orchard(orchard_id, orchard, who=actor)


@router.delete(
    "/orchards/{orchard_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an orchard",
    responses=CONFLICT_RESPONSE,
)
async def delete_orchard(orchard_id: str, store: StoreDep, actor: ActorDep) -> None:
    if not await store.delete_orchard(orchard_id, who=actor):
        raise _not_found("Orchard", orchard_id)


# ============================================================
# Blocks
# ============================================================

@router.get("/blocks", response_model=List[Block], summary="List blocks")
async def list_blocks(store: StoreDep) -> List[Block]:
    return store.blocks()


@router.post(
    "/blocks",
    response_model=Block,
    status_code=status.HTTP_201_CREATED,
    summary="Create a block",
)
async def create_block(block: Block, store: StoreDep, actor: ActorDep) -> Block:
    return await store.create_block(block, who=actor)


@router.put("/blocks/{block_id}", response_model=Block, summary="Replace a block")
async def update_block(
    block_id: str,
    block: Block,
    store: StoreDep,
    actor: ActorDep,
) -> Block:
    return await store.update_block(block_id, block, who=actor)


@router.delete(
    "/blocks/{block_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a block",
    responses=CONFLICT_RESPONSE,
)
async def delete_block(block_id: str, store: StoreDep, actor: ActorDep) -> None:
    if not await store.delete_block(block_id, who=actor):
        raise _not_found("Block", block_id)

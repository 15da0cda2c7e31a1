"""
API router for CSV export and import.
"""
from fastapi import APIRouter, Request
from fastapi.responses import Response

from orchard360.api.dependencies import ActorDep, CsvTransferServiceDep, EventFilterDep
from orchard360.api.rate_limit import TRANSFER_RATE_LIMIT, limiter
from orchard360.api.v1.models.responses import ImportReportResponse


router = APIRouter(tags=["transfer"])

TOO_MANY_REQUESTS = {429: {"description": "Rate limit exceeded"}}


@router.get(
    "/export.csv",
    summary="Export events as CSV",
    description="""
    Download events as CSV with columns
    id, sector, orchard, block, status, quantity, tce, notes, lastUpdated,
    variety, structureType, rowCount, hectares, latitude, longitude, blockHealth.
    
    Without filter parameters the whole store is exported. Sector, orchard
    and block are written as names, so a re-import resolves them by name.
    """,
    response_class=Response,
    responses={200: {"content": {"text/csv": {}}}, **TOO_MANY_REQUESTS},
)
@limiter.limit(TRANSFER_RATE_LIMIT)
async def export_csv(
    request: Request,
    transfer_service: CsvTransferServiceDep,
    criteria: EventFilterDep,
) -> Response:
    filename, text = transfer_service.export_csv(criteria)
    return Response(
        content=text.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post(
    "/import",
    response_model=ImportReportResponse,
    summary="Import events from CSV",
    description="""
    Import a UTF-8 CSV body in the export format or the legacy flat
    per-tree format. Rows are merged by id: an existing event with the
    same id is replaced, otherwise the event is inserted. Missing sectors,
    orchards and blocks are created by name.
    """,
    responses={400: {"description": "CSV has no header line"}, **TOO_MANY_REQUESTS},
)
@limiter.limit(TRANSFER_RATE_LIMIT)
async def import_csv(
    request: Request,
    transfer_service: CsvTransferServiceDep,
    actor: ActorDep,
) -> ImportReportResponse:
    body = await request.body()
    report = await transfer_service.import_csv(body.decode("utf-8-sig"), who=actor)
    return ImportReportResponse.from_report(report)

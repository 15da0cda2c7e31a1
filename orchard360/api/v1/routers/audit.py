"""
API router for the audit log.
"""
from typing import List
from fastapi import APIRouter

from orchard360.api.dependencies import StoreDep
from orchard360.domain.models import AuditEntry


router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("", response_model=List[AuditEntry], summary="Full audit log, newest first")
async def list_audit_entries(store: StoreDep) -> List[AuditEntry]:
    return list(store.audit_entries())

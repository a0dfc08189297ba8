import uuid
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from counselbook.core.db import get_session
from counselbook.core.security import require_roles, Principal
from counselbook.modules.history.schemas import HistoryEntryOut
from counselbook.modules.history.service import HistoryService

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> HistoryService:
    return HistoryService(session)

@router.get("/sessions/{session_id}/history", response_model=list[HistoryEntryOut])
async def session_history(
    session_id: uuid.UUID,
    limit: int = Query(200, ge=1, le=1000),
    principal: Principal = Depends(require_roles("counselor", "admin")),
    service: HistoryService = Depends(svc),
):
    return await service.for_session(session_id, limit=limit)

@router.get("/cases/{case_id}/history", response_model=list[HistoryEntryOut])
async def case_history(
    case_id: uuid.UUID,
    limit: int = Query(200, ge=1, le=1000),
    principal: Principal = Depends(require_roles("counselor", "admin")),
    service: HistoryService = Depends(svc),
):
    return await service.for_case(case_id, limit=limit)

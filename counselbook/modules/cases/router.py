import uuid
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from counselbook.core.db import get_session
from counselbook.core.security import get_principal, require_roles, Principal
from counselbook.modules.cases.schemas import (
    CodeRedeem, CaseStatusChange, CaseOut, QueueTokenOut, IssueCodes, CodesOut,
)
from counselbook.modules.cases.service import CaseService

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> CaseService:
    return CaseService(session)

@router.post("/cases/redeem", response_model=CaseOut, status_code=201)
async def redeem_code(
    payload: CodeRedeem,
    principal: Principal = Depends(require_roles("client")),
    service: CaseService = Depends(svc),
):
    return await service.open_case_from_code(principal, payload.code)

@router.get("/cases/queue-tokens", response_model=list[CaseOut])
async def list_queue_tokens(
    sort: str = Query("asc", pattern="^(asc|desc)$"),
    principal: Principal = Depends(require_roles("counselor", "admin")),
    service: CaseService = Depends(svc),
):
    return await service.list_queue_tokens(principal, sort=sort)

@router.get("/cases/{case_id}", response_model=CaseOut)
async def get_case(
    case_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: CaseService = Depends(svc),
):
    return await service.get_case(principal, case_id)

@router.post("/cases/{case_id}/status", response_model=CaseOut)
async def change_status(
    case_id: uuid.UUID,
    payload: CaseStatusChange,
    principal: Principal = Depends(require_roles("counselor", "admin")),
    service: CaseService = Depends(svc),
):
    return await service.transition_status(principal, case_id, payload.status, payload.reason)

@router.post("/cases/{case_id}/complete", response_model=CaseOut)
async def complete_case(
    case_id: uuid.UUID,
    principal: Principal = Depends(require_roles("counselor", "admin")),
    service: CaseService = Depends(svc),
):
    return await service.close_case(principal, case_id)

@router.post("/cases/{case_id}/queue-token", response_model=QueueTokenOut)
async def queue_token(
    case_id: uuid.UUID,
    principal: Principal = Depends(require_roles("counselor", "admin")),
    service: CaseService = Depends(svc),
):
    token = await service.get_or_create_queue_token(case_id)
    return QueueTokenOut(case_id=case_id, queue_token=token)

@router.post("/registration-codes", response_model=CodesOut, status_code=201)
async def issue_codes(
    payload: IssueCodes,
    principal: Principal = Depends(require_roles("counselor", "admin")),
    service: CaseService = Depends(svc),
):
    return CodesOut(codes=await service.issue_registration_codes(principal, payload.count))

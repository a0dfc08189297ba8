import uuid
from datetime import date, datetime
from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession
from counselbook.core.db import get_session
from counselbook.core.security import get_principal, require_roles, Principal
from counselbook.modules.slots.schemas import (
    SlotCreate, SlotUpdate, NotesUpdate, PortalToggle, BulkWeek, BulkWeekResult,
    SlotOut, SlotDetailOut, AvailableSlotOut, WeekScheduleOut,
)
from counselbook.modules.slots.service import SlotService

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> SlotService:
    return SlotService(session)

staff = require_roles("counselor", "admin")

# ---- Client-facing search ----

@router.get("/slots/available", response_model=list[AvailableSlotOut])
async def search_available(
    day: date | None = Query(default=None, alias="date"),
    limit: int = Query(200, ge=1, le=500),
    principal: Principal = Depends(get_principal),
    service: SlotService = Depends(svc),
):
    return await service.search_available(day, limit=limit)

# ---- Counselor slots ----

@router.post("/slots", response_model=SlotOut, status_code=201)
async def create_slot(
    payload: SlotCreate,
    principal: Principal = Depends(staff),
    service: SlotService = Depends(svc),
):
    return await service.create_slot(principal, payload)

@router.get("/slots/mine", response_model=list[SlotOut])
async def my_schedule(
    status: str | None = Query(default=None, pattern="^(available|closed|booked|completed|cancelled)$"),
    start: datetime | None = None,
    end: datetime | None = None,
    counselor_id: uuid.UUID | None = None,
    principal: Principal = Depends(staff),
    service: SlotService = Depends(svc),
):
    return await service.counselor_schedule(principal, counselor_id=counselor_id, status=status, start=start, end=end)

@router.get("/slots/{session_id}", response_model=SlotDetailOut)
async def get_slot(
    session_id: uuid.UUID,
    principal: Principal = Depends(staff),
    service: SlotService = Depends(svc),
):
    return await service.detail(session_id)

@router.patch("/slots/{session_id}", response_model=SlotOut)
async def update_slot(
    session_id: uuid.UUID,
    payload: SlotUpdate,
    principal: Principal = Depends(staff),
    service: SlotService = Depends(svc),
):
    return await service.update_slot(principal, session_id, payload)

@router.delete("/slots/{session_id}", status_code=204)
async def delete_slot(
    session_id: uuid.UUID,
    principal: Principal = Depends(staff),
    service: SlotService = Depends(svc),
):
    await service.delete_slot(principal, session_id)
    return Response(status_code=204)

@router.post("/slots/{session_id}/toggle", response_model=SlotOut)
async def toggle_slot(
    session_id: uuid.UUID,
    principal: Principal = Depends(staff),
    service: SlotService = Depends(svc),
):
    return await service.toggle_availability(principal, session_id)

@router.put("/slots/{session_id}/notes", response_model=SlotDetailOut)
async def update_notes(
    session_id: uuid.UUID,
    payload: NotesUpdate,
    principal: Principal = Depends(staff),
    service: SlotService = Depends(svc),
):
    return await service.update_notes(principal, session_id, payload)

@router.post("/slots/{session_id}/complete", response_model=SlotOut)
async def complete_session(
    session_id: uuid.UUID,
    principal: Principal = Depends(staff),
    service: SlotService = Depends(svc),
):
    return await service.complete_session(principal, session_id)

# ---- Room portal ----

@router.get("/portal/schedule", response_model=WeekScheduleOut)
async def week_schedule(
    room_id: uuid.UUID,
    week_start: date,
    principal: Principal = Depends(staff),
    service: SlotService = Depends(svc),
):
    return await service.week_schedule(room_id, week_start)

@router.put("/portal/slots/toggle", response_model=SlotOut)
async def portal_toggle(
    payload: PortalToggle,
    principal: Principal = Depends(staff),
    service: SlotService = Depends(svc),
):
    return await service.portal_toggle(principal, payload.room_id, payload.date, payload.time)

@router.put("/portal/week/bulk", response_model=BulkWeekResult)
async def bulk_week(
    payload: BulkWeek,
    principal: Principal = Depends(staff),
    service: SlotService = Depends(svc),
):
    return await service.bulk_week(principal, payload.room_id, payload.week_start, payload.make_available)

import uuid
from datetime import date
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from counselbook.core.db import get_session
from counselbook.core.security import get_principal, require_roles, Principal
from counselbook.modules.bookings.schemas import BookRequest, BookingConfirmation, CancellationOut, ClientCaseOut
from counselbook.modules.bookings.service import BookingService
from counselbook.modules.slots.schemas import AvailableSlotOut

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> BookingService:
    return BookingService(session)

@router.get("/bookings/search", response_model=list[AvailableSlotOut])
async def search(
    day: date | None = Query(default=None, alias="date"),
    principal: Principal = Depends(get_principal),
    service: BookingService = Depends(svc),
):
    return await service.search(day)

@router.post("/bookings", response_model=BookingConfirmation, status_code=201)
async def book(
    payload: BookRequest,
    principal: Principal = Depends(require_roles("client")),
    service: BookingService = Depends(svc),
):
    return await service.book(principal, payload)

@router.get("/bookings/mine", response_model=list[ClientCaseOut])
async def my_bookings(
    principal: Principal = Depends(require_roles("client")),
    service: BookingService = Depends(svc),
):
    return await service.client_bookings(principal)

@router.post("/bookings/{session_id}/cancel", response_model=CancellationOut)
async def cancel(
    session_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: BookingService = Depends(svc),
):
    return await service.cancel(principal, session_id)

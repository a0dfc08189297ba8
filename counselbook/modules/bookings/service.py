import uuid
import logging
from datetime import date, timedelta
from sqlalchemy.ext.asyncio import AsyncSession

from counselbook.core.config import settings
from counselbook.core.db import transaction
from counselbook.core.errors import NotFound, Conflict, Forbidden, InvalidInput, SLOT_TAKEN, CANCEL_WINDOW
from counselbook.core.security import Principal
from counselbook.core.timeutil import Clock, utcnow, as_utc, whole_seconds
from counselbook.modules.bookings.schemas import (
    BookRequest, BookingConfirmation, CancellationOut, BookedSessionOut, ClientCaseOut,
)
from counselbook.modules.cases.models import Case, ACTIVE_CASE_STATUSES, CLOSED_CASE_STATUSES
from counselbook.modules.cases.repository import CaseRepository
from counselbook.modules.cases.service import CaseService
from counselbook.modules.catalogs.repository import CatalogRepository
from counselbook.modules.events.outbox import OutboxService
from counselbook.modules.history.payloads import BookingCreated, Cancelled
from counselbook.modules.history.service import HistoryService, CLIENT_BOOKED, CLIENT_CANCELLED, COUNSELOR_CANCELLED
from counselbook.modules.identity.models import Client
from counselbook.modules.identity.repository import IdentityRepository
from counselbook.modules.slots.models import CounselingSession
from counselbook.modules.slots.repository import SlotRepository
from counselbook.modules.slots.service import SlotService

log = logging.getLogger("bookings")

class BookingService:
    """Reserve a slot and tie it to a case, or undo that, as one unit of work."""

    def __init__(self, session: AsyncSession, clock: Clock = utcnow):
        self.session = session
        self.clock = clock
        self.slots = SlotRepository(session)
        self.cases = CaseRepository(session)
        self.identity = IdentityRepository(session)
        self.catalogs = CatalogRepository(session)
        self.history = HistoryService(session)
        self.outbox = OutboxService(session)
        self.case_service = CaseService(session, clock=clock)
        self.slot_service = SlotService(session, clock=clock)

    async def _client(self, principal: Principal) -> Client:
        client = await self.identity.client_for_user(principal.user_id)
        if not client:
            raise InvalidInput("No client profile for this account")
        return client

    async def _target(self, req: BookRequest) -> CounselingSession:
        if req.session_id is not None:
            slot = await self.slots.get(req.session_id)
            if not slot:
                raise NotFound("Session not found", session_id=str(req.session_id))
            return slot
        return await self.slot_service.find_candidates(
            req.date, req.time, counselor_name=req.counselor_name, counselor_id=req.counselor_id,
        )

    async def _case_for_booking(self, client: Client, slot: CounselingSession, req: BookRequest) -> Case:
        if client.active_case_id:
            active = await self.cases.get(client.active_case_id, for_update=True)
            if active and active.status in ACTIVE_CASE_STATUSES:
                return active
        case = await self.cases.create(
            client_id=client.id, counselor_id=slot.counselor_id, status="booked", description=req.description,
        )
        await self.identity.set_active_case(client.id, case.id)
        log.info("case %s created by booking for client %s", case.id, client.id)
        return case

    async def book(self, principal: Principal, req: BookRequest) -> BookingConfirmation:
        if principal.role != "client":
            raise Forbidden("Only clients can book sessions")
        now = whole_seconds(self.clock())
        async with transaction(self.session):
            client = await self._client(principal)
            # row lock serializes bookings by the same client
            client = await self.identity.get_client(client.id, for_update=True)

            case_ids = await self.cases.ids_for_client(client.id)
            if await self.slots.outstanding_for_cases(case_ids, now):
                raise Conflict("You already have an upcoming booking")

            slot = await self._target(req)
            start = as_utc(slot.time_start)
            if start is not None and start <= now:
                raise InvalidInput("This slot has already started")
            if not await self.slots.reserve(slot.id):
                raise Conflict(SLOT_TAKEN, session_id=str(slot.id))

            case = await self._case_for_booking(client, slot, req)
            queue_token = await self.case_service.ensure_queue_token(case.id)
            session_token = await self.case_service.next_session_token(case.id, queue_token)
            await self.slots.attach(slot.id, case.id, session_token)

            await self.history.append(
                slot.id, CLIENT_BOOKED, principal.user_id,
                BookingCreated(
                    client_id=client.id, case_id=case.id, queue_token=queue_token,
                    session_token=session_token, description=req.description, metadata=req.metadata,
                ),
                at=now,
            )
            await self.outbox.enqueue("BOOKING_CREATED", "session", slot.id, {
                "session_id": str(slot.id), "case_id": str(case.id), "client_id": str(client.id),
                "counselor_id": str(slot.counselor_id) if slot.counselor_id else None,
                "time_start": start.isoformat() if start else None,
                "queue_token": queue_token, "session_token": session_token,
            }, occurred_at=now)

            counselor_name = await self.identity.counselor_display_name(slot.counselor_id)
            room = await self.catalogs.get_room(slot.room_id) if slot.room_id else None

        log.info("client %s booked session %s (%s)", client.id, slot.id, session_token)
        return BookingConfirmation(
            session_id=slot.id, time_start=start, time_end=as_utc(slot.time_end),
            counselor_name=counselor_name, room_name=room.room_name if room else None,
            case_id=case.id, queue_token=queue_token, session_token=session_token,
        )

    def _check_cancel_rights(self, principal: Principal, slot: CounselingSession, case: Case, client: Client | None, now):
        if principal.role == "admin":
            return
        if principal.role == "counselor":
            if slot.counselor_id is not None and slot.counselor_id != principal.counselor_id:
                raise Forbidden("This slot belongs to another counselor")
            return
        if not client or case.client_id != client.id:
            raise Forbidden("Not your booking")
        start = as_utc(slot.time_start)
        if start is not None and start - now < timedelta(hours=settings.CANCEL_LEAD_HOURS):
            raise InvalidInput(CANCEL_WINDOW.format(hours=settings.CANCEL_LEAD_HOURS))

    async def cancel(self, principal: Principal, session_id: uuid.UUID) -> CancellationOut:
        now = whole_seconds(self.clock())
        async with transaction(self.session):
            slot = await self.slots.get(session_id)
            if not slot:
                raise NotFound("Session not found", session_id=str(session_id))
            if slot.status != "booked" or slot.case_id is None:
                raise Conflict("This session is not booked")
            case = await self.cases.get(slot.case_id, for_update=True)
            client = await self.identity.client_for_user(principal.user_id) if principal.role == "client" else None
            self._check_cancel_rights(principal, slot, case, client, now)

            prev_case_status = case.status
            session_token = slot.session_token
            booked_name = await self.identity.client_display_name(case.client_id)
            if not await self.slots.release(slot.id, expected_case_id=case.id):
                raise Conflict("This session is not booked")
            if prev_case_status not in CLOSED_CASE_STATUSES:
                await self.cases.set_status(case.id, "cancelled")
            await self.identity.clear_active_case(case.client_id, case.id)

            by = principal.role
            await self.history.append(
                slot.id, CLIENT_CANCELLED if by == "client" else COUNSELOR_CANCELLED, principal.user_id,
                Cancelled(by=by, case_id=case.id, previous_status=prev_case_status,
                          session_token=session_token, booked_name=booked_name),
                at=now,
            )
            await self.outbox.enqueue("BOOKING_CANCELLED", "session", slot.id, {
                "session_id": str(slot.id), "case_id": str(case.id), "client_id": str(case.client_id),
                "cancelled_by": by, "session_token": session_token,
            }, occurred_at=now)
        await self.session.refresh(case)
        log.info("session %s cancelled by %s %s", session_id, principal.role, principal.user_id)
        return CancellationOut(session_id=slot.id, case_id=case.id, case_status=case.status, slot_status="available")

    # ---- reads ----

    async def search(self, day: date | None = None, limit: int = 200):
        return await self.slot_service.search_available(day, limit=limit)

    async def client_bookings(self, principal: Principal) -> list[ClientCaseOut]:
        client = await self._client(principal)
        now = self.clock()
        cases = await self.cases.for_client(client.id)
        by_case: dict[uuid.UUID, list[CounselingSession]] = {}
        for s in await self.slots.sessions_for_cases([c.id for c in cases]):
            by_case.setdefault(s.case_id, []).append(s)

        out = []
        for c in cases:
            sessions = []
            for s in by_case.get(c.id, []):
                start = as_utc(s.time_start)
                if s.status == "completed":
                    state = "completed"
                elif c.status == "cancelled" or s.status == "cancelled":
                    state = "cancelled"
                elif start is not None and start <= now:
                    state = "completed"
                else:
                    state = "upcoming"
                room = await self.catalogs.get_room(s.room_id) if s.room_id else None
                sessions.append(BookedSessionOut(
                    session_id=s.id, time_start=start, time_end=as_utc(s.time_end),
                    counselor_name=await self.identity.counselor_display_name(s.counselor_id),
                    room_name=room.room_name if room else None,
                    session_token=s.session_token, status=s.status, state=state,
                ))
            out.append(ClientCaseOut(
                case_id=c.id, status=c.status, queue_token=c.queue_token,
                created_at=as_utc(c.created_at), sessions=sessions,
            ))
        return out

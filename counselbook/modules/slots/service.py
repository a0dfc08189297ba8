import uuid
import logging
from datetime import date, datetime, timedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from counselbook.core.config import settings
from counselbook.core.db import transaction
from counselbook.core.errors import NotFound, Conflict, Forbidden, InvalidInput
from counselbook.core.security import Principal
from counselbook.core.timeutil import Clock, utcnow, as_utc, to_local, local_datetime, local_day_bounds
from counselbook.modules.catalogs.repository import CatalogRepository
from counselbook.modules.cases.repository import CaseRepository
from counselbook.modules.identity.repository import IdentityRepository
from counselbook.modules.history.payloads import NoteUpdated, SlotToggled, BulkWeekChanged, SessionCompleted
from counselbook.modules.history.service import (
    HistoryService, COUNSELOR_NOTE_UPDATED, PORTAL_SLOT_TOGGLED, PORTAL_BULK_WEEK, SESSION_COMPLETED,
)
from counselbook.modules.slots.models import CounselingSession, CLINICAL_FIELDS
from counselbook.modules.slots.repository import SlotRepository
from counselbook.modules.slots.schemas import (
    SlotCreate, SlotUpdate, NotesUpdate, SlotDetailOut, AvailableSlotOut,
    WeekBlock, WeekScheduleOut, BulkWeekResult,
)

log = logging.getLogger("slots")

TOGGLE_NEXT = {"available": "closed", "closed": "available"}

ROOM_TAKEN = "Room already has a slot at this time"

def _owner_check(principal: Principal, slot: CounselingSession, *, allow_unowned: bool = False):
    if principal.role == "admin":
        return
    if principal.role != "counselor":
        raise Forbidden("Only counselors can manage slots")
    if slot.counselor_id is None and allow_unowned:
        return
    if slot.counselor_id != principal.counselor_id:
        raise Forbidden("This slot belongs to another counselor")

def _monday(day: date) -> date:
    return day - timedelta(days=day.weekday())

class SlotService:
    def __init__(self, session: AsyncSession, clock: Clock = utcnow):
        self.session = session
        self.clock = clock
        self.slots = SlotRepository(session)
        self.catalogs = CatalogRepository(session)
        self.identity = IdentityRepository(session)
        self.history = HistoryService(session)

    # ---- validation helpers ----

    def _check_start(self, start: datetime):
        if start <= self.clock():
            raise InvalidInput("Cannot schedule a slot in the past")
        if settings.ENFORCE_WORKING_HOURS:
            local = to_local(start)
            if local.minute or local.second or not (settings.WORKING_HOUR_FIRST <= local.hour <= settings.WORKING_HOUR_LAST):
                raise InvalidInput(
                    f"Slots start on the hour between {settings.WORKING_HOUR_FIRST:02d}:00 and {settings.WORKING_HOUR_LAST:02d}:00"
                )

    async def _check_room(self, room_id: uuid.UUID | None):
        if room_id is None:
            return
        room = await self.catalogs.get_room(room_id)
        if not room:
            raise NotFound("Room not found", room_id=str(room_id))
        if not room.is_active:
            raise InvalidInput("Room is not active", room_id=str(room_id))

    async def _get(self, session_id: uuid.UUID) -> CounselingSession:
        obj = await self.slots.get(session_id)
        if not obj:
            raise NotFound("Session not found", session_id=str(session_id))
        return obj

    # ---- counselor slots ----

    async def create_slot(self, principal: Principal, payload: SlotCreate) -> CounselingSession:
        if principal.role == "counselor":
            counselor_id = principal.counselor_id
        elif principal.role == "admin":
            counselor_id = payload.counselor_id
        else:
            raise Forbidden("Only counselors can create slots")
        if counselor_id is None:
            raise InvalidInput("A counselor is required to create a slot")

        start = as_utc(payload.time_start)
        end = start + timedelta(minutes=payload.duration_minutes)
        self._check_start(start)

        async with transaction(self.session):
            await self._check_room(payload.room_id)
            clash = await self.slots.find_overlapping(counselor_id, start, end)
            if clash:
                raise Conflict("Overlaps an existing slot", session_id=str(clash.id))
            if payload.room_id and await self.slots.find_by_room_start(payload.room_id, start):
                raise Conflict(ROOM_TAKEN)
            try:
                obj = await self.slots.create(
                    counselor_id=counselor_id, room_id=payload.room_id, session_name=payload.session_name,
                    time_start=start, time_end=end, status="available",
                )
            except IntegrityError:
                raise Conflict(ROOM_TAKEN)
        log.info("slot %s created for counselor %s at %s", obj.id, counselor_id, start.isoformat())
        return obj

    async def update_slot(self, principal: Principal, session_id: uuid.UUID, payload: SlotUpdate) -> CounselingSession:
        async with transaction(self.session):
            obj = await self._get(session_id)
            _owner_check(principal, obj)
            if obj.status != "available":
                raise InvalidInput("Only available slots can be edited")

            # every check runs before obj is touched, so autoflush never writes a clash
            data = payload.model_dump(exclude_unset=True)
            start, end = as_utc(obj.time_start), as_utc(obj.time_end)
            if "time_start" in data and data["time_start"] is not None:
                length = (end - start) if start and end else timedelta(minutes=settings.SLOT_MINUTES)
                start = as_utc(data["time_start"])
                end = start + length
                self._check_start(start)
                if obj.counselor_id:
                    clash = await self.slots.find_overlapping(obj.counselor_id, start, end, exclude_id=obj.id)
                    if clash:
                        raise Conflict("Overlaps an existing slot", session_id=str(clash.id))
            room_id = obj.room_id
            if "room_id" in data:
                await self._check_room(data["room_id"])
                room_id = data["room_id"]
            if room_id and start is not None:
                taken = await self.slots.find_by_room_start(room_id, start, exclude_id=obj.id)
                if taken:
                    raise Conflict(ROOM_TAKEN, session_id=str(taken.id))

            obj.time_start, obj.time_end, obj.room_id = start, end, room_id
            if "session_name" in data:
                obj.session_name = data["session_name"]
            try:
                await self.session.flush()
            except IntegrityError:
                raise Conflict(ROOM_TAKEN)
        return obj

    async def delete_slot(self, principal: Principal, session_id: uuid.UUID) -> None:
        async with transaction(self.session):
            obj = await self._get(session_id)
            _owner_check(principal, obj)
            start = as_utc(obj.time_start)
            if obj.status != "available":
                raise InvalidInput("Only available slots can be deleted")
            if start is not None and start <= self.clock():
                raise InvalidInput("Past slots cannot be deleted")
            if await self.history.repo.exists_for_session(obj.id):
                raise Conflict("Slot has audit history and cannot be deleted")
            await self.slots.delete(obj)
        log.info("slot %s deleted by %s", session_id, principal.user_id)

    # ---- availability ----

    async def _toggle(self, principal: Principal, obj: CounselingSession, **where) -> CounselingSession:
        if obj.status == "booked":
            raise Conflict("Slot is booked, cancel the booking instead")
        prev = obj.status
        nxt = TOGGLE_NEXT.get(prev)
        if nxt is None:
            raise Conflict(f"Cannot toggle a {prev} slot")
        if not await self.slots.set_status(obj.id, nxt, expected_status=prev):
            raise Conflict("Slot changed concurrently, reload and try again")
        await self.history.append(
            obj.id, PORTAL_SLOT_TOGGLED, principal.user_id,
            SlotToggled(from_status=prev, to_status=nxt, **where), at=self.clock(),
        )
        return obj

    async def toggle_availability(self, principal: Principal, session_id: uuid.UUID) -> CounselingSession:
        async with transaction(self.session):
            obj = await self._get(session_id)
            _owner_check(principal, obj, allow_unowned=True)
            await self._toggle(principal, obj, room_id=obj.room_id)
        await self.session.refresh(obj)
        return obj

    async def portal_toggle(self, principal: Principal, room_id: uuid.UUID, day: date, hhmm: str) -> CounselingSession:
        if not principal.is_staff:
            raise Forbidden("Only staff can manage the room schedule")
        start = local_datetime(day, hhmm)
        async with transaction(self.session):
            await self._check_room(room_id)
            obj = await self.slots.find_by_room_start(room_id, start)
            if obj is None:
                obj = await self.slots.create(
                    counselor_id=None, room_id=room_id, time_start=start,
                    time_end=start + timedelta(minutes=settings.SLOT_MINUTES), status="available",
                )
                await self.history.append(
                    obj.id, PORTAL_SLOT_TOGGLED, principal.user_id,
                    SlotToggled(from_status="missing", to_status="available", room_id=room_id, date=day, time=hhmm),
                    at=self.clock(),
                )
                return obj
            _owner_check(principal, obj, allow_unowned=True)
            await self._toggle(principal, obj, room_id=room_id, date=day, time=hhmm)
        await self.session.refresh(obj)
        return obj

    async def bulk_week(self, principal: Principal, room_id: uuid.UUID, week_start: date, make_available: bool) -> BulkWeekResult:
        if not principal.is_staff:
            raise Forbidden("Only staff can manage the room schedule")
        monday = _monday(week_start)
        target = "available" if make_available else "closed"
        changed: list[uuid.UUID] = []
        skipped = 0
        now = self.clock()
        async with transaction(self.session):
            await self._check_room(room_id)
            existing = {
                as_utc(s.time_start): s
                for s in await self.slots.room_window(room_id, local_datetime(monday, "00:00"), local_datetime(monday + timedelta(days=7), "00:00"))
            }
            for offset in range(5):
                day = monday + timedelta(days=offset)
                for hhmm in settings.PORTAL_TIMES:
                    start = local_datetime(day, hhmm)
                    if start <= now:
                        continue
                    slot = existing.get(start)
                    if slot is None:
                        slot = await self.slots.create(
                            counselor_id=None, room_id=room_id, time_start=start,
                            time_end=start + timedelta(minutes=settings.SLOT_MINUTES), status=target,
                        )
                        changed.append(slot.id)
                        continue
                    if slot.status not in TOGGLE_NEXT:
                        skipped += 1
                        continue
                    if slot.status == target:
                        continue
                    if await self.slots.set_status(slot.id, target, expected_status=slot.status):
                        changed.append(slot.id)
            if changed:
                await self.history.append(
                    changed[0], PORTAL_BULK_WEEK, principal.user_id,
                    BulkWeekChanged(room_id=room_id, week_start=monday, make_available=make_available, changed_count=len(changed)),
                    at=self.clock(),
                )
        log.info("bulk week room=%s week=%s target=%s changed=%d", room_id, monday, target, len(changed))
        return BulkWeekResult(
            room_id=room_id, week_start=monday, make_available=make_available,
            changed_count=len(changed), skipped_booked=skipped,
        )

    # ---- clinical notes ----

    async def _snapshot(self, obj: CounselingSession) -> dict:
        snap = {f: getattr(obj, f) for f in CLINICAL_FIELDS}
        snap["problem_tags"] = await self.catalogs.tags_for_session(obj.id)
        return snap

    async def update_notes(self, principal: Principal, session_id: uuid.UUID, payload: NotesUpdate) -> SlotDetailOut:
        async with transaction(self.session):
            obj = await self._get(session_id)
            _owner_check(principal, obj)
            if obj.status not in ("booked", "completed"):
                raise InvalidInput("Notes can only be written for booked or completed sessions")
            before = await self._snapshot(obj)

            data = payload.model_dump(exclude_unset=True)
            tag_ids = data.pop("tag_ids", None)
            for k, v in data.items():
                setattr(obj, k, v)
            if tag_ids is not None:
                tags = await self.catalogs.active_tags(tag_ids)
                if len(tags) != len(set(tag_ids)):
                    raise InvalidInput("Unknown or inactive problem tag")
                await self.catalogs.replace_session_tags(obj.id, [t.id for t in tags])
            await self.session.flush()

            after = await self._snapshot(obj)
            await self.history.append(
                obj.id, COUNSELOR_NOTE_UPDATED, principal.user_id,
                NoteUpdated(before=before, after=after), case_id=obj.case_id, at=self.clock(),
            )
        return await self.detail(obj.id)

    async def complete_session(self, principal: Principal, session_id: uuid.UUID) -> CounselingSession:
        async with transaction(self.session):
            obj = await self._get(session_id)
            _owner_check(principal, obj, allow_unowned=True)
            if obj.status != "booked":
                raise Conflict(f"Only booked sessions can be completed (status is {obj.status})")
            if not await self.slots.set_status(obj.id, "completed", expected_status="booked"):
                raise Conflict("Session changed concurrently, reload and try again")
            await self.history.append(
                obj.id, SESSION_COMPLETED, principal.user_id, SessionCompleted(case_id=obj.case_id), at=self.clock(),
            )
        await self.session.refresh(obj)
        return obj

    # ---- reads ----

    async def detail(self, session_id: uuid.UUID) -> SlotDetailOut:
        obj = await self._get(session_id)
        out = SlotDetailOut.model_validate(obj)
        out.problem_tags = await self.catalogs.tags_for_session(obj.id)
        return out

    async def find_candidates(self, day: date, hhmm: str, *, counselor_name: str | None = None,
                              counselor_id: uuid.UUID | None = None) -> CounselingSession:
        """Exactly one available slot for a date/time, optionally narrowed by counselor."""
        start = local_datetime(day, hhmm)
        counselor_ids = None
        if counselor_id is not None:
            counselor_ids = [counselor_id]
        elif counselor_name:
            counselor_ids = await self.identity.counselor_ids_by_name(counselor_name)
            if not counselor_ids:
                raise NotFound("No counselor matches that name", counselor_name=counselor_name)
        found = await self.slots.candidates(start, counselor_ids=counselor_ids)
        if not found:
            raise NotFound("No available slot at that time")
        if len(found) > 1:
            raise Conflict("Several slots match, choose a counselor", candidates=[str(s.id) for s in found])
        return found[0]

    async def search_available(self, day: date | None = None, limit: int = 200) -> list[AvailableSlotOut]:
        now = self.clock()
        if day is not None:
            start, end = local_day_bounds(day)
            start = max(start, now)
        else:
            start, end = now, None
        rows = await self.slots.search_available(start, end, limit=limit)
        out = []
        for s in rows:
            out.append(AvailableSlotOut(
                id=s.id, time_start=as_utc(s.time_start), time_end=as_utc(s.time_end),
                counselor_id=s.counselor_id, counselor_name=await self.identity.counselor_display_name(s.counselor_id),
                room_id=s.room_id,
            ))
        return out

    async def counselor_schedule(self, principal: Principal, *, counselor_id: uuid.UUID | None = None,
                                 status: str | None = None, start: datetime | None = None, end: datetime | None = None):
        if principal.role == "counselor":
            counselor_id = principal.counselor_id
        elif principal.role != "admin":
            raise Forbidden("Only staff can read schedules")
        if counselor_id is None:
            raise InvalidInput("counselor_id is required")
        return await self.slots.counselor_schedule(
            counselor_id, status=status, start=as_utc(start) if start else None, end=as_utc(end) if end else None,
        )

    async def week_schedule(self, room_id: uuid.UUID, week_start: date) -> WeekScheduleOut:
        room = await self.catalogs.get_room(room_id)
        if not room or not room.is_active:
            raise NotFound("Room not found", room_id=str(room_id))
        monday = _monday(week_start)
        rows = await self.slots.room_window(
            room_id, local_datetime(monday, "00:00"), local_datetime(monday + timedelta(days=7), "00:00"),
        )
        blocks = []
        for s in rows:
            local = to_local(s.time_start)
            booked_by = None
            if s.status == "booked" and s.case_id:
                booked_by = await self._case_client_name(s.case_id)
            blocks.append(WeekBlock(
                session_id=s.id, date=local.date(), time=local.strftime("%H:%M"),
                status=s.status, booked_by=booked_by, session_token=s.session_token,
            ))
        return WeekScheduleOut(
            room_id=room.id, room_name=room.room_name, week_start=monday,
            times=list(settings.PORTAL_TIMES), blocks=blocks,
        )

    async def _case_client_name(self, case_id: uuid.UUID) -> str | None:
        case = await CaseRepository(self.session).get(case_id)
        return await self.identity.client_display_name(case.client_id) if case else None

import uuid
import secrets
import string
import logging
from typing import Sequence
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from counselbook.core.config import settings
from counselbook.core.db import transaction
from counselbook.core.errors import NotFound, Conflict, Forbidden, InvalidInput
from counselbook.core.security import Principal
from counselbook.core.timeutil import Clock, utcnow, whole_seconds
from counselbook.modules.cases import tokens
from counselbook.modules.cases.models import Case, CLOSED_CASE_STATUSES
from counselbook.modules.cases.repository import CaseRepository
from counselbook.modules.events.outbox import OutboxService
from counselbook.modules.history.payloads import StatusChanged
from counselbook.modules.history.service import HistoryService, CASE_STATUS_CHANGED
from counselbook.modules.identity.repository import IdentityRepository
from counselbook.modules.slots.repository import SlotRepository

log = logging.getLogger("cases")

TRANSITION_TARGETS = {"confirmed", "rescheduled", "cancelled"}
STATUS_ALIASES = {"postponed": "rescheduled"}
CLOSABLE = ("booked", "confirmed", "in_progress")

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8

def _case_event(case: Case, **extra) -> dict:
    return {"case_id": str(case.id), "client_id": str(case.client_id), **extra}

class CaseService:
    def __init__(self, session: AsyncSession, clock: Clock = utcnow):
        self.session = session
        self.clock = clock
        self.repo = CaseRepository(session)
        self.slots = SlotRepository(session)
        self.identity = IdentityRepository(session)
        self.history = HistoryService(session)
        self.outbox = OutboxService(session)

    def _now(self):
        return whole_seconds(self.clock())

    async def _get(self, case_id: uuid.UUID, *, for_update: bool = False) -> Case:
        case = await self.repo.get(case_id, for_update=for_update)
        if not case:
            raise NotFound("Case not found", case_id=str(case_id))
        return case

    @staticmethod
    def _check_assignee(principal: Principal, case: Case):
        if principal.role == "admin":
            return
        if principal.role != "counselor":
            raise Forbidden("Only counselors can manage cases")
        if case.counselor_id is not None and case.counselor_id != principal.counselor_id:
            raise Forbidden("Case is assigned to another counselor")

    # ---- registration ----

    async def open_case_from_code(self, principal: Principal, code: str) -> Case:
        client = await self.identity.client_for_user(principal.user_id)
        if not client:
            raise InvalidInput("No client profile for this account")
        code = code.strip()
        now = self._now()
        async with transaction(self.session):
            rc = await self.repo.get_code(code)
            if not rc:
                raise NotFound("Invalid registration code")
            if rc.is_used:
                raise Conflict("Registration code already used")
            if not await self.repo.redeem_code(code, client.id, now):
                raise Conflict("Registration code already used")
            case = await self.repo.create(client_id=client.id, status="waiting_confirmation", waiting_entered_at=now)
            await self.identity.set_active_case(client.id, case.id)
            await self.outbox.enqueue("CASE_OPENED", "case", case.id, _case_event(case), occurred_at=now)
        log.info("case %s opened from code for client %s", case.id, client.id)
        return case

    async def issue_registration_codes(self, principal: Principal, count: int) -> list[str]:
        if not principal.is_staff:
            raise Forbidden("Only staff can issue registration codes")
        async with transaction(self.session):
            codes: list[str] = []
            while len(codes) < count:
                batch = {"".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH)) for _ in range(count - len(codes))}
                batch -= set(codes)
                batch -= await self.repo.existing_codes(list(batch))
                codes.extend(sorted(batch))
            await self.repo.add_codes(codes, created_by=principal.user_id)
        log.info("issued %d registration codes", len(codes))
        return codes

    # ---- lifecycle ----

    async def _audit_sessions(self, sessions: Sequence, principal: Principal, case: Case, prev: str, new: str, reason: str | None):
        now = self._now()
        for s in sessions:
            await self.history.append(
                s.id, CASE_STATUS_CHANGED, principal.user_id,
                StatusChanged(case_id=case.id, previous_status=prev, new_status=new, reason=reason), at=now,
            )

    async def transition_status(self, principal: Principal, case_id: uuid.UUID, new_status: str, reason: str | None = None) -> Case:
        status = STATUS_ALIASES.get(new_status, new_status)
        if status not in TRANSITION_TARGETS:
            raise InvalidInput(f"Unsupported case status: {new_status}")
        now = self._now()
        async with transaction(self.session):
            case = await self._get(case_id, for_update=True)
            self._check_assignee(principal, case)
            prev = case.status
            if prev in CLOSED_CASE_STATUSES:
                raise Conflict(f"Case is already {prev}")

            # captured before any release so the audit covers every linked session
            sessions = list(await self.slots.sessions_for_case(case.id))

            extra = {}
            if status == "confirmed":
                if case.confirmed_at is None:
                    extra["confirmed_at"] = now
                if case.counselor_id is None and principal.counselor_id is not None:
                    extra["counselor_id"] = principal.counselor_id
            if not await self.repo.set_status(case.id, status, expected=[prev], **extra):
                raise Conflict("Case changed concurrently, reload and try again")

            if status == "cancelled":
                for s in sessions:
                    if s.status == "booked":
                        await self.slots.release(s.id, expected_case_id=case.id)
                await self.identity.clear_active_case(case.client_id, case.id)

            await self._audit_sessions(sessions, principal, case, prev, status, reason)
            await self.outbox.enqueue(
                "CASE_STATUS_CHANGED", "case", case.id,
                _case_event(case, previous_status=prev, new_status=status, reason=reason), occurred_at=now,
            )
        await self.session.refresh(case)
        log.info("case %s %s -> %s by %s", case.id, prev, status, principal.user_id)
        return case

    async def close_case(self, principal: Principal, case_id: uuid.UUID) -> Case:
        now = self._now()
        async with transaction(self.session):
            case = await self._get(case_id, for_update=True)
            self._check_assignee(principal, case)
            prev = case.status
            if prev not in CLOSABLE:
                raise Conflict(f"A {prev} case cannot be completed")
            if not await self.repo.set_status(case.id, "completed", expected=[prev]):
                raise Conflict("Case changed concurrently, reload and try again")
            await self.identity.clear_active_case(case.client_id, case.id)
            sessions = await self.slots.sessions_for_case(case.id)
            await self._audit_sessions(sessions, principal, case, prev, "completed", None)
            await self.outbox.enqueue(
                "CASE_STATUS_CHANGED", "case", case.id,
                _case_event(case, previous_status=prev, new_status="completed"), occurred_at=now,
            )
        await self.session.refresh(case)
        return case

    # ---- tokens ----

    async def ensure_queue_token(self, case_id: uuid.UUID) -> str:
        """Token for the case, generating it inside the caller's transaction if missing.

        The read-max-then-write runs in a savepoint; losing the race on the
        unique index rolls back just that savepoint and tries again.
        """
        case = await self._get(case_id)
        if case.queue_token:
            return case.queue_token
        for attempt in range(1, settings.QUEUE_TOKEN_MAX_RETRIES + 1):
            prefix = tokens.academic_year_prefix(self.clock())
            try:
                async with self.session.begin_nested():
                    greatest = await self.repo.greatest_token(prefix)
                    token = tokens.next_queue_token(prefix, greatest)
                    written = await self.repo.set_token(case_id, token)
            except IntegrityError:
                log.info("queue token %s taken, retrying (attempt %d)", token, attempt)
                continue
            await self.session.refresh(case)
            if not written:
                # another request gave this case its token first
                log.info("case %s already received token %s", case.id, case.queue_token)
            return case.queue_token
        raise Conflict("Could not allocate a queue token, please retry", case_id=str(case_id))

    async def next_session_token(self, case_id: uuid.UUID, queue_token: str) -> str:
        attached = await self.slots.count_for_case(case_id)
        return tokens.session_token(queue_token, attached)

    async def get_or_create_queue_token(self, case_id: uuid.UUID) -> str:
        async with transaction(self.session):
            token = await self.ensure_queue_token(case_id)
        return token

    # ---- reads ----

    async def get_case(self, principal: Principal, case_id: uuid.UUID) -> Case:
        case = await self._get(case_id)
        if principal.role == "client":
            client = await self.identity.client_for_user(principal.user_id)
            if not client or client.id != case.client_id:
                raise Forbidden("Not your case")
        return case

    async def list_queue_tokens(self, principal: Principal, sort: str = "asc") -> Sequence[Case]:
        if not principal.is_staff:
            raise Forbidden("Only staff can list queue tokens")
        return await self.repo.with_tokens(descending=(sort == "desc"))

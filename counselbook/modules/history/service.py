import uuid
import logging
from datetime import datetime
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from counselbook.core.timeutil import utcnow, as_utc
from counselbook.modules.history.models import SessionHistory
from counselbook.modules.history.payloads import HistoryPayload, dump_payload, load_payload
from counselbook.modules.history.repository import HistoryRepository
from counselbook.modules.history.schemas import HistoryEntryOut

log = logging.getLogger("history")

# action tags
CLIENT_BOOKED = "CLIENT_BOOKED"
CLIENT_CANCELLED = "CLIENT_CANCELLED"
COUNSELOR_CANCELLED = "COUNSELOR_CANCELLED"
COUNSELOR_NOTE_UPDATED = "COUNSELOR_NOTE_UPDATED"
CASE_STATUS_CHANGED = "CASE_STATUS_CHANGED"
PORTAL_SLOT_TOGGLED = "PORTAL_SLOT_TOGGLED"
PORTAL_BULK_WEEK = "PORTAL_BULK_WEEK"
SESSION_COMPLETED = "SESSION_COMPLETED"

class HistoryService:
    """Writes join the caller's transaction; nothing here commits."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = HistoryRepository(session)

    async def append(self, session_id: uuid.UUID, action: str, actor_user_id: uuid.UUID,
                     payload: HistoryPayload | None = None, *, case_id: uuid.UUID | None = None,
                     at: datetime | None = None) -> SessionHistory:
        if case_id is None and payload is not None:
            case_id = getattr(payload, "case_id", None)
        row = await self.repo.append(
            session_id=session_id,
            case_id=case_id,
            action=action,
            details=dump_payload(payload) if payload is not None else None,
            edited_by=actor_user_id,
            timestamp=at or utcnow(),
        )
        log.debug("history %s on session %s by %s", action, session_id, actor_user_id)
        return row

    async def for_session(self, session_id: uuid.UUID, limit: int = 200) -> list[HistoryEntryOut]:
        return _entries(await self.repo.for_session(session_id, limit=limit))

    async def for_case(self, case_id: uuid.UUID, limit: int = 200) -> list[HistoryEntryOut]:
        return _entries(await self.repo.for_case(case_id, limit=limit))

def _entries(rows: Sequence[SessionHistory]) -> list[HistoryEntryOut]:
    return [
        HistoryEntryOut(
            id=r.id, session_id=r.session_id, case_id=r.case_id, action=r.action,
            details=load_payload(r.details), edited_by=r.edited_by, timestamp=as_utc(r.timestamp),
        )
        for r in rows
    ]

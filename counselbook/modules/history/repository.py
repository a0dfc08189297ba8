import uuid
from datetime import datetime
from typing import Sequence
from sqlalchemy import select, or_, exists
from sqlalchemy.ext.asyncio import AsyncSession
from counselbook.modules.history.models import SessionHistory
from counselbook.modules.slots.models import CounselingSession

class HistoryRepository:
    """Insert and read only."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, *, session_id: uuid.UUID, case_id: uuid.UUID | None, action: str,
                     details: str | None, edited_by: uuid.UUID, timestamp: datetime) -> SessionHistory:
        obj = SessionHistory(
            session_id=session_id, case_id=case_id, action=action,
            details=details, edited_by=edited_by, timestamp=timestamp,
        )
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def for_session(self, session_id: uuid.UUID, limit: int = 200) -> Sequence[SessionHistory]:
        q = (
            select(SessionHistory)
            .where(SessionHistory.session_id == session_id)
            .order_by(SessionHistory.timestamp.desc(), SessionHistory.id.desc())
            .limit(limit)
        )
        res = await self.session.execute(q)
        return res.scalars().all()

    async def for_case(self, case_id: uuid.UUID, limit: int = 200) -> Sequence[SessionHistory]:
        # records tagged with the case, plus anything on sessions still linked to it
        linked = select(CounselingSession.id).where(CounselingSession.case_id == case_id)
        q = (
            select(SessionHistory)
            .where(or_(SessionHistory.case_id == case_id, SessionHistory.session_id.in_(linked)))
            .order_by(SessionHistory.timestamp.desc(), SessionHistory.id.desc())
            .limit(limit)
        )
        res = await self.session.execute(q)
        return res.scalars().all()

    async def exists_for_session(self, session_id: uuid.UUID) -> bool:
        res = await self.session.execute(select(exists().where(SessionHistory.session_id == session_id)))
        return bool(res.scalar())

import uuid
from datetime import datetime
from typing import Sequence
from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from counselbook.modules.slots.models import CounselingSession
from counselbook.modules.catalogs.models import session_problem_tag

class SlotRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **data) -> CounselingSession:
        obj = CounselingSession(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, session_id: uuid.UUID) -> CounselingSession | None:
        res = await self.session.execute(select(CounselingSession).where(CounselingSession.id == session_id).execution_options(populate_existing=True))
        return res.scalar_one_or_none()

    async def find_overlapping(self, counselor_id: uuid.UUID, start: datetime, end: datetime,
                               exclude_id: uuid.UUID | None = None) -> CounselingSession | None:
        # half-open intervals: [start, end)
        q = select(CounselingSession).where(
            CounselingSession.counselor_id == counselor_id,
            CounselingSession.time_start.is_not(None),
            CounselingSession.time_end.is_not(None),
            CounselingSession.time_start < end,
            CounselingSession.time_end > start,
        )
        if exclude_id is not None:
            q = q.where(CounselingSession.id != exclude_id)
        res = await self.session.execute(q.limit(1))
        return res.scalar_one_or_none()

    async def reserve(self, session_id: uuid.UUID) -> bool:
        """available -> booked in one statement. False means someone else got there first."""
        res = await self.session.execute(
            update(CounselingSession)
            .where(CounselingSession.id == session_id, CounselingSession.status == "available")
            .values(status="booked")
            .execution_options(synchronize_session="fetch")
        )
        return res.rowcount == 1

    async def attach(self, session_id: uuid.UUID, case_id: uuid.UUID, session_token: str):
        await self.session.execute(
            update(CounselingSession)
            .where(CounselingSession.id == session_id, CounselingSession.status == "booked")
            .values(case_id=case_id, session_token=session_token)
            .execution_options(synchronize_session="fetch")
        )

    async def release(self, session_id: uuid.UUID, expected_case_id: uuid.UUID | None = None) -> bool:
        """Back to a clean available slot. With expected_case_id only if still booked by that case."""
        q = update(CounselingSession).where(CounselingSession.id == session_id)
        if expected_case_id is not None:
            q = q.where(CounselingSession.status == "booked", CounselingSession.case_id == expected_case_id)
        res = await self.session.execute(
            q.values(
                status="available", case_id=None, session_token=None,
                counselor_keyword=None, counselor_note=None, counselor_followup=None, mood_scale=None,
            ).execution_options(synchronize_session="fetch")
        )
        if res.rowcount != 1:
            return False
        await self.session.execute(delete(session_problem_tag).where(session_problem_tag.c.session_id == session_id))
        return True

    async def set_status(self, session_id: uuid.UUID, new_status: str, *, expected_status: str | None = None) -> bool:
        q = update(CounselingSession).where(CounselingSession.id == session_id)
        if expected_status is not None:
            q = q.where(CounselingSession.status == expected_status)
        res = await self.session.execute(q.values(status=new_status).execution_options(synchronize_session="fetch"))
        return res.rowcount == 1

    async def delete(self, obj: CounselingSession):
        await self.session.delete(obj)
        await self.session.flush()

    async def candidates(self, start: datetime, *, counselor_ids: Sequence[uuid.UUID] | None = None) -> Sequence[CounselingSession]:
        q = select(CounselingSession).where(
            CounselingSession.time_start == start,
            CounselingSession.status == "available",
        )
        if counselor_ids is not None:
            q = q.where(CounselingSession.counselor_id.in_(counselor_ids))
        res = await self.session.execute(q.limit(10))
        return res.scalars().all()

    async def search_available(self, start: datetime, end: datetime | None = None, limit: int = 200) -> Sequence[CounselingSession]:
        q = select(CounselingSession).where(
            CounselingSession.status == "available",
            CounselingSession.time_start.is_not(None),
            CounselingSession.time_start >= start,
        )
        if end is not None:
            q = q.where(CounselingSession.time_start < end)
        res = await self.session.execute(q.order_by(CounselingSession.time_start.asc()).limit(limit))
        return res.scalars().all()

    async def counselor_schedule(self, counselor_id: uuid.UUID, *, status: str | None = None,
                                 start: datetime | None = None, end: datetime | None = None,
                                 limit: int = 500) -> Sequence[CounselingSession]:
        q = select(CounselingSession).where(CounselingSession.counselor_id == counselor_id)
        if status:
            q = q.where(CounselingSession.status == status)
        if start is not None or end is not None:
            q = q.where(CounselingSession.time_start.is_not(None))
            if start is not None:
                q = q.where(CounselingSession.time_start >= start)
            if end is not None:
                q = q.where(CounselingSession.time_start < end)
        q = q.order_by(CounselingSession.time_start.asc().nulls_last()).limit(limit)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def room_window(self, room_id: uuid.UUID, start: datetime, end: datetime) -> Sequence[CounselingSession]:
        res = await self.session.execute(
            select(CounselingSession).where(
                CounselingSession.room_id == room_id,
                CounselingSession.time_start.is_not(None),
                CounselingSession.time_start >= start,
                CounselingSession.time_start < end,
            ).order_by(CounselingSession.time_start.asc())
        )
        return res.scalars().all()

    async def find_by_room_start(self, room_id: uuid.UUID, start: datetime, exclude_id: uuid.UUID | None = None) -> CounselingSession | None:
        stmt = select(CounselingSession).where(CounselingSession.room_id == room_id, CounselingSession.time_start == start)
        if exclude_id is not None:
            stmt = stmt.where(CounselingSession.id != exclude_id)
        res = await self.session.execute(stmt)
        return res.scalar_one_or_none()

    async def count_for_case(self, case_id: uuid.UUID) -> int:
        res = await self.session.execute(
            select(func.count()).select_from(CounselingSession).where(
                CounselingSession.case_id == case_id, CounselingSession.session_token.is_not(None)
            )
        )
        return int(res.scalar() or 0)

    async def sessions_for_case(self, case_id: uuid.UUID, *, status: str | None = None) -> Sequence[CounselingSession]:
        q = select(CounselingSession).where(CounselingSession.case_id == case_id)
        if status:
            q = q.where(CounselingSession.status == status)
        res = await self.session.execute(q.order_by(CounselingSession.time_start.asc().nulls_last()))
        return res.scalars().all()

    async def sessions_for_cases(self, case_ids: Sequence[uuid.UUID]) -> Sequence[CounselingSession]:
        if not case_ids:
            return []
        res = await self.session.execute(
            select(CounselingSession).where(CounselingSession.case_id.in_(case_ids))
            .order_by(CounselingSession.time_start.desc().nulls_first())
        )
        return res.scalars().all()

    async def outstanding_for_cases(self, case_ids: Sequence[uuid.UUID], now: datetime) -> CounselingSession | None:
        """A booked session of these cases that has not happened yet (or has no time)."""
        if not case_ids:
            return None
        res = await self.session.execute(
            select(CounselingSession).where(
                CounselingSession.case_id.in_(case_ids),
                CounselingSession.status == "booked",
                (CounselingSession.time_start.is_(None)) | (CounselingSession.time_start > now),
            ).limit(1)
        )
        return res.scalar_one_or_none()

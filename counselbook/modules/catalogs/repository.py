import uuid
from typing import Sequence
from sqlalchemy import select, delete, insert
from sqlalchemy.ext.asyncio import AsyncSession
from counselbook.modules.catalogs.models import Room, ProblemTag, session_problem_tag

class CatalogRepository:
    def __init__(self, session: AsyncSession):
        self.s = session

    async def get_room(self, room_id: uuid.UUID) -> Room | None:
        r = await self.s.execute(select(Room).where(Room.id == room_id))
        return r.scalar_one_or_none()

    async def active_tags(self, tag_ids: Sequence[uuid.UUID]) -> Sequence[ProblemTag]:
        if not tag_ids:
            return []
        r = await self.s.execute(select(ProblemTag).where(ProblemTag.id.in_(tag_ids), ProblemTag.is_active.is_(True)))
        return r.scalars().all()

    async def tags_for_session(self, session_id: uuid.UUID) -> list[str]:
        r = await self.s.execute(
            select(ProblemTag.label)
            .join(session_problem_tag, session_problem_tag.c.tag_id == ProblemTag.id)
            .where(session_problem_tag.c.session_id == session_id)
            .order_by(ProblemTag.label.asc())
        )
        return list(r.scalars().all())

    async def replace_session_tags(self, session_id: uuid.UUID, tag_ids: Sequence[uuid.UUID]):
        await self.clear_session_tags(session_id)
        if tag_ids:
            await self.s.execute(
                insert(session_problem_tag),
                [{"session_id": session_id, "tag_id": t} for t in tag_ids],
            )

    async def clear_session_tags(self, session_id: uuid.UUID):
        await self.s.execute(delete(session_problem_tag).where(session_problem_tag.c.session_id == session_id))

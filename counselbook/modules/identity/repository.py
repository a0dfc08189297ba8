import uuid
from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession
from counselbook.modules.identity.models import User, Client, Counselor

class IdentityRepository:
    def __init__(self, session: AsyncSession):
        self.s = session

    async def get_client(self, client_id: uuid.UUID, *, for_update: bool = False) -> Client | None:
        q = select(Client).where(Client.id == client_id)
        if for_update:
            q = q.with_for_update().execution_options(populate_existing=True)
        r = await self.s.execute(q)
        return r.scalar_one_or_none()

    async def client_for_user(self, user_id: uuid.UUID) -> Client | None:
        r = await self.s.execute(select(Client).where(Client.user_id == user_id))
        return r.scalar_one_or_none()

    async def set_active_case(self, client_id: uuid.UUID, case_id: uuid.UUID | None):
        await self.s.execute(
            update(Client).where(Client.id == client_id).values(active_case_id=case_id)
            .execution_options(synchronize_session="fetch")
        )

    async def clear_active_case(self, client_id: uuid.UUID, case_id: uuid.UUID):
        # only if it still points at this case
        await self.s.execute(
            update(Client).where(Client.id == client_id, Client.active_case_id == case_id).values(active_case_id=None)
            .execution_options(synchronize_session="fetch")
        )

    async def counselor_display_name(self, counselor_id: uuid.UUID | None) -> str | None:
        if counselor_id is None:
            return None
        r = await self.s.execute(
            select(User.first_name, User.last_name).join(Counselor, Counselor.user_id == User.id).where(Counselor.id == counselor_id)
        )
        row = r.first()
        return f"{row.first_name} {row.last_name}" if row else None

    async def client_display_name(self, client_id: uuid.UUID) -> str | None:
        r = await self.s.execute(
            select(User.first_name, User.last_name).join(Client, Client.user_id == User.id).where(Client.id == client_id)
        )
        row = r.first()
        return f"{row.first_name} {row.last_name}" if row else None

    async def counselor_ids_by_name(self, name: str) -> list[uuid.UUID]:
        # "First Last", or either part on its own
        needle = f"%{name.strip()}%"
        full = User.first_name + " " + User.last_name
        r = await self.s.execute(
            select(Counselor.id).join(User, Counselor.user_id == User.id)
            .where(or_(full.ilike(needle), User.first_name.ilike(needle), User.last_name.ilike(needle)))
        )
        return list(r.scalars().all())

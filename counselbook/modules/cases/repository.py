import uuid
from datetime import datetime
from typing import Sequence
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
from counselbook.modules.cases.models import Case, RegistrationCode

class CaseRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **data) -> Case:
        obj = Case(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, case_id: uuid.UUID, *, for_update: bool = False) -> Case | None:
        q = select(Case).where(Case.id == case_id)
        if for_update:
            q = q.with_for_update().execution_options(populate_existing=True)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def for_client(self, client_id: uuid.UUID) -> Sequence[Case]:
        res = await self.session.execute(
            select(Case).where(Case.client_id == client_id).order_by(Case.created_at.desc())
        )
        return res.scalars().all()

    async def ids_for_client(self, client_id: uuid.UUID) -> list[uuid.UUID]:
        res = await self.session.execute(select(Case.id).where(Case.client_id == client_id))
        return list(res.scalars().all())

    async def greatest_token(self, prefix: str) -> str | None:
        # longer tokens sort after shorter ones once the running number passes 9999
        res = await self.session.execute(
            select(Case.queue_token)
            .where(Case.queue_token.like(f"{prefix}%"))
            .order_by(func.length(Case.queue_token).desc(), Case.queue_token.desc())
            .limit(1)
        )
        return res.scalar_one_or_none()

    async def set_token(self, case_id: uuid.UUID, token: str) -> bool:
        res = await self.session.execute(
            update(Case).where(Case.id == case_id, Case.queue_token.is_(None)).values(queue_token=token)
            .execution_options(synchronize_session="fetch")
        )
        return res.rowcount == 1

    async def set_status(self, case_id: uuid.UUID, status: str, *, expected: Sequence[str] | None = None, **extra) -> bool:
        q = update(Case).where(Case.id == case_id)
        if expected is not None:
            q = q.where(Case.status.in_(expected))
        res = await self.session.execute(q.values(status=status, **extra).execution_options(synchronize_session="fetch"))
        return res.rowcount == 1

    async def with_tokens(self, *, descending: bool = False, limit: int = 500) -> Sequence[Case]:
        order = Case.queue_token.desc() if descending else Case.queue_token.asc()
        res = await self.session.execute(
            select(Case).where(Case.queue_token.is_not(None)).order_by(order).limit(limit)
        )
        return res.scalars().all()

    # ---- registration codes ----

    async def get_code(self, code: str) -> RegistrationCode | None:
        res = await self.session.execute(select(RegistrationCode).where(RegistrationCode.code == code))
        return res.scalar_one_or_none()

    async def redeem_code(self, code: str, client_id: uuid.UUID, at: datetime) -> bool:
        """Flip is_used exactly once; a concurrent redeemer sees zero rows."""
        res = await self.session.execute(
            update(RegistrationCode)
            .where(RegistrationCode.code == code, RegistrationCode.is_used.is_(False))
            .values(is_used=True, used_at=at, used_by_client_id=client_id)
            .execution_options(synchronize_session="fetch")
        )
        return res.rowcount == 1

    async def add_codes(self, codes: Sequence[str], created_by: uuid.UUID | None) -> list[RegistrationCode]:
        objs = [RegistrationCode(code=c, is_used=False, created_by=created_by) for c in codes]
        self.session.add_all(objs)
        await self.session.flush()
        return objs

    async def existing_codes(self, codes: Sequence[str]) -> set[str]:
        if not codes:
            return set()
        res = await self.session.execute(select(RegistrationCode.code).where(RegistrationCode.code.in_(codes)))
        return set(res.scalars().all())

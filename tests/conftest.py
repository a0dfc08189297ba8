import os

# settings are read at import time, so point them at the test database first
os.environ["ENV"] = "test"
os.environ["DATABASE_DSN"] = "sqlite+aiosqlite://"
os.environ["DB_MANAGE"] = "create_all"
os.environ["OUTBOX_RELAY_ENABLED"] = "false"
os.environ["EVENT_BUS_PROVIDER"] = "noop"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["ENFORCE_WORKING_HOURS"] = "false"

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient, ASGITransport
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from counselbook.core.config import settings
from counselbook.core.db import make_engine, load_models, get_session
from counselbook.core.security import Principal
from counselbook.modules.cases.models import RegistrationCode
from counselbook.modules.catalogs.models import Room, ProblemTag
from counselbook.modules.identity.models import User, Client, Counselor
from counselbook.modules.slots.models import CounselingSession

UTC = timezone.utc

# Monday 2 March 2026, 08:00 in Bangkok
T0 = datetime(2026, 3, 2, 1, 0, tzinfo=UTC)

class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kw):
        self.now = self.now + timedelta(**kw)

@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(T0)

@pytest.fixture
async def engine():
    eng = make_engine("sqlite+aiosqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    metadata = load_models()
    async with eng.begin() as conn:
        await conn.run_sync(metadata.create_all)
    yield eng
    await eng.dispose()

@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s

class Seed:
    """Inserts reference rows directly, bypassing the services."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self._n = 0

    def _next(self) -> int:
        self._n += 1
        return self._n

    async def _user(self, role: str, first: str, last: str) -> User:
        n = self._next()
        user = User(account=f"{role}{n}@uni.example.ac.th", first_name=first, last_name=last, role=role)
        self.session.add(user)
        await self.session.flush()
        return user

    async def client(self, first: str = "Somchai", last: str = "Jaidee") -> Principal:
        user = await self._user("client", first, last)
        client = Client(user_id=user.id, client_code=f"C{self._next():05d}", major="Engineering")
        self.session.add(client)
        await self.session.commit()
        return Principal(user_id=user.id, role="client", client_id=client.id)

    async def client_user_without_profile(self) -> Principal:
        user = await self._user("client", "No", "Profile")
        await self.session.commit()
        return Principal(user_id=user.id, role="client")

    async def counselor(self, first: str = "Malee", last: str = "Srisuk") -> Principal:
        user = await self._user("counselor", first, last)
        counselor = Counselor(user_id=user.id, counselor_number=f"N{self._next():03d}")
        self.session.add(counselor)
        await self.session.commit()
        return Principal(user_id=user.id, role="counselor", counselor_id=counselor.id)

    async def admin(self) -> Principal:
        user = await self._user("admin", "Ad", "Min")
        await self.session.commit()
        return Principal(user_id=user.id, role="admin")

    async def room(self, name: str | None = None, active: bool = True) -> Room:
        room = Room(room_name=name or f"Room {self._next()}", is_active=active)
        self.session.add(room)
        await self.session.commit()
        return room

    async def tag(self, label: str, active: bool = True) -> ProblemTag:
        tag = ProblemTag(label=label, is_active=active)
        self.session.add(tag)
        await self.session.commit()
        return tag

    async def slot(self, counselor: Principal | None, start: datetime | None, *, room: Room | None = None,
                   status: str = "available", minutes: int = 60) -> CounselingSession:
        obj = CounselingSession(
            counselor_id=counselor.counselor_id if counselor else None,
            room_id=room.id if room else None,
            time_start=start,
            time_end=start + timedelta(minutes=minutes) if start else None,
            status=status,
        )
        self.session.add(obj)
        await self.session.commit()
        return obj

    async def code(self, code: str | None = None) -> str:
        code = code or f"CODE{self._next():04d}"
        self.session.add(RegistrationCode(code=code, is_used=False))
        await self.session.commit()
        return code

@pytest.fixture
def seed(session) -> Seed:
    return Seed(session)

def token_for(principal: Principal) -> str:
    claims = {"sub": str(principal.user_id), "role": principal.role}
    if principal.client_id:
        claims["client_id"] = str(principal.client_id)
    if principal.counselor_id:
        claims["counselor_id"] = str(principal.counselor_id)
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

@pytest.fixture
def auth():
    def headers(principal: Principal) -> dict:
        return {"Authorization": f"Bearer {token_for(principal)}"}
    return headers

@pytest.fixture
async def api(session_factory):
    from counselbook.main import app

    async def _session():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_session] = _session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()

"""Concurrent callers on a file-backed SQLite database, each on its own connection."""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from counselbook.core.db import make_engine, load_models
from counselbook.core.errors import Conflict
from counselbook.modules.bookings.schemas import BookRequest
from counselbook.modules.bookings.service import BookingService
from counselbook.modules.cases.models import Case
from counselbook.modules.slots.repository import SlotRepository
from conftest import Seed

CALLERS = 8

@pytest.fixture
async def file_db(tmp_path):
    engines = []

    async def open_db(begin: str = "BEGIN"):
        eng = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'race.db'}", sqlite_begin=begin, connect_args={"timeout": 30})
        engines.append(eng)
        async with eng.begin() as conn:
            await conn.run_sync(load_models().create_all)
        return async_sessionmaker(eng, expire_on_commit=False, class_=AsyncSession)

    yield open_db
    for eng in engines:
        await eng.dispose()

@pytest.fixture
async def race_db(file_db):
    return await file_db()

@pytest.fixture
async def serial_db(file_db):
    return await file_db("BEGIN IMMEDIATE")

async def _seed(factory, clients: int):
    async with factory() as s:
        seed = Seed(s)
        counselor = await seed.counselor()
        people = [await seed.client(f"Client{i}", "Race") for i in range(clients)]
        slot_id = (await seed.slot(counselor, datetime.now(timezone.utc) + timedelta(days=2))).id
    return people, slot_id

async def test_only_one_reserve_wins(race_db):
    _, slot_id = await _seed(race_db, 0)

    async def reserve():
        async with race_db() as s:
            async with s.begin():
                return await SlotRepository(s).reserve(slot_id)

    results = await asyncio.gather(*(reserve() for _ in range(CALLERS)))
    assert results.count(True) == 1
    assert results.count(False) == CALLERS - 1

async def test_one_winner_per_slot_under_concurrent_bookings(serial_db):
    clients, slot_id = await _seed(serial_db, CALLERS)

    async def attempt(principal):
        async with serial_db() as s:
            try:
                return await BookingService(s).book(principal, BookRequest(session_id=slot_id))
            except Conflict:
                return None

    results = await asyncio.gather(*(attempt(c) for c in clients))
    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    assert results.count(None) == CALLERS - 1

    async with serial_db() as s:
        slot = await SlotRepository(s).get(slot_id)
        assert slot.status == "booked"
        assert slot.case_id == winners[0].case_id
        # losers roll back their case rows along with everything else
        assert (await s.execute(select(func.count()).select_from(Case))).scalar_one() == 1

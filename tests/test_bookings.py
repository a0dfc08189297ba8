import uuid
from datetime import date, timedelta

import pytest
from sqlalchemy import select

from counselbook.core.errors import NotFound, Conflict, Forbidden, InvalidInput, SLOT_TAKEN
from counselbook.core.timeutil import local_datetime
from counselbook.modules.bookings.schemas import BookRequest
from counselbook.modules.bookings.service import BookingService
from counselbook.modules.cases.models import Case
from counselbook.modules.events.outbox import EventOutbox
from counselbook.modules.history.service import HistoryService
from counselbook.modules.identity.models import Client
from counselbook.modules.slots.repository import SlotRepository
from counselbook.modules.slots.service import SlotService

TUESDAY = date(2026, 3, 3)

@pytest.fixture
def bookings(session, clock):
    return BookingService(session, clock=clock)

async def _client_row(session, client_id) -> Client:
    res = await session.execute(select(Client).where(Client.id == client_id).execution_options(populate_existing=True))
    return res.scalar_one()

async def _case_row(session, case_id) -> Case:
    res = await session.execute(select(Case).where(Case.id == case_id).execution_options(populate_existing=True))
    return res.scalar_one()

async def _events(session) -> list[str]:
    res = await session.execute(select(EventOutbox.event_type))
    return sorted(res.scalars().all())

# ---- booking ----

async def test_booking_reserves_and_opens_a_case(bookings, seed, session, clock):
    client = await seed.client()
    counselor = await seed.counselor()
    room = await seed.room("Room A")
    slot_id = (await seed.slot(counselor, clock() + timedelta(days=2), room=room)).id

    conf = await bookings.book(client, BookRequest(session_id=slot_id, description="exam stress", metadata={"source": "line"}))

    assert conf.session_id == slot_id
    assert conf.queue_token == "680001"
    assert conf.session_token == "680001-001"
    assert conf.counselor_name == "Malee Srisuk"
    assert conf.room_name == "Room A"

    slot = await SlotRepository(session).get(slot_id)
    assert slot.status == "booked"
    assert slot.case_id == conf.case_id
    assert slot.session_token == "680001-001"

    case = await _case_row(session, conf.case_id)
    assert case.status == "booked"
    assert case.counselor_id == counselor.counselor_id
    assert case.description == "exam stress"
    assert (await _client_row(session, client.client_id)).active_case_id == case.id

    history = await HistoryService(session).for_session(slot_id)
    assert [h.action for h in history] == ["CLIENT_BOOKED"]
    assert history[0].details.session_token == "680001-001"
    assert history[0].details.metadata == {"source": "line"}
    assert await _events(session) == ["BOOKING_CREATED"]

async def test_one_outstanding_booking_per_client(bookings, seed, clock):
    client = await seed.client()
    counselor = await seed.counselor()
    first_id = (await seed.slot(counselor, clock() + timedelta(days=2))).id
    second_id = (await seed.slot(counselor, clock() + timedelta(days=3))).id

    await bookings.book(client, BookRequest(session_id=first_id))
    with pytest.raises(Conflict):
        await bookings.book(client, BookRequest(session_id=second_id))

async def test_second_client_loses_the_slot(bookings, seed, session, clock):
    first = await seed.client()
    second = await seed.client("Suda", "Kaew")
    counselor = await seed.counselor()
    slot_id = (await seed.slot(counselor, clock() + timedelta(days=2))).id

    winner = await bookings.book(first, BookRequest(session_id=slot_id))
    with pytest.raises(Conflict) as exc:
        await bookings.book(second, BookRequest(session_id=slot_id))
    assert exc.value.message == SLOT_TAKEN

    slot = await SlotRepository(session).get(slot_id)
    assert slot.case_id == winner.case_id
    # the loser is left without a case
    assert (await _client_row(session, second.client_id)).active_case_id is None

async def test_closed_and_past_slots_cannot_be_booked(bookings, seed, clock):
    client = await seed.client()
    counselor = await seed.counselor()
    closed_id = (await seed.slot(counselor, clock() + timedelta(days=2), status="closed")).id
    past_id = (await seed.slot(counselor, clock() - timedelta(hours=1))).id

    with pytest.raises(Conflict):
        await bookings.book(client, BookRequest(session_id=closed_id))
    with pytest.raises(InvalidInput):
        await bookings.book(client, BookRequest(session_id=past_id))
    with pytest.raises(NotFound):
        await bookings.book(client, BookRequest(session_id=uuid.uuid4()))

async def test_only_clients_book(bookings, seed, clock):
    counselor = await seed.counselor()
    slot_id = (await seed.slot(counselor, clock() + timedelta(days=2))).id
    with pytest.raises(Forbidden):
        await bookings.book(counselor, BookRequest(session_id=slot_id))

async def test_booking_by_date_and_time(bookings, seed):
    client = await seed.client()
    malee = await seed.counselor("Malee", "Srisuk")
    anan = await seed.counselor("Anan", "Wong")
    await seed.slot(malee, local_datetime(TUESDAY, "10:00"))
    anan_slot_id = (await seed.slot(anan, local_datetime(TUESDAY, "10:00"))).id

    with pytest.raises(Conflict):
        await bookings.book(client, BookRequest(date=TUESDAY, time="10:00"))

    conf = await bookings.book(client, BookRequest(date=TUESDAY, time="10:00", counselor_name="wong"))
    assert conf.session_id == anan_slot_id
    assert conf.counselor_name == "Anan Wong"

def test_book_request_needs_a_target():
    with pytest.raises(ValueError):
        BookRequest(date=TUESDAY)
    with pytest.raises(ValueError):
        BookRequest(date=TUESDAY, time="25:00")

async def test_active_case_is_reused_after_a_completed_session(bookings, seed, session, clock):
    client = await seed.client()
    counselor = await seed.counselor()
    first_id = (await seed.slot(counselor, clock() + timedelta(days=2))).id
    second_id = (await seed.slot(counselor, clock() + timedelta(days=9))).id

    first = await bookings.book(client, BookRequest(session_id=first_id))
    await SlotService(session, clock=clock).complete_session(counselor, first_id)

    second = await bookings.book(client, BookRequest(session_id=second_id))
    assert second.case_id == first.case_id
    assert second.queue_token == first.queue_token
    assert second.session_token == "680001-002"

async def test_redeemed_case_is_used_by_the_first_booking(bookings, seed, session, clock):
    client = await seed.client()
    counselor = await seed.counselor()
    await seed.code("FIRST001")
    case_id = (await bookings.case_service.open_case_from_code(client, "FIRST001")).id
    slot_id = (await seed.slot(counselor, clock() + timedelta(days=2))).id

    conf = await bookings.book(client, BookRequest(session_id=slot_id))
    assert conf.case_id == case_id
    assert (await _case_row(session, case_id)).status == "waiting_confirmation"

# ---- cancellation ----

async def test_client_cancellation_is_atomic(bookings, seed, session, clock):
    client = await seed.client()
    counselor = await seed.counselor()
    slot_id = (await seed.slot(counselor, clock() + timedelta(days=2))).id
    conf = await bookings.book(client, BookRequest(session_id=slot_id))

    out = await bookings.cancel(client, slot_id)

    assert out.case_status == "cancelled"
    assert out.slot_status == "available"
    slot = await SlotRepository(session).get(slot_id)
    assert slot.status == "available"
    assert slot.case_id is None
    assert slot.session_token is None
    assert (await _case_row(session, conf.case_id)).status == "cancelled"
    assert (await _client_row(session, client.client_id)).active_case_id is None

    history = await HistoryService(session).for_session(slot_id)
    assert [h.action for h in history] == ["CLIENT_CANCELLED", "CLIENT_BOOKED"]
    assert history[0].details.by == "client"
    assert history[0].details.session_token == "680001-001"
    assert history[0].details.booked_name == "Somchai Jaidee"
    assert await _events(session) == ["BOOKING_CANCELLED", "BOOKING_CREATED"]

    # the case history keeps the cancelled visit after the slot is released
    case_history = await HistoryService(session).for_case(conf.case_id)
    assert {h.action for h in case_history} == {"CLIENT_CANCELLED", "CLIENT_BOOKED"}

async def test_released_slot_can_be_booked_again(bookings, seed, clock):
    first = await seed.client()
    second = await seed.client("Suda", "Kaew")
    counselor = await seed.counselor()
    slot_id = (await seed.slot(counselor, clock() + timedelta(days=2))).id

    await bookings.book(first, BookRequest(session_id=slot_id))
    await bookings.cancel(first, slot_id)
    conf = await bookings.book(second, BookRequest(session_id=slot_id))
    assert conf.queue_token == "680002"

async def test_cancellation_lead_time_boundary(bookings, seed, session, clock):
    client = await seed.client()
    late_client = await seed.client("Suda", "Kaew")
    counselor = await seed.counselor()
    ok_id = (await seed.slot(counselor, clock() + timedelta(hours=24))).id
    late_id = (await seed.slot(counselor, clock() + timedelta(hours=23, minutes=59))).id

    await bookings.book(client, BookRequest(session_id=ok_id))
    await bookings.book(late_client, BookRequest(session_id=late_id))

    out = await bookings.cancel(client, ok_id)
    assert out.slot_status == "available"

    with pytest.raises(InvalidInput):
        await bookings.cancel(late_client, late_id)
    assert (await SlotRepository(session).get(late_id)).status == "booked"

async def test_counselor_cancels_without_lead_time(bookings, seed, clock):
    client = await seed.client()
    counselor = await seed.counselor()
    slot_id = (await seed.slot(counselor, clock() + timedelta(hours=2))).id
    await bookings.book(client, BookRequest(session_id=slot_id))

    out = await bookings.cancel(counselor, slot_id)
    assert out.case_status == "cancelled"

    history = await HistoryService(bookings.session).for_session(slot_id)
    assert history[0].action == "COUNSELOR_CANCELLED"
    assert history[0].details.by == "counselor"

async def test_strangers_cannot_cancel(bookings, seed, clock):
    owner = await seed.client()
    stranger = await seed.client("Suda", "Kaew")
    counselor = await seed.counselor()
    other_counselor = await seed.counselor("Anan", "Wong")
    admin = await seed.admin()
    slot_id = (await seed.slot(counselor, clock() + timedelta(days=3))).id
    await bookings.book(owner, BookRequest(session_id=slot_id))

    with pytest.raises(Forbidden):
        await bookings.cancel(stranger, slot_id)
    with pytest.raises(Forbidden):
        await bookings.cancel(other_counselor, slot_id)

    out = await bookings.cancel(admin, slot_id)
    assert out.slot_status == "available"

async def test_cancelling_an_unbooked_slot(bookings, seed, clock):
    counselor = await seed.counselor()
    slot_id = (await seed.slot(counselor, clock() + timedelta(days=2))).id
    with pytest.raises(Conflict):
        await bookings.cancel(counselor, slot_id)
    with pytest.raises(NotFound):
        await bookings.cancel(counselor, uuid.uuid4())

# ---- reads ----

async def test_client_bookings_show_each_state(bookings, seed, session, clock):
    client = await seed.client()
    counselor = await seed.counselor()
    done_id = (await seed.slot(counselor, clock() + timedelta(days=2))).id
    next_id = (await seed.slot(counselor, clock() + timedelta(days=9))).id

    await bookings.book(client, BookRequest(session_id=done_id))
    await SlotService(session, clock=clock).complete_session(counselor, done_id)
    await bookings.book(client, BookRequest(session_id=next_id))

    cases = await bookings.client_bookings(client)
    assert len(cases) == 1
    states = {s.session_id: s.state for s in cases[0].sessions}
    assert states == {done_id: "completed", next_id: "upcoming"}

    clock.advance(days=3)
    await bookings.cancel(client, next_id)
    cases = await bookings.client_bookings(client)
    assert cases[0].status == "cancelled"
    # the released slot leaves the case, the finished visit stays
    assert [(s.session_id, s.state) for s in cases[0].sessions] == [(done_id, "completed")]

async def test_search_lists_open_future_slots(bookings, seed, clock):
    counselor = await seed.counselor()
    open_id = (await seed.slot(counselor, local_datetime(TUESDAY, "10:00"))).id
    await seed.slot(counselor, local_datetime(TUESDAY, "11:00"), status="closed")
    await seed.slot(counselor, clock() - timedelta(hours=1))

    found = await bookings.search(TUESDAY)
    assert [s.id for s in found] == [open_id]

import uuid
from datetime import datetime, timedelta, timezone

from counselbook.core.config import settings

API = settings.API_PREFIX

def _in(**kw) -> datetime:
    # routes run on the wall clock
    return datetime.now(timezone.utc).replace(microsecond=0) + timedelta(**kw)

async def test_health(api):
    r = await api.get(f"{API}/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}

async def test_token_is_required(api):
    r = await api.post(f"{API}/bookings", json={"session_id": str(uuid.uuid4())})
    assert r.status_code == 401

async def test_request_id_is_echoed(api):
    r = await api.get(f"{API}/health", headers={"x-request-id": "abc-123"})
    assert r.headers["x-request-id"] == "abc-123"

async def test_booking_over_http(api, seed, auth):
    first = await seed.client()
    second = await seed.client("Suda", "Kaew")
    counselor = await seed.counselor()
    slot_id = str((await seed.slot(counselor, _in(days=3))).id)

    r = await api.post(f"{API}/bookings", json={"session_id": slot_id, "description": "homesick"}, headers=auth(first))
    assert r.status_code == 201
    body = r.json()
    assert body["session_id"] == slot_id
    assert body["session_token"] == body["queue_token"] + "-001"
    assert body["counselor_name"] == "Malee Srisuk"

    r = await api.post(f"{API}/bookings", json={"session_id": slot_id}, headers=auth(second))
    assert r.status_code == 409
    assert r.json()["error"] == "conflict"

    r = await api.get(f"{API}/bookings/mine", headers=auth(first))
    assert r.status_code == 200
    assert r.json()[0]["sessions"][0]["state"] == "upcoming"

    r = await api.get(f"{API}/sessions/{slot_id}/history", headers=auth(counselor))
    assert [h["action"] for h in r.json()] == ["CLIENT_BOOKED"]

async def test_cancel_over_http(api, seed, auth):
    client = await seed.client()
    counselor = await seed.counselor()
    slot_id = str((await seed.slot(counselor, _in(days=3))).id)
    r = await api.post(f"{API}/bookings", json={"session_id": slot_id}, headers=auth(client))
    assert r.status_code == 201

    r = await api.post(f"{API}/bookings/{slot_id}/cancel", headers=auth(client))
    assert r.status_code == 200
    assert r.json()["case_status"] == "cancelled"
    assert r.json()["slot_status"] == "available"

    r = await api.post(f"{API}/bookings/{slot_id}/cancel", headers=auth(client))
    assert r.status_code == 409

async def test_late_client_cancel_is_rejected(api, seed, auth):
    client = await seed.client()
    counselor = await seed.counselor()
    slot_id = str((await seed.slot(counselor, _in(hours=5))).id)
    await api.post(f"{API}/bookings", json={"session_id": slot_id}, headers=auth(client))

    r = await api.post(f"{API}/bookings/{slot_id}/cancel", headers=auth(client))
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_input"
    assert "24" in r.json()["message"]

async def test_unknown_session_is_404(api, seed, auth):
    client = await seed.client()
    r = await api.post(f"{API}/bookings", json={"session_id": str(uuid.uuid4())}, headers=auth(client))
    assert r.status_code == 404
    assert r.json()["error"] == "not_found"

async def test_past_slot_is_400(api, seed, auth):
    client = await seed.client()
    counselor = await seed.counselor()
    slot_id = str((await seed.slot(counselor, _in(hours=-2))).id)
    r = await api.post(f"{API}/bookings", json={"session_id": slot_id}, headers=auth(client))
    assert r.status_code == 400

async def test_malformed_booking_request(api, seed, auth):
    client = await seed.client()
    r = await api.post(f"{API}/bookings", json={"date": "2026-03-03"}, headers=auth(client))
    assert r.status_code == 422

async def test_clients_are_kept_off_staff_routes(api, seed, auth):
    client = await seed.client()
    r = await api.post(f"{API}/slots", json={"time_start": _in(days=2).isoformat()}, headers=auth(client))
    assert r.status_code == 403
    r = await api.get(f"{API}/cases/queue-tokens", headers=auth(client))
    assert r.status_code == 403
    r = await api.get(f"{API}/sessions/{uuid.uuid4()}/history", headers=auth(client))
    assert r.status_code == 403

async def test_counselor_creates_and_toggles_a_slot(api, seed, auth):
    counselor = await seed.counselor()
    r = await api.post(f"{API}/slots", json={"time_start": _in(days=2).isoformat()}, headers=auth(counselor))
    assert r.status_code == 201
    slot = r.json()
    assert slot["status"] == "available"

    r = await api.post(f"{API}/slots/{slot['id']}/toggle", headers=auth(counselor))
    assert r.status_code == 200
    assert r.json()["status"] == "closed"

    # closed slots cannot be deleted at all
    r = await api.delete(f"{API}/slots/{slot['id']}", headers=auth(counselor))
    assert r.status_code == 400

    r = await api.post(f"{API}/slots/{slot['id']}/toggle", headers=auth(counselor))
    assert r.json()["status"] == "available"

    # reopened, but the toggles are on record
    r = await api.delete(f"{API}/slots/{slot['id']}", headers=auth(counselor))
    assert r.status_code == 409

async def test_redeem_code_over_http(api, seed, auth):
    client = await seed.client()
    code = await seed.code("HTTP0001")
    r = await api.post(f"{API}/cases/redeem", json={"code": code}, headers=auth(client))
    assert r.status_code == 201
    case = r.json()
    assert case["status"] == "waiting_confirmation"

    r = await api.get(f"{API}/cases/{case['id']}", headers=auth(client))
    assert r.status_code == 200

    stranger = await seed.client("Suda", "Kaew")
    r = await api.get(f"{API}/cases/{case['id']}", headers=auth(stranger))
    assert r.status_code == 403

    r = await api.post(f"{API}/cases/redeem", json={"code": code}, headers=auth(stranger))
    assert r.status_code == 409

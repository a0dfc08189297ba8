"""Typed audit payloads, one model per kind of history record."""
import uuid
import datetime as dt
from datetime import date
from typing import Annotated, Any, Literal, Union
from pydantic import BaseModel, Field, TypeAdapter

class BookingCreated(BaseModel):
    kind: Literal["booking_created"] = "booking_created"
    client_id: uuid.UUID
    case_id: uuid.UUID
    queue_token: str
    session_token: str
    description: str | None = None
    metadata: dict[str, Any] | None = None

class Cancelled(BaseModel):
    kind: Literal["cancelled"] = "cancelled"
    by: Literal["client", "counselor", "admin"]
    case_id: uuid.UUID | None
    previous_status: str
    session_token: str | None = None
    booked_name: str | None = None

class NoteUpdated(BaseModel):
    kind: Literal["note_updated"] = "note_updated"
    before: dict[str, Any]
    after: dict[str, Any]

class StatusChanged(BaseModel):
    kind: Literal["status_changed"] = "status_changed"
    case_id: uuid.UUID
    previous_status: str
    new_status: str
    reason: str | None = None

class SlotToggled(BaseModel):
    kind: Literal["slot_toggled"] = "slot_toggled"
    from_status: str
    to_status: str
    room_id: uuid.UUID | None = None
    date: dt.date | None = None
    time: str | None = None

class BulkWeekChanged(BaseModel):
    kind: Literal["bulk_week"] = "bulk_week"
    room_id: uuid.UUID
    week_start: date
    make_available: bool
    changed_count: int

class SessionCompleted(BaseModel):
    kind: Literal["session_completed"] = "session_completed"
    case_id: uuid.UUID | None

HistoryPayload = Annotated[
    Union[BookingCreated, Cancelled, NoteUpdated, StatusChanged, SlotToggled, BulkWeekChanged, SessionCompleted],
    Field(discriminator="kind"),
]

_adapter: TypeAdapter[HistoryPayload] = TypeAdapter(HistoryPayload)

def dump_payload(payload: HistoryPayload) -> str:
    return payload.model_dump_json()

def load_payload(raw: str | None) -> HistoryPayload | None:
    if not raw:
        return None
    return _adapter.validate_json(raw)

import uuid
import datetime as dt
from datetime import datetime
from typing import Any, Literal
from pydantic import BaseModel, Field, field_validator, model_validator
from counselbook.modules.slots.schemas import _check_hhmm

class BookRequest(BaseModel):
    """Either a session id, or a date and time (narrowed by counselor when several match)."""
    session_id: uuid.UUID | None = None
    date: dt.date | None = None
    time: str | None = None
    counselor_name: str | None = Field(default=None, max_length=240)
    counselor_id: uuid.UUID | None = None
    description: str | None = Field(default=None, max_length=2000)
    metadata: dict[str, Any] | None = None

    @field_validator("time")
    @classmethod
    def _hhmm(cls, v: str | None) -> str | None:
        return _check_hhmm(v) if v is not None else v

    @model_validator(mode="after")
    def _target(self):
        if self.session_id is None and (self.date is None or self.time is None):
            raise ValueError("session_id or date and time are required")
        return self

class BookingConfirmation(BaseModel):
    session_id: uuid.UUID
    time_start: datetime | None = None
    time_end: datetime | None = None
    counselor_name: str | None = None
    room_name: str | None = None
    case_id: uuid.UUID
    queue_token: str
    session_token: str

class CancellationOut(BaseModel):
    session_id: uuid.UUID
    case_id: uuid.UUID
    case_status: str
    slot_status: str

class BookedSessionOut(BaseModel):
    session_id: uuid.UUID
    time_start: datetime | None = None
    time_end: datetime | None = None
    counselor_name: str | None = None
    room_name: str | None = None
    session_token: str | None = None
    status: str
    state: Literal["upcoming", "completed", "cancelled"]

class ClientCaseOut(BaseModel):
    case_id: uuid.UUID
    status: str
    queue_token: str | None = None
    created_at: datetime
    sessions: list[BookedSessionOut] = []

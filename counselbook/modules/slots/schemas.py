import uuid
import re
import datetime as dt
from datetime import date, datetime
from pydantic import BaseModel, Field, field_validator

_HHMM = re.compile(r"^\d{2}:\d{2}$")

def _check_hhmm(v: str) -> str:
    if not _HHMM.match(v):
        raise ValueError("time must be HH:MM")
    hh, mm = (int(x) for x in v.split(":"))
    if hh > 23 or mm > 59:
        raise ValueError("time must be HH:MM")
    return v

class SlotCreate(BaseModel):
    time_start: datetime
    duration_minutes: int = Field(default=60, ge=15, le=480)
    room_id: uuid.UUID | None = None
    session_name: str | None = Field(default=None, max_length=120)
    counselor_id: uuid.UUID | None = None  # admins only; counselors always create for themselves

class SlotUpdate(BaseModel):
    time_start: datetime | None = None
    room_id: uuid.UUID | None = None
    session_name: str | None = Field(default=None, max_length=120)

class NotesUpdate(BaseModel):
    counselor_keyword: str | None = Field(default=None, max_length=200)
    counselor_note: str | None = None
    counselor_followup: str | None = None
    mood_scale: int | None = Field(default=None, ge=0, le=10)
    tag_ids: list[uuid.UUID] | None = None

class PortalToggle(BaseModel):
    room_id: uuid.UUID
    date: dt.date
    time: str

    @field_validator("time")
    @classmethod
    def _hhmm(cls, v: str) -> str:
        return _check_hhmm(v)

class BulkWeek(BaseModel):
    room_id: uuid.UUID
    week_start: date
    make_available: bool

class BulkWeekResult(BaseModel):
    room_id: uuid.UUID
    week_start: date
    make_available: bool
    changed_count: int
    skipped_booked: int

class SlotOut(BaseModel):
    id: uuid.UUID
    counselor_id: uuid.UUID | None = None
    room_id: uuid.UUID | None = None
    session_name: str | None = None
    time_start: datetime | None = None
    time_end: datetime | None = None
    status: str
    case_id: uuid.UUID | None = None
    session_token: str | None = None
    class Config:
        from_attributes = True

class SlotDetailOut(SlotOut):
    counselor_keyword: str | None = None
    counselor_note: str | None = None
    counselor_followup: str | None = None
    mood_scale: int | None = None
    problem_tags: list[str] = []

class AvailableSlotOut(BaseModel):
    id: uuid.UUID
    time_start: datetime
    time_end: datetime | None = None
    counselor_id: uuid.UUID | None = None
    counselor_name: str | None = None
    room_id: uuid.UUID | None = None

class WeekBlock(BaseModel):
    session_id: uuid.UUID
    date: dt.date
    time: str
    status: str
    booked_by: str | None = None
    session_token: str | None = None

class WeekScheduleOut(BaseModel):
    room_id: uuid.UUID
    room_name: str
    week_start: date
    times: list[str]
    blocks: list[WeekBlock]

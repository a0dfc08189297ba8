import uuid
from datetime import datetime
from typing import Literal
from pydantic import BaseModel, Field

class CodeRedeem(BaseModel):
    code: str = Field(min_length=1, max_length=32)

class CaseStatusChange(BaseModel):
    # "postponed" is accepted and stored as "rescheduled"
    status: Literal["confirmed", "rescheduled", "postponed", "cancelled"]
    reason: str | None = Field(default=None, max_length=500)

class CaseOut(BaseModel):
    id: uuid.UUID
    client_id: uuid.UUID
    counselor_id: uuid.UUID | None = None
    status: str
    priority: str
    queue_token: str | None = None
    description: str | None = None
    confirmed_at: datetime | None = None
    waiting_entered_at: datetime | None = None
    created_at: datetime
    class Config:
        from_attributes = True

class QueueTokenOut(BaseModel):
    case_id: uuid.UUID
    queue_token: str

class IssueCodes(BaseModel):
    count: int = Field(default=1, ge=1, le=500)

class CodesOut(BaseModel):
    codes: list[str]

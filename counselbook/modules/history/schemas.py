import uuid
from datetime import datetime
from pydantic import BaseModel
from counselbook.modules.history.payloads import HistoryPayload

class HistoryEntryOut(BaseModel):
    id: int
    session_id: uuid.UUID
    case_id: uuid.UUID | None = None
    action: str
    details: HistoryPayload | None = None
    edited_by: uuid.UUID
    timestamp: datetime

import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, TIMESTAMP, ForeignKey, Integer
from counselbook.core.base import Base
from counselbook.core.timeutil import utcnow

class SessionHistory(Base):
    """Append-only audit trail of session mutations. Rows are never updated or deleted."""
    __tablename__ = "session_history"

    # integer key: insertion order breaks timestamp ties
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("counseling_session.id", ondelete="RESTRICT"), index=True)
    case_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(48))  # CLIENT_BOOKED, CLIENT_CANCELLED, COUNSELOR_NOTE_UPDATED, ...
    details: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON of a HistoryPayload
    edited_by: Mapped[uuid.UUID] = mapped_column()
    timestamp: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow)

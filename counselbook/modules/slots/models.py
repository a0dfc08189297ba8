import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, Integer, TIMESTAMP, ForeignKey, UniqueConstraint
from counselbook.core.base import Base, TimestampedMixin

SLOT_STATUSES = ("available", "closed", "booked", "completed", "cancelled")

class CounselingSession(Base, TimestampedMixin):
    """A bookable calendar slot (not a login session)."""
    __tablename__ = "counseling_session"
    __table_args__ = (UniqueConstraint("room_id", "time_start", name="uq_session_room_start"),)

    counselor_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("counselor.id"), nullable=True, index=True)
    room_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("room.id", ondelete="SET NULL"), nullable=True)
    session_name: Mapped[str | None] = mapped_column(String(120), nullable=True)

    # portal-toggled slots may exist unscheduled
    time_start: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True, index=True)
    time_end: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    status: Mapped[str] = mapped_column(String(16), default="available")  # available, closed, booked, completed, cancelled
    case_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("case.id"), nullable=True, index=True)
    session_token: Mapped[str | None] = mapped_column(String(16), unique=True, nullable=True)

    # clinical fields, written by the counselor
    counselor_keyword: Mapped[str | None] = mapped_column(String(200), nullable=True)
    counselor_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    counselor_followup: Mapped[str | None] = mapped_column(Text, nullable=True)
    mood_scale: Mapped[int | None] = mapped_column(Integer, nullable=True)

CLINICAL_FIELDS = ("counselor_keyword", "counselor_note", "counselor_followup", "mood_scale")

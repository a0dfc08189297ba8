import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, TIMESTAMP, ForeignKey
from counselbook.core.base import Base, TimestampedMixin

CASE_STATUSES = (
    "waiting_confirmation", "confirmed", "booked", "in_progress", "rescheduled", "completed", "cancelled",
)
ACTIVE_CASE_STATUSES = ("waiting_confirmation", "confirmed", "booked", "in_progress", "rescheduled")
CLOSED_CASE_STATUSES = ("completed", "cancelled")

class Case(Base, TimestampedMixin):
    client_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("client.id"), index=True)
    counselor_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("counselor.id"), nullable=True)

    status: Mapped[str] = mapped_column(String(24), default="waiting_confirmation")
    priority: Mapped[str] = mapped_column(String(8), default="medium")  # low, medium, high
    queue_token: Mapped[str | None] = mapped_column(String(8), unique=True, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    confirmed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    waiting_entered_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

class RegistrationCode(Base, TimestampedMixin):
    __tablename__ = "registration_code"
    code: Mapped[str] = mapped_column(String(32), unique=True)
    is_used: Mapped[bool] = mapped_column(default=False)
    used_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    used_by_client_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("client.id"), nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Table, Column, ForeignKey
from counselbook.core.base import Base, TimestampedMixin

# Rooms and problem tags are maintained by the admin console; this service only reads them.

class Room(Base, TimestampedMixin):
    room_name: Mapped[str] = mapped_column(String(120), unique=True)
    is_active: Mapped[bool] = mapped_column(default=True)

class ProblemTag(Base, TimestampedMixin):
    __tablename__ = "problem_tag"
    label: Mapped[str] = mapped_column(String(120), unique=True)
    is_active: Mapped[bool] = mapped_column(default=True)

session_problem_tag = Table(
    "session_problem_tag",
    Base.metadata,
    Column("session_id", ForeignKey("counseling_session.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", ForeignKey("problem_tag.id"), primary_key=True),
)

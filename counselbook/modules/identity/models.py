import uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, ForeignKey
from counselbook.core.base import Base, TimestampedMixin

class User(Base, TimestampedMixin):
    account: Mapped[str] = mapped_column(String(320), unique=True)  # university e-mail
    first_name: Mapped[str] = mapped_column(String(120))
    last_name: Mapped[str] = mapped_column(String(120))
    phone_num: Mapped[str | None] = mapped_column(String(32), nullable=True)
    role: Mapped[str] = mapped_column(String(16), default="client")  # client | counselor | admin

class Client(Base, TimestampedMixin):
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("user.id"), unique=True)
    client_code: Mapped[str] = mapped_column(String(32), unique=True)
    major: Mapped[str | None] = mapped_column(String(120), nullable=True)
    department: Mapped[str | None] = mapped_column(String(120), nullable=True)
    # explicit pointer to the case currently being worked on; kept in step with case create/cancel/close
    active_case_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("case.id", use_alter=True, name="fk_client_active_case"), nullable=True
    )

class Counselor(Base, TimestampedMixin):
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("user.id"), unique=True)
    counselor_number: Mapped[str | None] = mapped_column(String(32), nullable=True)

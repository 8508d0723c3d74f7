import uuid
from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from cdn_console.database import Base


class UserRole(StrEnum):
    ADMIN = "ADMIN"
    STANDARD = "STANDARD"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email: Mapped[str] = mapped_column(String(254), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRole.STANDARD)
    cdn_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # API key lookup: indexed prefix + Argon2id hash, never the raw key
    api_key_prefix: Mapped[str | None] = mapped_column(String(16), index=True, nullable=True)
    api_key_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    api_key_generated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=lambda: datetime.now(UTC).replace(tzinfo=None), nullable=False
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cdn_console.database import Base


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class InviteStatus(StrEnum):
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"


class UploadStatus(StrEnum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class Invite(Base):
    """
    Capability record authorising anonymous uploads into one CDN.

    Only the SHA-256 of the invite token is stored. ``remaining_uses`` is
    meaningless while ``max_uses`` is NULL (unlimited) and is kept at 0.
    ``version`` guards read-modify-write cycles: a stale UPDATE matches no
    row and SQLAlchemy raises StaleDataError.
    """

    __tablename__ = "invites"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)

    # Scope
    label: Mapped[str] = mapped_column(String(100), nullable=False)
    cdn_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("cdns.id", ondelete="CASCADE"), index=True, nullable=False
    )

    # Constraints
    allowed_mime_types: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    allowed_extensions: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    max_size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)

    # Budget
    max_uses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    remaining_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), index=True, nullable=False, default=InviteStatus.ACTIVE
    )

    # Provenance
    upload_prefix_template: Mapped[str] = mapped_column(String(200), nullable=False)
    upload_prefix: Mapped[str] = mapped_column(String(512), nullable=False)
    notify_emails: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    notes: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    created_by: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    uploads: Mapped[list["InviteUpload"]] = relationship(
        back_populates="invite",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="InviteUpload.uploaded_at.desc()",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_unlimited(self) -> bool:
        return self.max_uses is None


class InviteUpload(Base):
    """Immutable receipt for one committed upload, owned by its invite."""

    __tablename__ = "invite_uploads"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    invite_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("invites.id", ondelete="CASCADE"), index=True, nullable=False
    )

    key: Mapped[str] = mapped_column(String(1024), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    content_type: Mapped[str] = mapped_column(String(255), nullable=False)
    extension: Mapped[str] = mapped_column(String(32), nullable=False)
    etag: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Client fingerprint (admin-only view)
    ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)

    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, index=True, nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=UploadStatus.SUCCESS)
    error: Mapped[str | None] = mapped_column(String(500), nullable=True)

    invite: Mapped[Invite] = relationship(back_populates="uploads")

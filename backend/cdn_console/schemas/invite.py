import re
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from cdn_console.config import settings
from cdn_console.models.invite import InviteStatus, UploadStatus
from cdn_console.schemas.common import Pagination, UTCDateTime, to_naive_utc

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MAX_EXTENSION_LENGTH = 32

# Fields that may be explicitly cleared with null on update
NULLABLE_FIELDS = {"max_uses", "expires_at"}


class _InviteFields(BaseModel):
    """Field normalisation shared by create and update payloads."""

    @field_validator("label", "upload_prefix", check_fields=False)
    @classmethod
    def strip_required_text(cls, v: str | None, info) -> str | None:
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        v = v.strip()
        if not v:
            raise ValueError(f"{info.field_name} cannot be blank")
        return v

    @field_validator("cdn_id", "notes", check_fields=False)
    @classmethod
    def reject_null(cls, v: str | None, info) -> str | None:
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v

    @field_validator("allowed_mime_types", check_fields=False)
    @classmethod
    def normalize_mime_types(cls, v: list[str] | None) -> list[str]:
        if v is None:
            raise ValueError("allowed_mime_types cannot be null")
        normalized = list(dict.fromkeys(m.strip().lower() for m in v if m.strip()))
        if not normalized:
            raise ValueError("At least one MIME type must be allowed")
        return normalized

    @field_validator("allowed_extensions", check_fields=False)
    @classmethod
    def normalize_extensions(cls, v: list[str] | None) -> list[str]:
        if v is None:
            raise ValueError("allowed_extensions cannot be null")
        normalized = list(dict.fromkeys(e.strip().lstrip(".").lower() for e in v if e.strip(" .")))
        if not normalized:
            raise ValueError("At least one file extension must be allowed")
        if any(len(e) > MAX_EXTENSION_LENGTH for e in normalized):
            raise ValueError(f"Extensions cannot exceed {MAX_EXTENSION_LENGTH} characters")
        return normalized

    @field_validator("max_size_bytes", check_fields=False)
    @classmethod
    def validate_max_size(cls, v: int | None) -> int:
        if v is None:
            raise ValueError("max_size_bytes cannot be null")
        if v > settings.max_invite_size_bytes:
            raise ValueError(f"max_size_bytes cannot exceed {settings.max_invite_size_bytes} bytes")
        return v

    @field_validator("expires_at", check_fields=False)
    @classmethod
    def normalize_expires_at(cls, v: datetime | None) -> datetime | None:
        return to_naive_utc(v) if v is not None else None

    @field_validator("notify_emails", check_fields=False)
    @classmethod
    def validate_emails(cls, v: list[str] | None) -> list[str]:
        if v is None:
            return []
        emails = [e.strip() for e in v if e.strip()]
        for email in emails:
            if not EMAIL_PATTERN.match(email):
                raise ValueError(f"Invalid email format: {email}")
        return emails


class InviteCreate(_InviteFields):
    label: str = Field(..., min_length=1, max_length=100)
    cdn_id: str = Field(..., min_length=1)
    allowed_mime_types: list[str] = Field(..., min_length=1)
    allowed_extensions: list[str] = Field(..., min_length=1)
    max_size_bytes: int = Field(..., gt=0)
    max_uses: int | None = Field(None, gt=0, description="null means unlimited")
    expires_at: datetime | None = Field(None, description="null means never")
    upload_prefix: str = Field(..., min_length=1, max_length=200, description="Template")
    notify_emails: list[str] = Field(default_factory=list)
    notes: str = Field("", max_length=500)


class InviteUpdate(_InviteFields):
    """Partial update. Only fields present in the payload are applied."""

    label: str | None = Field(None, min_length=1, max_length=100)
    cdn_id: str | None = Field(None, min_length=1)
    allowed_mime_types: list[str] | None = Field(None, min_length=1)
    allowed_extensions: list[str] | None = Field(None, min_length=1)
    max_size_bytes: int | None = Field(None, gt=0)
    max_uses: int | None = Field(None, gt=0)
    expires_at: datetime | None = None
    upload_prefix: str | None = Field(None, min_length=1, max_length=200)
    notify_emails: list[str] | None = None
    notes: str | None = Field(None, max_length=500)


class InviteAdminResponse(BaseModel):
    id: str
    label: str
    cdn_id: str
    allowed_mime_types: list[str]
    allowed_extensions: list[str]
    max_size_bytes: int
    max_uses: int | None
    remaining_uses: int | None
    expires_at: UTCDateTime | None
    status: InviteStatus
    upload_prefix_template: str
    upload_prefix: str
    notify_emails: list[str]
    notes: str
    created_by: str
    created_at: UTCDateTime
    updated_at: UTCDateTime
    upload_count: int = 0
    last_upload_at: UTCDateTime | None = None


class InviteCreateResponse(InviteAdminResponse):
    """Includes the raw token - only returned at creation time."""

    token: str
    invite_url: str


class InviteListResponse(BaseModel):
    invites: list[InviteAdminResponse]
    pagination: Pagination


class InviteRevokeResponse(BaseModel):
    id: str
    status: InviteStatus
    message: str


class InviteTokenResponse(BaseModel):
    token: str
    invite_url: str


class InviteUploadResponse(BaseModel):
    id: str
    key: str
    size: int
    content_type: str
    extension: str
    etag: str | None
    ip: str | None
    user_agent: str | None
    uploaded_at: UTCDateTime
    status: UploadStatus
    error: str | None


class InviteUploadListResponse(BaseModel):
    uploads: list[InviteUploadResponse]
    pagination: Pagination


class InviteMetadataResponse(BaseModel):
    """Public view of an invite. No ids, hashes or owner identity."""

    label: str
    cdn_display_name: str
    allowed_mime_types: list[str]
    allowed_extensions: list[str]
    max_size_bytes: int
    expires_at: UTCDateTime | None
    status: InviteStatus
    remaining_uses: int | None
    max_uses: int | None


class SignPostRequest(BaseModel):
    content_type: str = Field(..., min_length=1, max_length=255)
    filename: str = Field(..., min_length=1, max_length=200)


class SignPostResponse(BaseModel):
    url: str
    fields: dict[str, str]
    key: str


class CommitRequest(BaseModel):
    key: str = Field(..., min_length=1, max_length=1024)
    size: int = Field(..., gt=0)
    content_type: str = Field(..., min_length=1, max_length=255)
    extension: str = Field(..., max_length=MAX_EXTENSION_LENGTH)
    etag: str | None = Field(None, max_length=255)


class CommitResponse(BaseModel):
    upload_id: str
    remaining_uses: int | None
    public_url: str | None = None
    signed_url: str | None = None
    key: str

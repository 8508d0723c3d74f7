"""
Public invite upload flow: metadata, upload policy, commit.

Callers hash the token and apply rate limiting before resolving the invite;
each step then re-checks usability and the invite's constraints.
"""

from datetime import datetime

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from cdn_console.config import settings
from cdn_console.errors import InviteError, NotFoundError, ValidationError
from cdn_console.logging_config import get_logger
from cdn_console.models.cdn import Cdn
from cdn_console.models.invite import Invite
from cdn_console.schemas.invite import (
    CommitRequest,
    CommitResponse,
    InviteMetadataResponse,
    SignPostRequest,
    SignPostResponse,
)
from cdn_console.services.audit_service import AuditAction, ClientInfo, invite_actor, record_audit
from cdn_console.services.filenames import (
    build_object_key,
    build_public_url,
    get_file_extension,
    normalize_prefix,
    sanitize_filename,
)
from cdn_console.services.invite_service import (
    UploadFields,
    consume_use,
    ensure_usable,
    find_invite_by_token_hash,
    observe_expiry,
    public_remaining_uses,
    utcnow,
)
from cdn_console.services.invite_token import generate_file_suffix
from cdn_console.services.notification_service import send_upload_notification
from cdn_console.services.storage_service import ObjectStorageService

logger = get_logger(__name__)

UNKNOWN_CDN_NAME = "Unknown CDN"


def resolve_invite(db: Session, token_hash: str) -> Invite:
    invite = find_invite_by_token_hash(db, token_hash)
    if invite is None:
        raise NotFoundError("Invite not found")
    return invite


def _require_cdn(db: Session, invite: Invite) -> Cdn:
    cdn = db.get(Cdn, invite.cdn_id)
    if cdn is None:
        raise NotFoundError("CDN not found")
    return cdn


def check_content_type(invite: Invite, content_type: str) -> str:
    normalized = content_type.strip().lower()
    if normalized not in invite.allowed_mime_types:
        raise ValidationError(
            f"Content type {content_type} is not allowed",
            code="content_type_not_allowed",
            allowed_mime_types=list(invite.allowed_mime_types),
        )
    return normalized


def check_extension(invite: Invite, extension: str) -> str:
    normalized = extension.strip().lstrip(".").lower()
    if normalized not in invite.allowed_extensions:
        raise ValidationError(
            f"File extension {extension or '(none)'} is not allowed",
            code="extension_not_allowed",
            allowed_extensions=list(invite.allowed_extensions),
        )
    return normalized


def check_size(invite: Invite, size: int) -> None:
    if size <= 0 or size > invite.max_size_bytes:
        raise ValidationError(
            f"File size {size} bytes exceeds maximum {invite.max_size_bytes} bytes",
            code="file_too_large",
            max_size_bytes=invite.max_size_bytes,
        )


def check_key(invite: Invite, key: str) -> None:
    prefix = normalize_prefix(invite.upload_prefix)
    if not key.startswith(prefix) or len(key) == len(prefix):
        raise ValidationError("Key is outside this invite's upload prefix", code="key_not_allowed")


def get_public_metadata(
    db: Session, invite: Invite, now: datetime | None = None
) -> InviteMetadataResponse:
    """
    Redacted invite view for anonymous callers.

    Side effect: an ACTIVE invite past its expiry is persisted as EXPIRED.
    """
    invite = observe_expiry(db, invite, now or utcnow())
    cdn = db.get(Cdn, invite.cdn_id)

    return InviteMetadataResponse(
        label=invite.label,
        cdn_display_name=cdn.name if cdn is not None else UNKNOWN_CDN_NAME,
        allowed_mime_types=invite.allowed_mime_types,
        allowed_extensions=invite.allowed_extensions,
        max_size_bytes=invite.max_size_bytes,
        expires_at=invite.expires_at,
        status=invite.status,
        remaining_uses=public_remaining_uses(invite),
        max_uses=invite.max_uses,
    )


async def request_upload_policy(
    db: Session,
    storage: ObjectStorageService,
    invite: Invite,
    data: SignPostRequest,
    client: ClientInfo,
) -> SignPostResponse:
    """Issue a presigned POST scoped to one fresh key, content type and size ceiling."""
    ensure_usable(invite, utcnow())

    content_type = check_content_type(invite, data.content_type)
    # Check the extension the key will actually carry
    filename = sanitize_filename(data.filename)
    check_extension(invite, get_file_extension(filename))
    cdn = _require_cdn(db, invite)

    key = build_object_key(invite.upload_prefix, filename, generate_file_suffix())
    policy = await storage.issue_upload_policy(
        bucket=cdn.bucket,
        key=key,
        content_type=content_type,
        max_bytes=invite.max_size_bytes,
        ttl=settings.upload_policy_ttl_seconds,
    )

    record_audit(
        db,
        AuditAction.INVITE_UPLOAD_REQUESTED,
        invite_actor(invite.label),
        {
            "invite_id": invite.id,
            "cdn_id": invite.cdn_id,
            "key": key,
            "content_type": content_type,
        },
        client,
    )
    logger.info("upload_policy_issued", invite_id=invite.id)

    return SignPostResponse(url=policy.url, fields=policy.fields, key=key)


async def commit_upload(
    db: Session,
    storage: ObjectStorageService,
    invite: Invite,
    data: CommitRequest,
    client: ClientInfo,
    background_tasks: BackgroundTasks,
) -> CommitResponse:
    """
    Record a finished upload and consume one use.

    Client-reported values are validated again here; nothing from the policy
    step is trusted. Rejected commits, lost commit races included, are audited
    as failures. The upload webhook runs after the response is sent.
    """
    invite_id = invite.id
    label = invite.label

    try:
        ensure_usable(invite, utcnow())
        content_type = check_content_type(invite, data.content_type)
        extension = check_extension(invite, data.extension)
        check_size(invite, data.size)
        check_key(invite, data.key)
        cdn = _require_cdn(db, invite)

        upload, invite = consume_use(
            db,
            invite_id,
            UploadFields(
                key=data.key,
                size=data.size,
                content_type=content_type,
                extension=extension,
                etag=data.etag,
            ),
            client,
        )
    except InviteError as e:
        _record_failure(db, invite_id, label, data, client, e)
        raise

    record_audit(
        db,
        AuditAction.INVITE_UPLOAD_SUCCEEDED,
        invite_actor(label),
        {
            "invite_id": invite_id,
            "cdn_id": cdn.id,
            "upload_id": upload.id,
            "key": upload.key,
            "content_type": upload.content_type,
            "size": upload.size,
            "extension": upload.extension,
            "etag": upload.etag,
        },
        client,
    )
    logger.info("invite_upload_committed", invite_id=invite_id, upload_id=upload.id)

    background_tasks.add_task(
        send_upload_notification,
        invite_id=invite_id,
        label=label,
        key=upload.key,
        size=upload.size,
        content_type=upload.content_type,
        notify_emails=list(invite.notify_emails),
    )

    public_url = None
    signed_url = None
    if cdn.public_base:
        public_url = build_public_url(cdn.public_base, upload.key)
    else:
        signed_url = await storage.issue_download_url(
            bucket=cdn.bucket, key=upload.key, ttl=settings.download_url_ttl_seconds
        )

    return CommitResponse(
        upload_id=upload.id,
        remaining_uses=public_remaining_uses(invite),
        public_url=public_url,
        signed_url=signed_url,
        key=upload.key,
    )


def _record_failure(
    db: Session,
    invite_id: str,
    label: str,
    data: CommitRequest,
    client: ClientInfo,
    error: InviteError,
) -> None:
    logger.info("invite_upload_rejected", invite_id=invite_id, code=error.code)
    record_audit(
        db,
        AuditAction.INVITE_UPLOAD_FAILED,
        invite_actor(label),
        {
            "invite_id": invite_id,
            "key": data.key,
            "content_type": data.content_type,
            "size": data.size,
            "extension": data.extension,
            "error": error.message,
        },
        client,
    )

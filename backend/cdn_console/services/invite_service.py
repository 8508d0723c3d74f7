"""
Invite lifecycle: creation, edits, revocation, expiry and use-budget accounting.

Status transitions are ACTIVE <-> REVOKED (explicit toggle) and
ACTIVE -> EXPIRED (observed lazily on metadata reads, then persisted).
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from cdn_console.config import settings
from cdn_console.errors import (
    CommitConflictError,
    ExhaustedError,
    InviteNotActiveError,
    NotFoundError,
)
from cdn_console.logging_config import get_logger
from cdn_console.models.cdn import Cdn
from cdn_console.models.invite import Invite, InviteStatus, InviteUpload, UploadStatus
from cdn_console.schemas.invite import NULLABLE_FIELDS, InviteCreate, InviteUpdate
from cdn_console.services.audit_service import ClientInfo
from cdn_console.services.filenames import resolve_prefix_template
from cdn_console.services.invite_token import generate_invite_token, hash_invite_token

logger = get_logger(__name__)

# Fields copied verbatim from an update payload onto the invite
_PLAIN_UPDATE_FIELDS = (
    "allowed_mime_types",
    "allowed_extensions",
    "max_size_bytes",
    "expires_at",
    "notify_emails",
    "notes",
)


def utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


@dataclass(frozen=True, slots=True)
class UploadFields:
    key: str
    size: int
    content_type: str
    extension: str
    etag: str | None = None


def is_expired(invite: Invite, now: datetime) -> bool:
    return invite.expires_at is not None and now > invite.expires_at


def is_exhausted(invite: Invite) -> bool:
    return not invite.is_unlimited and invite.remaining_uses <= 0


def is_usable(invite: Invite, now: datetime) -> bool:
    return (
        invite.status == InviteStatus.ACTIVE
        and not is_expired(invite, now)
        and not is_exhausted(invite)
    )


def ensure_usable(invite: Invite, now: datetime) -> None:
    """Raise the error an anonymous caller should see when the invite can't take uploads."""
    if invite.status != InviteStatus.ACTIVE:
        raise InviteNotActiveError("Invite is not active")
    if is_expired(invite, now):
        raise InviteNotActiveError("Invite has expired")
    if is_exhausted(invite):
        raise ExhaustedError("Invite has no remaining uses")


def public_remaining_uses(invite: Invite) -> int | None:
    return None if invite.is_unlimited else invite.remaining_uses


def _require_cdn(db: Session, cdn_id: str) -> Cdn:
    cdn = db.get(Cdn, cdn_id)
    if cdn is None:
        raise NotFoundError("CDN not found")
    return cdn


def get_invite(db: Session, invite_id: str) -> Invite:
    invite = db.get(Invite, invite_id)
    if invite is None:
        raise NotFoundError("Invite not found")
    return invite


def find_invite_by_token_hash(db: Session, token_hash: str) -> Invite | None:
    return db.scalars(select(Invite).where(Invite.token_hash == token_hash).limit(1)).first()


def create_invite(db: Session, data: InviteCreate, created_by: str) -> tuple[Invite, str]:
    """
    Create a new ACTIVE invite.

    Returns tuple of (invite, raw_token). The raw token is only available here.
    """
    _require_cdn(db, data.cdn_id)

    raw_token = generate_invite_token()
    now = utcnow()

    invite = Invite(
        token_hash=hash_invite_token(raw_token),
        label=data.label,
        cdn_id=data.cdn_id,
        allowed_mime_types=data.allowed_mime_types,
        allowed_extensions=data.allowed_extensions,
        max_size_bytes=data.max_size_bytes,
        max_uses=data.max_uses,
        remaining_uses=data.max_uses or 0,
        expires_at=data.expires_at,
        status=InviteStatus.ACTIVE,
        upload_prefix_template=data.upload_prefix,
        upload_prefix=resolve_prefix_template(data.upload_prefix, data.label, now),
        notify_emails=data.notify_emails,
        notes=data.notes,
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )

    db.add(invite)
    db.commit()
    db.refresh(invite)

    logger.info("invite_created", invite_id=invite.id, cdn_id=invite.cdn_id)
    return invite, raw_token


def update_invite(
    db: Session, invite_id: str, patch: InviteUpdate
) -> tuple[Invite, dict[str, Any]]:
    """
    Apply a partial update.

    Changing ``max_uses`` resets ``remaining_uses`` to the new budget.
    Changing the label or prefix template re-resolves the upload prefix.
    Returns tuple of (invite, changes) where changes maps field -> {from, to}.
    """
    invite = get_invite(db, invite_id)
    provided = {
        field: value
        for field, value in patch.model_dump(exclude_unset=True).items()
        if value is not None or field in NULLABLE_FIELDS
    }
    changes: dict[str, Any] = {}

    def _set(field: str, value: Any) -> None:
        previous = getattr(invite, field)
        if previous != value:
            changes[field] = {"from": _jsonable(previous), "to": _jsonable(value)}
            setattr(invite, field, value)

    if "cdn_id" in provided:
        _require_cdn(db, provided["cdn_id"])
        _set("cdn_id", provided["cdn_id"])

    for field in _PLAIN_UPDATE_FIELDS:
        if field in provided:
            _set(field, provided[field])

    if "label" in provided:
        _set("label", provided["label"])
    if "upload_prefix" in provided:
        _set("upload_prefix_template", provided["upload_prefix"])
    if "label" in provided or "upload_prefix" in provided:
        _set(
            "upload_prefix",
            resolve_prefix_template(invite.upload_prefix_template, invite.label, utcnow()),
        )

    if "max_uses" in provided and provided["max_uses"] != invite.max_uses:
        _set("max_uses", provided["max_uses"])
        _set("remaining_uses", provided["max_uses"] or 0)

    invite.updated_at = utcnow()
    db.commit()
    db.refresh(invite)

    logger.info("invite_updated", invite_id=invite.id, fields=sorted(changes))
    return invite, changes


def toggle_revocation(db: Session, invite_id: str) -> Invite:
    """Flip REVOKED -> ACTIVE, anything else -> REVOKED."""
    invite = get_invite(db, invite_id)
    invite.status = (
        InviteStatus.ACTIVE if invite.status == InviteStatus.REVOKED else InviteStatus.REVOKED
    )
    invite.updated_at = utcnow()
    db.commit()
    db.refresh(invite)

    logger.info("invite_status_changed", invite_id=invite.id, status=invite.status)
    return invite


def regenerate_token(db: Session, invite_id: str) -> tuple[Invite, str]:
    """Issue a new token for an invite. The previous token stops resolving."""
    invite = get_invite(db, invite_id)
    raw_token = generate_invite_token()
    invite.token_hash = hash_invite_token(raw_token)
    invite.updated_at = utcnow()
    db.commit()
    db.refresh(invite)

    logger.info("invite_token_regenerated", invite_id=invite.id)
    return invite, raw_token


def observe_expiry(db: Session, invite: Invite, now: datetime) -> Invite:
    """
    Reconcile a past-expiry ACTIVE invite to EXPIRED and persist it.

    This is a side-effecting read step: callers that display invite state
    invoke it explicitly before rendering.
    """
    if invite.status == InviteStatus.ACTIVE and is_expired(invite, now):
        invite.status = InviteStatus.EXPIRED
        invite.updated_at = now
        db.commit()
        db.refresh(invite)
        logger.info("invite_expired", invite_id=invite.id)
    return invite


def list_invites(
    db: Session,
    status: InviteStatus | None = None,
    cdn_id: str | None = None,
    q: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Invite], int]:
    """Newest-first listing with filters. Returns tuple of (page_items, filtered_total)."""
    query = select(Invite)
    if status is not None:
        query = query.where(Invite.status == status)
    if cdn_id:
        query = query.where(Invite.cdn_id == cdn_id)
    if q:
        pattern = f"%{q.lower()}%"
        query = query.where(
            or_(func.lower(Invite.label).like(pattern), func.lower(Invite.notes).like(pattern))
        )

    total = db.scalar(select(func.count()).select_from(query.subquery()))
    items = db.scalars(
        query.order_by(Invite.created_at.desc(), Invite.id).offset((page - 1) * limit).limit(limit)
    ).all()
    return list(items), total or 0


def list_uploads(
    db: Session, invite_id: str, page: int = 1, limit: int = 20
) -> tuple[list[InviteUpload], int]:
    get_invite(db, invite_id)
    query = select(InviteUpload).where(InviteUpload.invite_id == invite_id)
    total = db.scalar(select(func.count()).select_from(query.subquery()))
    items = db.scalars(
        query.order_by(InviteUpload.uploaded_at.desc(), InviteUpload.id)
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    return list(items), total or 0


def get_upload_stats(db: Session, invite_id: str) -> tuple[int, datetime | None]:
    """Count of successful uploads and the latest upload time."""
    count, last_upload_at = db.execute(
        select(func.count(InviteUpload.id), func.max(InviteUpload.uploaded_at)).where(
            InviteUpload.invite_id == invite_id,
            InviteUpload.status == UploadStatus.SUCCESS,
        )
    ).one()
    return count, last_upload_at


def consume_use(
    db: Session,
    invite_id: str,
    upload: UploadFields,
    client: ClientInfo,
    max_attempts: int | None = None,
) -> tuple[InviteUpload, Invite]:
    """
    Atomically take one use from the invite's budget and record the upload.

    Each attempt re-reads the invite, checks the budget, decrements it and
    inserts the upload row in one transaction. The invite UPDATE is
    conditional on its version column, so a concurrent commit that got there
    first makes this attempt fail with StaleDataError; the transaction is
    rolled back and retried. Usability is re-checked on every attempt, so nothing
    is written once the invite is revoked, expired or exhausted.
    """
    max_attempts = max_attempts or settings.commit_max_attempts

    for attempt in range(1, max_attempts + 1):
        try:
            return _consume_use_once(db, invite_id, upload, client)
        except StaleDataError:
            db.rollback()
            logger.warning("invite_commit_conflict", invite_id=invite_id, attempt=attempt)

    raise CommitConflictError("Invite is busy, please retry the commit")


def _consume_use_once(
    db: Session, invite_id: str, upload: UploadFields, client: ClientInfo
) -> tuple[InviteUpload, Invite]:
    invite = db.get(Invite, invite_id, populate_existing=True)
    if invite is None:
        raise NotFoundError("Invite not found")

    # Status and expiry may have changed since the caller checked them
    now = utcnow()
    try:
        ensure_usable(invite, now)
    except (InviteNotActiveError, ExhaustedError):
        db.rollback()
        raise

    if not invite.is_unlimited:
        invite.remaining_uses -= 1
    invite.updated_at = now

    record = InviteUpload(
        invite_id=invite.id,
        key=upload.key,
        size=upload.size,
        content_type=upload.content_type,
        extension=upload.extension,
        etag=upload.etag,
        ip=client.ip,
        user_agent=client.user_agent,
        uploaded_at=now,
        status=UploadStatus.SUCCESS,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    db.refresh(invite)

    return record, invite


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value

import structlog
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from cdn_console.config import settings
from cdn_console.database import get_db
from cdn_console.dependencies import get_client_info, require_admin
from cdn_console.middleware.rate_limit import limiter
from cdn_console.models.invite import Invite, InviteStatus
from cdn_console.models.user import User
from cdn_console.schemas.common import Pagination
from cdn_console.schemas.invite import (
    InviteAdminResponse,
    InviteCreate,
    InviteCreateResponse,
    InviteListResponse,
    InviteRevokeResponse,
    InviteTokenResponse,
    InviteUpdate,
    InviteUploadListResponse,
    InviteUploadResponse,
)
from cdn_console.services.audit_service import AuditAction, ClientInfo, record_audit
from cdn_console.services.invite_service import (
    create_invite,
    get_invite,
    get_upload_stats,
    list_invites,
    list_uploads,
    public_remaining_uses,
    regenerate_token,
    toggle_revocation,
    update_invite,
)

router = APIRouter()
logger = structlog.get_logger()


def build_invite_url(token: str) -> str:
    return f"{settings.app_public_url.rstrip('/')}/invite/{token}"


def to_admin_view(db: Session, invite: Invite) -> InviteAdminResponse:
    upload_count, last_upload_at = get_upload_stats(db, invite.id)
    return InviteAdminResponse(
        id=invite.id,
        label=invite.label,
        cdn_id=invite.cdn_id,
        allowed_mime_types=invite.allowed_mime_types,
        allowed_extensions=invite.allowed_extensions,
        max_size_bytes=invite.max_size_bytes,
        max_uses=invite.max_uses,
        remaining_uses=public_remaining_uses(invite),
        expires_at=invite.expires_at,
        status=invite.status,
        upload_prefix_template=invite.upload_prefix_template,
        upload_prefix=invite.upload_prefix,
        notify_emails=invite.notify_emails,
        notes=invite.notes,
        created_by=invite.created_by,
        created_at=invite.created_at,
        updated_at=invite.updated_at,
        upload_count=upload_count,
        last_upload_at=last_upload_at,
    )


@router.post("/invites", response_model=InviteCreateResponse, status_code=201)
@limiter.limit(settings.rate_limit_admin)
async def create_new_invite(
    request: Request,
    invite_data: InviteCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    client: ClientInfo = Depends(get_client_info),
):
    """
    Create an upload invite.

    The raw token is returned once, here. Only its hash is stored.
    """
    invite, raw_token = create_invite(db, invite_data, created_by=admin.id)

    record_audit(
        db,
        AuditAction.INVITE_CREATED,
        admin.id,
        {
            "invite_id": invite.id,
            "cdn_id": invite.cdn_id,
            "label": invite.label,
            "max_uses": invite.max_uses,
            "expires_at": invite.expires_at.isoformat() if invite.expires_at else None,
        },
        client,
    )

    view = to_admin_view(db, invite)
    return InviteCreateResponse(
        **view.model_dump(),
        token=raw_token,
        invite_url=build_invite_url(raw_token),
    )


@router.get("/invites", response_model=InviteListResponse)
@limiter.limit(settings.rate_limit_admin)
async def list_all_invites(
    request: Request,
    status: InviteStatus | None = None,
    cdn_id: str | None = None,
    q: str | None = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """List invites, newest first. ``q`` matches label or notes, case-insensitively."""
    invites, total = list_invites(db, status=status, cdn_id=cdn_id, q=q, page=page, limit=limit)
    return InviteListResponse(
        invites=[to_admin_view(db, invite) for invite in invites],
        pagination=Pagination.build(page, limit, total),
    )


@router.get("/invites/{invite_id}", response_model=InviteAdminResponse)
@limiter.limit(settings.rate_limit_admin)
async def get_invite_detail(
    request: Request,
    invite_id: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return to_admin_view(db, get_invite(db, invite_id))


@router.patch("/invites/{invite_id}", response_model=InviteAdminResponse)
@limiter.limit(settings.rate_limit_admin)
async def update_existing_invite(
    request: Request,
    invite_id: str,
    patch: InviteUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    client: ClientInfo = Depends(get_client_info),
):
    """
    Partially update an invite.

    Fields missing from the body are left alone; ``null`` clears
    ``max_uses`` (unlimited) or ``expires_at`` (never). A new ``max_uses``
    resets the remaining budget.
    """
    invite, changes = update_invite(db, invite_id, patch)

    if changes:
        record_audit(
            db,
            AuditAction.INVITE_UPDATED,
            admin.id,
            {"invite_id": invite.id, "changes": changes},
            client,
        )

    return to_admin_view(db, invite)


@router.post("/invites/{invite_id}/revoke", response_model=InviteRevokeResponse)
@limiter.limit(settings.rate_limit_admin)
async def toggle_invite_revocation(
    request: Request,
    invite_id: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    client: ClientInfo = Depends(get_client_info),
):
    """Revoke an invite, or restore it if it is already revoked."""
    invite = toggle_revocation(db, invite_id)
    revoked = invite.status == InviteStatus.REVOKED

    record_audit(
        db,
        AuditAction.INVITE_REVOKED if revoked else AuditAction.INVITE_RESTORED,
        admin.id,
        {"invite_id": invite.id, "label": invite.label},
        client,
    )

    return InviteRevokeResponse(
        id=invite.id,
        status=invite.status,
        message="Invite revoked" if revoked else "Invite restored",
    )


@router.post("/invites/{invite_id}/token", response_model=InviteTokenResponse)
@limiter.limit(settings.rate_limit_admin)
async def regenerate_invite_token(
    request: Request,
    invite_id: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    client: ClientInfo = Depends(get_client_info),
):
    """Issue a new invite token. The previous link stops working."""
    invite, raw_token = regenerate_token(db, invite_id)

    record_audit(
        db,
        AuditAction.INVITE_TOKEN_REGENERATED,
        admin.id,
        {"invite_id": invite.id, "label": invite.label},
        client,
    )

    return InviteTokenResponse(token=raw_token, invite_url=build_invite_url(raw_token))


@router.get("/invites/{invite_id}/uploads", response_model=InviteUploadListResponse)
@limiter.limit(settings.rate_limit_admin)
async def list_invite_uploads(
    request: Request,
    invite_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    uploads, total = list_uploads(db, invite_id, page=page, limit=limit)
    return InviteUploadListResponse(
        uploads=[
            InviteUploadResponse.model_validate(upload, from_attributes=True) for upload in uploads
        ],
        pagination=Pagination.build(page, limit, total),
    )

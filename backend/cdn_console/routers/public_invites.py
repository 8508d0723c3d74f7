"""
Public invite upload flow. No authentication: the token in the path is the credential.

Order for every request: hash token, rate limit, resolve invite, then the
step's own checks. The raw token is never logged or stored.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from cdn_console.database import get_db
from cdn_console.dependencies import get_client_info, get_storage
from cdn_console.middleware.rate_limit import InviteEndpoint, enforce_invite_rate_limit
from cdn_console.schemas.invite import (
    CommitRequest,
    CommitResponse,
    InviteMetadataResponse,
    SignPostRequest,
    SignPostResponse,
)
from cdn_console.services.audit_service import ClientInfo
from cdn_console.services.invite_token import hash_invite_token
from cdn_console.services.storage_service import ObjectStorageService
from cdn_console.services.upload_service import (
    commit_upload,
    get_public_metadata,
    request_upload_policy,
    resolve_invite,
)

router = APIRouter()


@router.get("/invites/public/{token}", response_model=InviteMetadataResponse)
async def get_invite_metadata(
    request: Request,
    token: str,
    db: Session = Depends(get_db),
):
    """
    Redacted invite view for the upload page.

    An ACTIVE invite found past its expiry is marked EXPIRED as part of this read.
    """
    token_hash = hash_invite_token(token)
    enforce_invite_rate_limit(request, token_hash, InviteEndpoint.META)
    invite = resolve_invite(db, token_hash)
    return get_public_metadata(db, invite)


@router.post("/invites/public/{token}/sign-post", response_model=SignPostResponse)
async def sign_invite_upload(
    request: Request,
    token: str,
    body: SignPostRequest,
    db: Session = Depends(get_db),
    storage: ObjectStorageService = Depends(get_storage),
    client: ClientInfo = Depends(get_client_info),
):
    """Issue a presigned POST for one upload under this invite."""
    token_hash = hash_invite_token(token)
    enforce_invite_rate_limit(request, token_hash, InviteEndpoint.SIGN)
    invite = resolve_invite(db, token_hash)
    return await request_upload_policy(db, storage, invite, body, client)


@router.post("/invites/public/{token}/commit", response_model=CommitResponse)
async def commit_invite_upload(
    request: Request,
    token: str,
    body: CommitRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    storage: ObjectStorageService = Depends(get_storage),
    client: ClientInfo = Depends(get_client_info),
):
    """
    Record a finished upload and consume one use of the invite.

    Not idempotent: repeating a successful commit consumes another use.
    """
    token_hash = hash_invite_token(token)
    enforce_invite_rate_limit(request, token_hash, InviteEndpoint.COMMIT)
    invite = resolve_invite(db, token_hash)
    return await commit_upload(db, storage, invite, body, client, background_tasks)

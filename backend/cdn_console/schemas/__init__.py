from cdn_console.schemas.common import Pagination
from cdn_console.schemas.invite import (
    CommitRequest,
    CommitResponse,
    InviteAdminResponse,
    InviteCreate,
    InviteCreateResponse,
    InviteListResponse,
    InviteMetadataResponse,
    InviteRevokeResponse,
    InviteTokenResponse,
    InviteUpdate,
    InviteUploadListResponse,
    InviteUploadResponse,
    SignPostRequest,
    SignPostResponse,
)
from cdn_console.schemas.user import ApiKeyResponse, UserResponse

__all__ = [
    "ApiKeyResponse",
    "CommitRequest",
    "CommitResponse",
    "InviteAdminResponse",
    "InviteCreate",
    "InviteCreateResponse",
    "InviteListResponse",
    "InviteMetadataResponse",
    "InviteRevokeResponse",
    "InviteTokenResponse",
    "InviteUpdate",
    "InviteUploadListResponse",
    "InviteUploadResponse",
    "Pagination",
    "SignPostRequest",
    "SignPostResponse",
    "UserResponse",
]

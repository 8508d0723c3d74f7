from cdn_console.models.audit_log import AuditLog
from cdn_console.models.cdn import Cdn
from cdn_console.models.invite import Invite, InviteStatus, InviteUpload, UploadStatus
from cdn_console.models.user import User, UserRole

__all__ = [
    "AuditLog",
    "Cdn",
    "Invite",
    "InviteStatus",
    "InviteUpload",
    "UploadStatus",
    "User",
    "UserRole",
]

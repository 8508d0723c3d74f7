"""Append-only audit trail. Writes are best-effort and never fail the caller."""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from sqlalchemy.orm import Session

from cdn_console.logging_config import get_logger
from cdn_console.models.audit_log import AuditLog

logger = get_logger(__name__)


class AuditAction(StrEnum):
    INVITE_CREATED = "INVITE_CREATED"
    INVITE_UPDATED = "INVITE_UPDATED"
    INVITE_REVOKED = "INVITE_REVOKED"
    INVITE_RESTORED = "INVITE_RESTORED"
    INVITE_TOKEN_REGENERATED = "INVITE_TOKEN_REGENERATED"
    INVITE_UPLOAD_REQUESTED = "INVITE_UPLOAD_REQUESTED"
    INVITE_UPLOAD_SUCCEEDED = "INVITE_UPLOAD_SUCCEEDED"
    INVITE_UPLOAD_FAILED = "INVITE_UPLOAD_FAILED"


@dataclass(frozen=True, slots=True)
class ClientInfo:
    """Caller fingerprint recorded alongside audit events and uploads."""

    ip: str | None = None
    user_agent: str | None = None


def invite_actor(label: str) -> str:
    """Actor string for anonymous invitees."""
    return f"invite:{label}"


def record_audit(
    db: Session,
    action: AuditAction,
    actor: str,
    details: dict[str, Any],
    client: ClientInfo | None = None,
) -> None:
    """
    Append an audit event.

    Call after the primary operation has committed: a failure here rolls back
    only the audit row, is logged, and is never raised.
    """
    client = client or ClientInfo()
    try:
        db.add(
            AuditLog(
                actor=actor,
                action=str(action),
                details=details,
                ip=client.ip,
                user_agent=client.user_agent,
            )
        )
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error("audit_write_failed", action=str(action), error=str(e), exc_info=True)

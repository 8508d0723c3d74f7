"""Upload notification webhook."""

import httpx

from cdn_console.config import settings
from cdn_console.logging_config import get_logger

logger = get_logger(__name__)


async def send_upload_notification(
    *,
    invite_id: str,
    label: str,
    key: str,
    size: int,
    content_type: str,
    notify_emails: list[str],
) -> bool:
    """
    Announce a committed invite upload to the configured webhook.

    Returns True if the webhook accepted the notification, False otherwise.
    Failures are logged but never raised - the upload has already committed.
    """
    webhook_url = settings.upload_webhook_url

    if not webhook_url:
        return False

    payload = {
        "event": "invite.upload.succeeded",
        "invite_id": invite_id,
        "label": label,
        "key": key,
        "size": size,
        "content_type": content_type,
        "notify_emails": notify_emails,
    }

    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(webhook_url, json=payload, timeout=10.0)
            response.raise_for_status()
            logger.info("upload_notification_sent", invite_id=invite_id)
            return True
    except httpx.HTTPStatusError as e:
        logger.error(
            "upload_webhook_error",
            invite_id=invite_id,
            status_code=e.response.status_code,
        )
        return False
    except httpx.RequestError as e:
        logger.error(
            "upload_webhook_request_error",
            invite_id=invite_id,
            error=str(e),
        )
        return False

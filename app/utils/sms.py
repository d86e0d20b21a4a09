import logging

import telnyx

from config import settings

_LOGGER = logging.getLogger(__name__)

SMS_MAX_CHARS = 160


def sms_configured() -> bool:
    return bool(settings.TELNYX_API_KEY and settings.TELNYX_FROM_NUMBER)


def send_sms(to: str, body: str) -> str:
    """Send ``body`` (truncated to one segment) and return the provider message id."""
    if not sms_configured():
        raise RuntimeError("Telnyx credentials not configured")
    telnyx.api_key = settings.TELNYX_API_KEY
    message = telnyx.Message.create(
        from_=settings.TELNYX_FROM_NUMBER, to=to, text=body[:SMS_MAX_CHARS]
    )
    _LOGGER.debug("[SMS] sent %s to %s", getattr(message, "id", "?"), to)
    return getattr(message, "id", "")

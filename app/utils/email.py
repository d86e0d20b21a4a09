"""Resend client used by the email channel."""

from __future__ import annotations

from typing import Any

import httpx

from app.utils.http import ProviderError, post_json
from config import settings


async def send_email(
    to: str,
    subject: str,
    html: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    if not settings.RESEND_API_KEY:
        raise ProviderError("RESEND_API_KEY not configured")
    return await post_json(
        settings.RESEND_API_URL,
        {"from": settings.EMAIL_FROM, "to": to, "subject": subject, "html": html},
        headers={"Authorization": f"Bearer {settings.RESEND_API_KEY}"},
        client=client,
    )

"""Expo push client used by the push channel."""

from __future__ import annotations

from typing import Any

import httpx

from app.utils.http import ProviderError, post_json
from config import settings


async def send_push(
    token: str,
    title: str,
    body: str,
    *,
    data: dict[str, Any] | None = None,
    priority: str = "normal",
    client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    resp = await post_json(
        settings.EXPO_PUSH_URL,
        {
            "to": token,
            "title": title,
            "body": body,
            "data": data or {},
            "sound": "default",
            "priority": priority,
            "badge": 1,
        },
        headers={"Accept": "application/json"},
        client=client,
    )
    # Expo answers 200 with a per-ticket status
    ticket = resp.get("data") or {}
    if isinstance(ticket, list):
        ticket = ticket[0] if ticket else {}
    if ticket.get("status") == "error":
        raise ProviderError(ticket.get("message") or "push ticket rejected")
    return resp

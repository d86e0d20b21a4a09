"""Shared JSON-over-HTTP helper for the email and push providers."""

from __future__ import annotations

from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from config import settings


class ProviderError(RuntimeError):
    """The provider answered, but not with a 2xx."""


# Retry only on transport errors; an HTTP error response is final
@retry(
    wait=wait_random_exponential(multiplier=0.5, max=5),
    stop=stop_after_attempt(settings.PROVIDER_ATTEMPTS),
    retry=retry_if_exception_type(httpx.TransportError),
    reraise=True,
)
async def _post(client: httpx.AsyncClient, url: str, **kwargs: Any) -> httpx.Response:
    return await client.post(url, timeout=settings.PROVIDER_TIMEOUT, **kwargs)


async def post_json(
    url: str,
    payload: dict[str, Any],
    *,
    headers: dict[str, str] | None = None,
    client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """POST ``payload`` and return the decoded body; raise ``ProviderError`` on non-2xx."""
    if client is None:
        async with httpx.AsyncClient() as owned:
            return await post_json(url, payload, headers=headers, client=owned)

    resp = await _post(client, url, json=payload, headers=headers or {})
    if resp.is_error:
        raise ProviderError(f"{resp.status_code} {resp.text[:500]}")
    return resp.json() if resp.content else {}

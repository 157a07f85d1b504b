"""
api_client.py
-------------
Thin async wrapper around the clinical REST API.

All workflow modules go through :class:`ApiClient`; this is the single place
where the base URL, timeout and transport-level error mapping live.  Status
codes are *not* interpreted here: each caller knows what a 404 or a 500 means
for its own operation.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .config import API_BASE_URL, API_TIMEOUT
from .errors import NetworkError, ServerError, Timeout

logger = logging.getLogger(__name__)


class ApiClient:
    """
    Opens one ``httpx.AsyncClient`` per call, mirroring a fire-once mobile
    request.  ``transport`` is injectable so tests can use
    ``httpx.MockTransport`` without touching the network.
    """

    def __init__(
        self,
        base_url: str = API_BASE_URL,
        timeout: float = API_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        files: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """
        Perform a single request.

        Raises `Timeout` when the server does not answer in time and
        `NetworkError` for any other transport failure.  Non-2xx responses
        are returned to the caller untouched.
        """
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, json=json, files=files)
        except httpx.TimeoutException as exc:
            logger.error("%s %s timed out after %.1fs: %s", method, path, self.timeout, exc)
            raise Timeout() from exc
        except httpx.RequestError as exc:
            logger.error("%s %s failed: %s", method, path, exc)
            raise NetworkError() from exc

        if not response.is_success:
            logger.error(
                "%s %s returned %s: %s",
                method, path, response.status_code, response.text[:800],
            )
        return response

    async def get(self, path: str) -> httpx.Response:
        return await self.request("GET", path)

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", path, **kwargs)


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------


def json_body(response: httpx.Response) -> Any:
    """Decode a JSON body or raise `ServerError` for malformed content."""
    try:
        return response.json()
    except ValueError as exc:
        logger.error("Malformed JSON body (status %s): %s", response.status_code, exc)
        raise ServerError("The server returned an unreadable response.",
                          status_code=response.status_code) from exc


def error_message(response: httpx.Response, fallback: str) -> str:
    """
    Pick the most useful message out of an error response.

    A plain-text body is shown as-is; a JSON object contributes its
    ``message`` field; anything else falls back to ``fallback``.
    """
    try:
        data = response.json()
    except ValueError:
        text = response.text.strip()
        return text or fallback
    if isinstance(data, str) and data.strip():
        return data.strip()
    if isinstance(data, dict):
        message = data.get("message") or data.get("error")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return fallback

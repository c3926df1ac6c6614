"""X (Twitter) API v2 broadcaster over httpx."""

from __future__ import annotations

import httpx

from roundkeeper.core.errors import BroadcastError
from roundkeeper.core.logging import get_logger

logger = get_logger(__name__)


class XBroadcaster:
    """Posts text through the X API v2 ``POST /2/tweets`` endpoint.

    Authenticates with a user-context bearer token.
    """

    def __init__(
        self,
        token: str,
        *,
        api_url: str = "https://api.x.com/2/tweets",
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not token:
            msg = "broadcast token is required"
            raise ValueError(msg)
        self._token = token
        self._api_url = api_url
        self._timeout = timeout_seconds
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client and not self._client.is_closed:
            await self._client.aclose()

    async def post(self, text: str) -> str:
        """Publish ``text`` and return the post id."""
        client = await self._get_client()
        try:
            resp = await client.post(
                self._api_url,
                json={"text": text},
                headers={"Authorization": f"Bearer {self._token}"},
            )
        except httpx.TransportError as exc:
            msg = f"broadcast transport error: {type(exc).__name__}"
            raise BroadcastError(msg, retryable=True) from exc

        if resp.status_code >= 400:
            retryable = resp.status_code == 429 or resp.status_code >= 500
            msg = f"broadcast rejected: HTTP {resp.status_code} {resp.text[:120]}"
            raise BroadcastError(msg, retryable=retryable, status_code=resp.status_code)

        try:
            post_id = str(resp.json()["data"]["id"])
        except (ValueError, KeyError, TypeError) as exc:
            msg = "broadcast response carried no post id"
            raise BroadcastError(msg, retryable=False) from exc
        logger.info("broadcast.posted", post_id=post_id, chars=len(text))
        return post_id

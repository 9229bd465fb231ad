"""Backend HTTP base class with shared async retry logic."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from ..types import BackendConfig, BackendError

logger = logging.getLogger(__name__)

RETRY_BACKOFF = [1.0, 2.0, 4.0]


class BaseBackend:
    """Owns the ``httpx.AsyncClient`` and the retry loop.

    Retries 429/5xx responses and transport errors with backoff; any
    other non-2xx status raises ``BackendError`` immediately.
    """

    def __init__(
        self,
        config: BackendConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_backoff: list[float] | None = None,
    ) -> None:
        self.config = config or BackendConfig()
        self.retry_backoff = RETRY_BACKOFF if retry_backoff is None else retry_backoff
        headers = {"Accept": "application/json"}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(self.config.timeout, connect=10.0),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    def set_token(self, token: str | None) -> None:
        if token:
            self._client.headers["Authorization"] = f"Bearer {token}"
        else:
            self._client.headers.pop("Authorization", None)

    async def _backoff(self, attempt: int) -> None:
        if attempt < len(self.retry_backoff):
            delay = self.retry_backoff[attempt]
        else:
            delay = self.retry_backoff[-1] if self.retry_backoff else 0.0
        if delay > 0:
            await asyncio.sleep(delay)

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict | None = None,
    ) -> httpx.Response:
        """Send a request with retry. Returns the final 2xx response."""
        max_retries = max(self.config.max_retries, 1)
        last_error: BackendError | None = None

        for attempt in range(max_retries):
            try:
                response = await self._client.request(method, path, json=json, params=params)
            except httpx.HTTPError as e:
                last_error = BackendError(f"HTTP error: {e}", endpoint=path)
                logger.warning("%s %s failed (attempt %d/%d): %s", method, path, attempt + 1, max_retries, e)
                if attempt < max_retries - 1:
                    await self._backoff(attempt)
                continue

            if 200 <= response.status_code < 300:
                return response

            if response.status_code == 429 or response.status_code >= 500:
                last_error = BackendError(
                    f"HTTP {response.status_code}: {response.text}",
                    endpoint=path,
                    status_code=response.status_code,
                )
                logger.warning(
                    "%s %s returned %d (attempt %d/%d)",
                    method, path, response.status_code, attempt + 1, max_retries,
                )
                if attempt < max_retries - 1:
                    await self._backoff(attempt)
                continue

            raise BackendError(
                f"HTTP {response.status_code}: {response.text}",
                endpoint=path,
                status_code=response.status_code,
            )

        raise last_error or BackendError("Max retries exceeded", endpoint=path)

    async def request_json(self, method: str, path: str, **kwargs) -> Any:
        response = await self.request(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise BackendError(f"Invalid JSON from {path}: {e}", endpoint=path,
                               status_code=response.status_code) from e

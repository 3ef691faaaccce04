"""
http.py – Async HTTP client built on *aiohttp* with smart retries,
          transparent 429 / 5xx / timeout back-off and per-instance default headers.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from email.utils import parsedate_to_datetime
from typing import Dict, Mapping, Optional

import aiohttp

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = (429, 500, 502, 503, 504)


class HttpClient:
    """
    Thin wrapper over *aiohttp.ClientSession* adding:

    * global & per-request headers
    * a per-request time box (``timeout`` seconds, total)
    * exponential back-off **with jitter** for 429 / 5xx / network errors / timeouts
    * transparent parsing of *Retry-After* header
    * async context-manager support

    ``max_retries`` counts total attempts, so ``max_retries=3`` means one
    try plus two retries.
    """

    def __init__(
        self,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
        max_retries: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        default_headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._external_session = session
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._own_session: Optional[aiohttp.ClientSession] = None
        self._default_headers: Dict[str, str] = dict(default_headers or {})

    # ---------------------------------------------- #
    # Async context-manager
    async def __aenter__(self) -> "HttpClient":  # noqa: D401
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        await self.close()

    # ---------------------------------------------- #
    # Session management
    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._external_session:
            return self._external_session
        if self._own_session is None or self._own_session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            self._own_session = aiohttp.ClientSession(timeout=timeout)
        return self._own_session

    async def close(self) -> None:
        if self._own_session and not self._own_session.closed:
            await self._own_session.close()
            self._own_session = None

    # ---------------------------------------------- #
    # Internal helpers
    @staticmethod
    def _parse_retry_after(header_val: str | None) -> Optional[float]:
        """Return seconds given a Retry-After header value."""
        if not header_val:
            return None
        header_val = header_val.strip()
        # seconds
        if header_val.isdigit():
            return float(header_val)
        # HTTP-date
        try:
            retry_at = parsedate_to_datetime(header_val).timestamp()
            return max(0.0, retry_at - time.time())
        except (TypeError, ValueError):
            return None

    def _merge_headers(self, extra: Mapping[str, str] | None) -> Dict[str, str]:
        merged: Dict[str, str] = {**self._default_headers}
        if extra:
            merged.update(extra)
        return merged

    def _backoff(self, attempt: int, retry_after: Optional[float]) -> float:
        if retry_after is not None:
            return min(retry_after, self._max_delay)
        exponential = min(self._base_delay * 2 ** (attempt - 1), self._max_delay)
        jitter = random.uniform(0, self._base_delay)
        return exponential + jitter

    async def _request(
        self,
        method: str,
        url: str,
        *,
        retry_for_status: tuple[int, ...] = RETRYABLE_STATUS,
        **kwargs,
    ) -> aiohttp.ClientResponse:
        """Perform a request with retries; returns *aiohttp.ClientResponse*."""
        session = await self._ensure_session()

        headers = self._merge_headers(kwargs.pop("headers", None))
        kwargs["headers"] = headers
        kwargs.setdefault("timeout", aiohttp.ClientTimeout(total=self._timeout))

        for attempt in range(1, self._max_retries + 1):
            try:
                resp = await session.request(method, url, **kwargs)
                if resp.status not in retry_for_status:
                    resp.raise_for_status()
                    return resp

                # Retry on specific status codes
                resp.release()
                raise aiohttp.ClientResponseError(
                    resp.request_info,
                    resp.history,
                    status=resp.status,
                    message=f"retryable status {resp.status}",
                    headers=resp.headers,
                )
            except (aiohttp.ClientConnectionError, aiohttp.ClientResponseError, asyncio.TimeoutError) as e:
                retryable = not (
                    isinstance(e, aiohttp.ClientResponseError) and e.status not in retry_for_status
                )
                # final attempt or non-retryable status – re-raise
                if attempt == self._max_retries or not retryable:
                    logger.debug("HTTP %s %s failed after %d attempts: %s", method, url, attempt, e)
                    raise

                retry_after_hdr = (
                    e.headers.get("Retry-After")
                    if isinstance(e, aiohttp.ClientResponseError) and e.headers
                    else None
                )
                sleep_seconds = self._backoff(attempt, self._parse_retry_after(retry_after_hdr))

                logger.warning(
                    "HTTP %s %s failed (attempt %d/%d – will retry in %.1fs): %s",
                    method,
                    url,
                    attempt,
                    self._max_retries,
                    sleep_seconds,
                    (str(e) or e.__class__.__name__).splitlines()[0],
                )
                await asyncio.sleep(sleep_seconds)

        # Should never hit here
        raise RuntimeError("Unreachable retry loop")

    # ---------------------------------------------- #
    # Public helpers
    async def get_text(self, url: str, **kwargs) -> str:
        async with await self._request("GET", url, **kwargs) as resp:
            return await resp.text(errors="replace")

    async def get_body(self, url: str, **kwargs) -> tuple[str, str]:
        """Return ``(content_type, text)`` so callers can sniff JSON-wrapped payloads."""
        async with await self._request("GET", url, **kwargs) as resp:
            return resp.headers.get("Content-Type", ""), await resp.text(errors="replace")

"""
Ordered fetch strategies: premium rendering service, direct fetch with
rotating client identities, and open relay fallback.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import List, Optional, Sequence, Tuple
from urllib.parse import quote

import aiohttp

from .config import FetchSettings, IdentityProfile, RelayEndpoint
from .errors import FetchExhausted, StrategyFailed
from .infra.http import HttpClient
from .interfaces import FetchStrategy
from .models import FetchResult

logger = logging.getLogger(__name__)

__all__ = [
    "FetchChain",
    "PremiumFetchStrategy",
    "DirectFetchStrategy",
    "RelayFetchStrategy",
]

# Markers of an interstitial served instead of the page.
_CHALLENGE_MARKERS = (
    "cf-browser-verification",
    "challenge-platform",
    "just a moment...",
    "attention required! | cloudflare",
    "g-recaptcha",
    "px-captcha",
)


def looks_like_challenge(html: str) -> bool:
    head = html[:5000].lower()
    return any(marker in head for marker in _CHALLENGE_MARKERS)


def _describe(exc: BaseException) -> str:
    if isinstance(exc, aiohttp.ClientResponseError):
        return f"HTTP {exc.status}: {exc.message}"
    text = str(exc)
    return text.splitlines()[0] if text else exc.__class__.__name__


# --------------------------------------------------------------------------- #
class PremiumFetchStrategy(FetchStrategy):
    """Rendering-capable retrieval service; skipped without a credential."""

    name = "premium"

    def __init__(self, settings: FetchSettings, *, http: Optional[HttpClient] = None) -> None:
        self._endpoint = settings.premium_endpoint
        self._api_key = settings.premium_api_key
        self._http = http or HttpClient(
            timeout=settings.premium_timeout,
            max_retries=settings.premium_retries + 1,
            base_delay=settings.premium_base_delay,
            max_delay=settings.premium_max_delay,
        )

    async def attempt(self, url: str) -> Optional[FetchResult]:
        if not self._api_key:
            logger.debug("Premium fetch skipped: no credential configured")
            return None

        params = {"api_key": self._api_key, "url": url, "render_js": "true"}
        try:
            html = await self._http.get_text(self._endpoint, params=params)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise StrategyFailed(_describe(e)) from e
        return FetchResult(html=html, method=self.name, url=url)

    async def close(self) -> None:
        await self._http.close()


# --------------------------------------------------------------------------- #
class DirectFetchStrategy(FetchStrategy):
    """Direct request, cycling through client identities until one is accepted."""

    name = "direct"

    def __init__(
        self,
        identities: Sequence[IdentityProfile],
        *,
        timeout: float = 15.0,
        http: Optional[HttpClient] = None,
    ) -> None:
        self._identities = list(identities)
        self._http = http or HttpClient(timeout=timeout, max_retries=1)

    async def attempt(self, url: str) -> Optional[FetchResult]:
        if not self._identities:
            return None

        last_error = "no identity accepted"
        for identity in self._identities:
            try:
                html = await self._http.get_text(url, headers=identity.headers)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = f"{identity.name}: {_describe(e)}"
                logger.debug(f"Direct fetch of {url} rejected for identity {identity.name}: {e}")
                continue

            if looks_like_challenge(html):
                last_error = f"{identity.name}: bot challenge page"
                logger.debug(f"Direct fetch of {url} got a challenge page as {identity.name}")
                continue

            return FetchResult(html=html, method=f"{self.name}:{identity.name}", url=url)

        raise StrategyFailed(last_error)

    async def close(self) -> None:
        await self._http.close()


# --------------------------------------------------------------------------- #
class RelayFetchStrategy(FetchStrategy):
    """Last resort: route the request through open content relays."""

    name = "relay"

    def __init__(
        self,
        relays: Sequence[RelayEndpoint],
        *,
        timeout: float = 10.0,
        http: Optional[HttpClient] = None,
    ) -> None:
        self._relays = list(relays)
        self._http = http or HttpClient(timeout=timeout, max_retries=1)

    @staticmethod
    def _unwrap(relay: RelayEndpoint, content_type: str, body: str) -> str:
        """Pull HTML out of a JSON envelope when the relay uses one."""
        if relay.json_field or "json" in content_type.lower():
            try:
                payload = json.loads(body)
            except ValueError:
                return body
            if isinstance(payload, dict):
                field = relay.json_field or "contents"
                value = payload.get(field)
                return value if isinstance(value, str) else ""
        return body

    async def attempt(self, url: str) -> Optional[FetchResult]:
        if not self._relays:
            return None

        last_error = "no relay answered"
        for relay in self._relays:
            relay_url = relay.template.format(url=quote(url, safe=""))
            try:
                content_type, body = await self._http.get_body(relay_url)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = f"{relay.name}: {_describe(e)}"
                logger.debug(f"Relay {relay.name} failed for {url}: {e}")
                continue

            html = self._unwrap(relay, content_type, body)
            if html:
                return FetchResult(html=html, method=f"{self.name}:{relay.name}", url=url)
            last_error = f"{relay.name}: empty payload"

        raise StrategyFailed(last_error)

    async def close(self) -> None:
        await self._http.close()


# --------------------------------------------------------------------------- #
class FetchChain:
    """Try each strategy in order until one yields usable HTML."""

    def __init__(self, strategies: Sequence[FetchStrategy], *, min_html_length: int = 100) -> None:
        self._strategies = list(strategies)
        self._min_len = min_html_length

    @classmethod
    def from_settings(cls, settings: FetchSettings) -> "FetchChain":
        return cls(
            [
                PremiumFetchStrategy(settings),
                DirectFetchStrategy(settings.identities, timeout=settings.direct_timeout),
                RelayFetchStrategy(settings.relays, timeout=settings.relay_timeout),
            ],
            min_html_length=settings.min_html_length,
        )

    @property
    def strategies(self) -> List[FetchStrategy]:
        return list(self._strategies)

    async def __aenter__(self) -> "FetchChain":
        return self

    async def __aexit__(self, *_) -> None:
        await self.close()

    async def fetch(self, url: str) -> FetchResult:
        """Return the first usable page or raise :class:`FetchExhausted`."""
        attempts: List[Tuple[str, str]] = []

        for strategy in self._strategies:
            try:
                result = await strategy.attempt(url)
            except Exception as e:  # noqa: BLE001 – any strategy failure falls through
                attempts.append((strategy.name, _describe(e)))
                logger.info(f"Fetch strategy {strategy.name} failed for {url}: {_describe(e)}")
                continue

            if result is None:
                continue

            length = len(result.html.strip())
            if length < self._min_len:
                attempts.append((strategy.name, f"content too short ({length} chars)"))
                logger.info(f"Fetch strategy {strategy.name} returned {length} chars for {url}, trying next")
                continue

            logger.debug(f"Fetched {url} via {result.method} ({length} chars)")
            return result

        raise FetchExhausted(url, attempts)

    async def close(self) -> None:
        for strategy in self._strategies:
            await strategy.close()

import json

import aiohttp
import pytest

from harvester.config import DEFAULT_IDENTITIES, DEFAULT_RELAYS, FetchSettings
from harvester.errors import FetchExhausted, StrategyFailed
from harvester.fetch_chain import (
    DirectFetchStrategy,
    FetchChain,
    PremiumFetchStrategy,
    RelayFetchStrategy,
    looks_like_challenge,
)

from conftest import FakeHttp, event_page


PAGE = event_page(3)
TARGET = "https://events.example.org/calendar?month=11"


def refuse(url, **kwargs):
    raise aiohttp.ClientConnectionError("connection refused")


@pytest.mark.asyncio
async def test_premium_skipped_without_credential():
    http = FakeHttp(lambda url, **kw: PAGE)
    strategy = PremiumFetchStrategy(FetchSettings(premium_api_key=None), http=http)
    assert await strategy.attempt(TARGET) is None
    assert http.calls == []


@pytest.mark.asyncio
async def test_premium_passes_credential_and_target():
    http = FakeHttp(lambda url, **kw: PAGE)
    strategy = PremiumFetchStrategy(FetchSettings(premium_api_key="secret"), http=http)

    result = await strategy.attempt(TARGET)
    assert result.method == "premium"
    assert result.html == PAGE

    (endpoint, kwargs), = http.calls
    assert endpoint == FetchSettings().premium_endpoint
    assert kwargs["params"] == {"api_key": "secret", "url": TARGET, "render_js": "true"}


@pytest.mark.asyncio
async def test_premium_failure_is_wrapped():
    strategy = PremiumFetchStrategy(FetchSettings(premium_api_key="secret"), http=FakeHttp(refuse))
    with pytest.raises(StrategyFailed, match="connection refused"):
        await strategy.attempt(TARGET)


@pytest.mark.asyncio
async def test_direct_rotates_identities_past_errors_and_challenges():
    agents = [identity.headers["User-Agent"] for identity in DEFAULT_IDENTITIES]

    def handler(url, headers):
        if headers["User-Agent"] == agents[0]:
            raise aiohttp.ClientConnectionError("reset by peer")
        if headers["User-Agent"] == agents[1]:
            return "<html><title>Just a moment...</title></html>"
        return PAGE

    http = FakeHttp(handler)
    result = await DirectFetchStrategy(DEFAULT_IDENTITIES, http=http).attempt(TARGET)
    assert result.method == "direct:firefox-linux"
    assert len(http.calls) == 3


@pytest.mark.asyncio
async def test_direct_raises_when_every_identity_fails():
    strategy = DirectFetchStrategy(DEFAULT_IDENTITIES, http=FakeHttp(refuse))
    with pytest.raises(StrategyFailed, match="firefox-linux"):
        await strategy.attempt(TARGET)


@pytest.mark.asyncio
async def test_relay_unwraps_json_envelope():
    def handler(url):
        return "application/json", json.dumps({"contents": PAGE, "status": {"http_code": 200}})

    http = FakeHttp(handler)
    result = await RelayFetchStrategy(DEFAULT_RELAYS, http=http).attempt(TARGET)
    assert result.method == "relay:allorigins"
    assert result.html == PAGE
    (relay_url, _), = http.calls
    assert relay_url == "https://api.allorigins.win/get?url=https%3A%2F%2Fevents.example.org%2Fcalendar%3Fmonth%3D11"


@pytest.mark.asyncio
async def test_relay_accepts_raw_html_from_second_relay():
    def handler(url):
        if "allorigins" in url:
            raise aiohttp.ClientConnectionError("timeout")
        return "text/html", PAGE

    result = await RelayFetchStrategy(DEFAULT_RELAYS, http=FakeHttp(handler)).attempt(TARGET)
    assert result.method == "relay:corsproxy"


def test_challenge_detection():
    assert looks_like_challenge('<div id="cf-browser-verification"></div>')
    assert not looks_like_challenge(PAGE)


@pytest.mark.asyncio
async def test_chain_moves_past_short_content():
    direct = DirectFetchStrategy(DEFAULT_IDENTITIES[:1], http=FakeHttp(lambda url, headers: "<html></html>"))
    relay = RelayFetchStrategy(DEFAULT_RELAYS[1:], http=FakeHttp(lambda url: ("text/html", PAGE)))
    premium = PremiumFetchStrategy(FetchSettings(), http=FakeHttp(refuse))

    async with FetchChain([premium, direct, relay]) as chain:
        result = await chain.fetch(TARGET)
    assert result.method == "relay:corsproxy"


@pytest.mark.asyncio
async def test_chain_exhaustion_reports_last_error():
    direct = DirectFetchStrategy(DEFAULT_IDENTITIES[:1], http=FakeHttp(refuse))
    relay = RelayFetchStrategy(DEFAULT_RELAYS[1:], http=FakeHttp(lambda url: ("text/html", "tiny")))
    chain = FetchChain([direct, relay])

    with pytest.raises(FetchExhausted) as info:
        await chain.fetch(TARGET)

    exc = info.value
    assert [name for name, _ in exc.attempts] == ["direct", "relay"]
    assert str(exc) == "content too short (4 chars)"
    assert TARGET in exc.describe()


def test_chain_from_settings_order():
    chain = FetchChain.from_settings(FetchSettings())
    assert [s.name for s in chain.strategies] == ["premium", "direct", "relay"]

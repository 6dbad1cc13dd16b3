import httpx
import pytest

from app.core.errors import UpstreamUnavailable
from app.services.verification_source import (
    LOG_ENDPOINTS,
    VerificationSourceClient,
    is_success_signal,
    log_confirms,
)

PERSONAL_ID = "01001012345"


def _client(handler) -> VerificationSourceClient:
    return VerificationSourceClient(
        base_url="https://intake.example.test/wp-json/wp/v2",
        user="api",
        password="secret",
        transport=httpx.MockTransport(handler),
    )


def test_success_signal_keywords():
    assert is_success_signal("Check VERIFIED")
    assert is_success_signal("true")
    assert not is_success_signal("failed")
    assert not is_success_signal(None)


def test_log_must_match_the_personal_id():
    log = {"title": {"rendered": "Check 99999999999"}, "content": {"rendered": "verified"}}
    assert not log_confirms(log, PERSONAL_ID)
    assert log_confirms({"acf": {"personal_id": PERSONAL_ID, "status": "success"}}, PERSONAL_ID)


@pytest.mark.asyncio
async def test_lookup_falls_through_to_next_endpoint():
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        endpoint = request.url.path.rsplit("/", 1)[-1]
        seen.append(endpoint)
        if endpoint == LOG_ENDPOINTS[0]:
            return httpx.Response(404)
        return httpx.Response(
            200,
            json=[{"title": {"rendered": f"Check {PERSONAL_ID}"}, "content": {"rendered": "წარმატებით"}}],
        )

    assert await _client(handler).lookup(PERSONAL_ID) is True
    assert seen == list(LOG_ENDPOINTS[:2])


@pytest.mark.asyncio
async def test_lookup_without_confirming_log_is_false():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"title": {"rendered": PERSONAL_ID}, "content": {"rendered": "error"}}])

    assert await _client(handler).lookup(PERSONAL_ID) is False


@pytest.mark.asyncio
async def test_lookup_unreachable_raises_upstream_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    with pytest.raises(UpstreamUnavailable):
        await _client(handler).lookup(PERSONAL_ID)


@pytest.mark.asyncio
async def test_unconfigured_lookup_raises():
    client = VerificationSourceClient(base_url="", user=None, password=None)
    with pytest.raises(UpstreamUnavailable):
        await client.lookup(PERSONAL_ID)

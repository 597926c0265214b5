"""Tests for GeoLocationProvider with a mocked HTTP transport."""

import httpx
import pytest

from bastion.errors import ErrorKind
from bastion.intel.geolocation import GeoLocationProvider
from bastion.utils.cache import LRUCache
from bastion.utils.rate_limiter import RateLimiter

SUCCESS = {
    "status": "success",
    "country": "Netherlands",
    "countryCode": "NL",
    "regionName": "North Holland",
    "city": "Amsterdam",
    "isp": "Example Hosting",
    "org": "Example BV",
    "lat": 52.37,
    "lon": 4.89,
    "timezone": "Europe/Amsterdam",
    "query": "203.0.113.10",
}


class Upstream:
    """Counts requests and answers with a fixed status/body."""

    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self.body = SUCCESS if body is None else body
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.body)


def _provider(upstream, max_requests=45):
    return GeoLocationProvider(
        cache=LRUCache(max_entries=10),
        rate_limiter=RateLimiter(max_requests=max_requests, window_seconds=60),
        base_url="http://geo.test/json",
        transport=httpx.MockTransport(upstream),
    )


@pytest.mark.asyncio
async def test_successful_lookup():
    upstream = Upstream()
    location = await _provider(upstream).lookup("203.0.113.10")

    assert location.available
    assert location.country == "Netherlands"
    assert location.city == "Amsterdam"
    assert location.lat == 52.37
    request = upstream.requests[0]
    assert request.url.path == "/json/203.0.113.10"
    assert "countryCode" in request.url.params["fields"]


@pytest.mark.asyncio
async def test_cache_hit_skips_request():
    upstream = Upstream()
    provider = _provider(upstream)
    first = await provider.lookup("203.0.113.10")
    second = await provider.lookup("203.0.113.10")
    assert first == second
    assert len(upstream.requests) == 1
    assert provider.stats()["cache"]["hits"] == 1


@pytest.mark.asyncio
async def test_local_budget_exhausted_returns_placeholder():
    upstream = Upstream()
    provider = _provider(upstream, max_requests=1)
    await provider.lookup("203.0.113.10")

    location = await provider.lookup("203.0.113.11")
    assert not location.available
    assert location.error_kind == ErrorKind.RATE_LIMITED
    assert len(upstream.requests) == 1


@pytest.mark.asyncio
async def test_upstream_429_returns_placeholder_uncached():
    upstream = Upstream(status_code=429, body={})
    provider = _provider(upstream)
    location = await provider.lookup("203.0.113.10")
    assert not location.available

    upstream.status_code, upstream.body = 200, SUCCESS
    assert (await provider.lookup("203.0.113.10")).available
    assert len(upstream.requests) == 2


@pytest.mark.asyncio
async def test_fail_status_returns_none():
    upstream = Upstream(body={"status": "fail", "message": "reserved range"})
    assert await _provider(upstream).lookup("203.0.113.10") is None


@pytest.mark.asyncio
async def test_server_error_returns_none():
    upstream = Upstream(status_code=502, body={})
    assert await _provider(upstream).lookup("203.0.113.10") is None


@pytest.mark.asyncio
async def test_network_error_returns_none():
    def boom(request):
        raise httpx.ConnectError("connection refused", request=request)

    provider = GeoLocationProvider(base_url="http://geo.test/json", transport=httpx.MockTransport(boom))
    assert await provider.lookup("203.0.113.10") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("ip", ["192.168.1.1", "10.0.0.5", "127.0.0.1", "not-an-ip"])
async def test_non_routable_never_queried(ip):
    upstream = Upstream()
    assert await _provider(upstream).lookup(ip) is None
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_lookup_many_skips_failures():
    upstream = Upstream()
    results = await _provider(upstream).lookup_many(["203.0.113.10", "192.168.0.1"])
    assert list(results) == ["203.0.113.10"]

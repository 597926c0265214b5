"""IP geolocation via ip-api.com (display only, never on the blocking path)."""

from typing import Optional

import httpx

from ..bridge.contracts import GeoLocation
from ..errors import ErrorKind
from ..utils import ip_validator
from ..utils.cache import LRUCache
from ..utils.logging import get_logger
from ..utils.rate_limiter import RateLimiter

logger = get_logger("intel.geolocation")

_IP_API_BASE_URL = "http://ip-api.com/json/"
_IP_API_FIELDS = "status,message,country,countryCode,regionName,city,isp,org,lat,lon,timezone,query"
_RATE_KEY = "ip-api"


class GeoLocationProvider:
    """Cached, rate-limited lookups. Failures are logged and returned as None.

    The free ip-api.com tier allows 45 requests per minute; once the local
    budget is spent, lookups return a placeholder with ``available=False``
    instead of waiting.
    """

    def __init__(
        self,
        cache: LRUCache | None = None,
        rate_limiter: RateLimiter | None = None,
        base_url: str = _IP_API_BASE_URL,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._cache = cache if cache is not None else LRUCache(max_entries=1000)
        self._rate_limiter = rate_limiter or RateLimiter(max_requests=45, window_seconds=60)
        self._base_url = base_url.rstrip("/") + "/"
        self._timeout = timeout
        self._transport = transport

    @staticmethod
    def rate_limited_placeholder(ip: str) -> GeoLocation:
        return GeoLocation(ip=ip, available=False, error_kind=ErrorKind.RATE_LIMITED)

    async def lookup(self, ip: str) -> Optional[GeoLocation]:
        if not ip_validator.is_routable(ip):
            return None
        ip = ip_validator.normalize(ip)

        cached = self._cache.get(ip)
        if cached is not None:
            return cached

        if not self._rate_limiter.try_acquire(_RATE_KEY):
            logger.debug("geolocation_rate_limited", ip=ip)
            return self.rate_limited_placeholder(ip)

        location = await self._fetch(ip)
        if location is not None and location.available:
            self._cache.set(ip, location)
        return location

    async def _fetch(self, ip: str) -> Optional[GeoLocation]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(f"{self._base_url}{ip}", params={"fields": _IP_API_FIELDS})
                if response.status_code == 429:
                    logger.debug("geolocation_upstream_rate_limited", ip=ip)
                    return self.rate_limited_placeholder(ip)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning("geolocation_http_error", ip=ip, status=exc.response.status_code)
            return None
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("geolocation_lookup_failed", ip=ip, error=str(exc))
            return None

        if data.get("status") != "success":
            logger.debug("geolocation_no_result", ip=ip, message=data.get("message"))
            return None

        return GeoLocation(
            ip=ip,
            country=data.get("country"),
            country_code=data.get("countryCode"),
            region=data.get("regionName"),
            city=data.get("city"),
            isp=data.get("isp"),
            org=data.get("org"),
            lat=data.get("lat"),
            lon=data.get("lon"),
            timezone=data.get("timezone"),
        )

    async def lookup_many(self, ips: list[str]) -> dict[str, GeoLocation]:
        """Sequential lookups; addresses past the rate budget come back as placeholders."""
        results = {}
        for ip in ips:
            location = await self.lookup(ip)
            if location is None:
                continue
            results[ip] = location
        return results

    def stats(self) -> dict:
        return {
            "cache": self._cache.stats(),
            "remaining_requests": self._rate_limiter.remaining(_RATE_KEY),
        }

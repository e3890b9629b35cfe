from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from ..config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeoLocation:
    country_code: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    timezone: Optional[str] = None


class NullGeoResolver:
    """Resolver used when geolocation lookups are disabled."""

    def lookup(self, ip: Optional[str]) -> Optional[GeoLocation]:
        return None


class HttpGeoResolver:
    """Looks up coarse location for an IP using an ip-api compatible endpoint.

    The IP is only sent to the lookup service, never stored.
    """

    def __init__(self, base_url: str, timeout: float = 2.0, client: Optional[httpx.Client] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    @staticmethod
    def _is_public(ip: str) -> bool:
        try:
            address = ipaddress.ip_address(ip)
        except ValueError:
            return False
        return not (address.is_private or address.is_loopback or address.is_reserved or address.is_link_local)

    def _get(self, url: str) -> httpx.Response:
        if self._client is not None:
            return self._client.get(url, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.get(url)

    def lookup(self, ip: Optional[str]) -> Optional[GeoLocation]:
        if not ip or not self._is_public(ip):
            return None
        try:
            response = self._get(f"{self.base_url}/{ip}")
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Geolocation lookup failed: %s", exc)
            return None

        if payload.get("status") != "success":
            return None
        country = payload.get("countryCode")
        return GeoLocation(
            country_code=country.upper()[:2] if country else None,
            region=payload.get("region") or payload.get("regionName"),
            city=payload.get("city"),
            timezone=payload.get("timezone"),
        )


def build_resolver(settings: Settings):
    if settings.geolocation_enabled:
        return HttpGeoResolver(settings.geolocation_url)
    return NullGeoResolver()

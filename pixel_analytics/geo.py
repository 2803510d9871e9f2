"""
IP to location lookup against an ip-api style JSON service.

Lookups never raise: any failure degrades to empty geo data so that
persisting the event is never blocked on a third party.
"""

from dataclasses import asdict, dataclass
import ipaddress

from loguru import logger
import requests

from pixel_analytics.config import Settings, get_settings


@dataclass(frozen=True)
class GeoData:
    city: str | None = None
    region: str | None = None
    country: str | None = None
    country_code: str | None = None
    timezone: str | None = None

    @classmethod
    def empty(cls) -> "GeoData":
        return cls()

    def is_empty(self) -> bool:
        return not any(asdict(self).values())


def is_public_ip(ip: str | None) -> bool:
    try:
        addr = ipaddress.ip_address((ip or "").strip())
    except ValueError:
        return False
    return not (
        addr.is_private
        or addr.is_loopback
        or addr.is_reserved
        or addr.is_multicast
        or addr.is_link_local
        or addr.is_unspecified
    )


class GeoResolver:
    def __init__(self, settings: Settings | None = None, session: requests.Session | None = None):
        self.settings = settings or get_settings()
        self.session = session or requests.Session()

    def lookup(self, ip: str | None) -> GeoData:
        if not self.settings.GEO_LOOKUP_ENABLED:
            return GeoData.empty()
        if not is_public_ip(ip):
            logger.debug(f"Skipping geo lookup for non-public IP {ip!r}")
            return GeoData.empty()

        url = self.settings.GEO_LOOKUP_URL.format(ip=ip)
        try:
            response = self.session.get(url, timeout=self.settings.GEO_TIMEOUT_SECONDS)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Geo lookup failed for {ip}: {e}")
            return GeoData.empty()

        if not isinstance(payload, dict) or payload.get("status") != "success":
            message = payload.get("message") if isinstance(payload, dict) else payload
            logger.warning(f"Geo lookup returned no data for {ip}: {message}")
            return GeoData.empty()

        return GeoData(
            city=payload.get("city") or None,
            region=payload.get("regionName") or payload.get("region") or None,
            country=payload.get("country") or None,
            country_code=payload.get("countryCode") or None,
            timezone=payload.get("timezone") or None,
        )

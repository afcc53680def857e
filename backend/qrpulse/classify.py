import ipaddress
import logging

import requests
from user_agents import parse

from .schemas import DeviceInfo, LocationInfo

logger = logging.getLogger(__name__)

TABLET_SIGNALS = ("ipad", "tablet", "kindle", "silk/", "playbook")
MOBILE_SIGNALS = ("mobile", "iphone", "ipod", "windows phone", "blackberry", "opera mini")


def _family(value: str) -> str:
    if not value or value == "Other":
        return "Unknown"
    return value


def classify(user_agent: str) -> DeviceInfo:
    """Derive device type, OS and browser from a user-agent string.

    Tablet signals are checked before mobile ones since tablet user agents often
    carry "Mobile" too. Anything unrecognised falls back to desktop / Unknown.
    """
    ua_string = user_agent or ""
    ua = ua_string.lower()
    parsed = parse(ua_string)

    if parsed.is_tablet or any(s in ua for s in TABLET_SIGNALS) or ("android" in ua and "mobile" not in ua):
        device_type = "tablet"
    elif parsed.is_mobile or any(s in ua for s in MOBILE_SIGNALS):
        device_type = "mobile"
    else:
        device_type = "desktop"

    return DeviceInfo(
        type=device_type,
        os=_family(parsed.os.family),
        browser=_family(parsed.browser.family),
        version=parsed.browser.version_string or "Unknown",
    )


def is_public_ip(ip: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return not (addr.is_private or addr.is_loopback or addr.is_reserved
                or addr.is_link_local or addr.is_multicast or addr.is_unspecified)


class GeoLocator:
    """Coarse IP geolocation through ip-api.com. Never raises."""

    def __init__(self, url_template: str = "http://ip-api.com/json/{ip}", timeout: float = 2.0,
                 enabled: bool = True, session: requests.Session = None):
        self.url_template = url_template
        self.timeout = timeout
        self.enabled = enabled
        self.session = session or requests.Session()

    def locate(self, ip: str) -> LocationInfo:
        if not self.enabled or not is_public_ip(ip):
            return LocationInfo()
        try:
            resp = self.session.get(self.url_template.format(ip=ip), timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
            if data.get("status") != "success":
                logger.info(f"Geolocation returned no result for {ip}: {data.get('message')}")
                return LocationInfo()
            return LocationInfo(
                country=data.get("country"),
                country_code=data.get("countryCode"),
                region=data.get("regionName"),
                city=data.get("city"),
                latitude=data.get("lat"),
                longitude=data.get("lon"),
                timezone=data.get("timezone"),
                postal_code=data.get("zip") or None,
                isp=data.get("isp"),
            )
        except (requests.RequestException, ValueError, AttributeError) as e:
            # ValueError covers bad JSON and payloads that fail validation
            logger.warning(f"Geolocation lookup failed for {ip}: {e}")
            return LocationInfo()

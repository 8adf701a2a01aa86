"""
IP-derived location for submissions.
Resolves the client IP from proxy headers and geolocates it over HTTP.
"""

import ipaddress
import logging
import re
from typing import Mapping, Optional

import httpx

from adl.core.config import settings
from adl.core.geo_utils import Location, to_finite

logger = logging.getLogger(__name__)

# Checked in order; the first present header wins
CLIENT_IP_HEADERS = ("x-vercel-forwarded-for", "x-forwarded-for", "x-real-ip")

IPV4_WITH_PORT = re.compile(r"^\d+\.\d+\.\d+\.\d+:\d+$")


def normalize_ip(raw: Optional[str]) -> Optional[str]:
    """
    Clean a header value down to a bare IP.

    Takes the first hop of a comma-separated list, strips IPv6 brackets,
    the IPv4-mapped ``::ffff:`` prefix and an IPv4 ``:port`` suffix.
    """
    if not raw:
        return None
    first = raw.split(",")[0].strip()
    if not first:
        return None
    cleaned = first
    if cleaned.startswith("["):
        cleaned = cleaned[1:]
    if cleaned.endswith("]"):
        cleaned = cleaned[:-1]
    if cleaned.startswith("::ffff:"):
        return cleaned[len("::ffff:"):]
    if IPV4_WITH_PORT.match(cleaned):
        return cleaned.split(":")[0]
    return cleaned


def is_private_ip(ip: str) -> bool:
    """Loopback, RFC 1918, unique-local and link-local addresses."""
    if ip in ("127.0.0.1", "::1"):
        return True
    if ip.startswith("10.") or ip.startswith("192.168."):
        return True
    if ip.startswith("172."):
        parts = ip.split(".")
        if len(parts) > 1 and parts[1].isdigit() and 16 <= int(parts[1]) <= 31:
            return True
    lowered = ip.lower()
    if lowered.startswith("fc") or lowered.startswith("fd"):
        return True
    if lowered.startswith("fe80:"):
        return True
    return False


def parse_ip(raw: Optional[str]) -> Optional[str]:
    """Normalized IP, or None when the value is not an IP address (e.g. a hostname)."""
    ip = normalize_ip(raw)
    if ip is None:
        return None
    try:
        ipaddress.ip_address(ip)
    except ValueError:
        return None
    return ip


def client_ip_from_headers(headers: Mapping[str, str], peer: Optional[str] = None) -> Optional[str]:
    """Resolve the client IP from forwarding headers, then the socket peer."""
    for header in CLIENT_IP_HEADERS:
        value = headers.get(header)
        if value:
            ip = parse_ip(value)
            if ip is not None:
                return ip
    return parse_ip(peer)


async def fetch_ip_location(
    ip: str,
    timeout_ms: Optional[int] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[Location]:
    """
    Geolocate an IP address.

    Any failure (timeout, HTTP error, unparseable body) yields None.

    Args:
        ip: Public IP address
        timeout_ms: Request timeout (defaults to the configured one)
        client: Optional shared httpx client

    Returns:
        Location or None
    """
    timeout = (timeout_ms or settings.ip_lookup_timeout_ms) / 1000
    url = settings.ip_geolocation_url.format(ip=ip)

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout) as own_client:
                response = await own_client.get(url)
        else:
            response = await client.get(url, timeout=timeout)

        if not response.is_success:
            logger.debug(f"IP lookup for {ip} returned HTTP {response.status_code}")
            return None
        data = response.json()

    except httpx.HTTPError as e:
        logger.warning(f"IP lookup for {ip} failed: {e}")
        return None
    except ValueError as e:
        logger.warning(f"IP lookup for {ip} returned invalid JSON: {e}")
        return None

    if not isinstance(data, dict):
        return None
    latitude = to_finite(data.get("latitude"))
    longitude = to_finite(data.get("longitude"))
    if latitude is None or longitude is None:
        return None
    return Location(latitude=latitude, longitude=longitude)


async def resolve_ip_location(
    headers: Mapping[str, str],
    peer: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[Location]:
    """IP-derived location for a request, or None for private/unknown IPs."""
    ip = client_ip_from_headers(headers, peer)
    if not ip or is_private_ip(ip):
        return None
    return await fetch_ip_location(ip, client=client)

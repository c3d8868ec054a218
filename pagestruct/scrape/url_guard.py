"""Submitted-URL validation: scheme check and private-network (SSRF) guard."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from typing import Awaitable, Callable
from urllib.parse import urlsplit

from pagestruct.errors import InvalidInput

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = ("http", "https")

# host -> list of resolved IP address strings
Resolver = Callable[[str], Awaitable[list[str]]]


async def system_resolver(host: str) -> list[str]:
    """Resolve host via the event loop's getaddrinfo (non-blocking)."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return sorted({info[4][0] for info in infos})


def is_private_address(address: str) -> bool:
    """True for loopback, private, link-local, reserved, multicast or unspecified."""
    ip = ipaddress.ip_address(address.split("%", 1)[0])  # drop IPv6 zone id
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return (
        not ip.is_global
        or ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
    )


def check_url_syntax(url: str, field: str = "url") -> str:
    """Return the URL host after checking scheme and shape. Raises InvalidInput."""
    if not isinstance(url, str) or not url.strip():
        raise InvalidInput(f"{field} is required", details={"field": field})
    try:
        parts = urlsplit(url.strip())
        host = parts.hostname
        _ = parts.port  # raises ValueError on a malformed port
    except ValueError as e:
        raise InvalidInput(f"{field} is not a valid URL: {e}", details={"field": field}) from e
    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        raise InvalidInput(
            f"{field} must use http or https (got '{parts.scheme or 'none'}')",
            details={"field": field, "scheme": parts.scheme},
        )
    if not host:
        raise InvalidInput(f"{field} has no host", details={"field": field})
    return host


class URLGuard:
    """Rejects URLs that are malformed or point into private address space."""

    def __init__(self, allow_private: bool = False, resolver: Resolver | None = None):
        self.allow_private = allow_private
        self._resolver = resolver or system_resolver

    async def check(self, url: str, field: str = "url") -> str:
        host = check_url_syntax(url, field)
        if self.allow_private:
            return url

        if host.lower() in ("localhost", "localhost.localdomain") or host.lower().endswith(".localhost"):
            raise InvalidInput(f"{field} points to a private address", details={"field": field, "host": host})

        try:
            addresses = [str(ipaddress.ip_address(host))]
        except ValueError:
            try:
                addresses = await self._resolver(host)
            except (OSError, UnicodeError) as e:
                # Unresolvable hosts fail later as fetch errors, not as input errors
                logger.debug("Could not resolve %s during URL check: %s", host, e)
                return url

        blocked = [a for a in addresses if is_private_address(a)]
        if blocked:
            raise InvalidInput(
                f"{field} points to a private address",
                details={"field": field, "host": host, "addresses": blocked},
            )
        return url

"""Request utility functions and the narrow request view used by the auth core."""

import ipaddress
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from starlette.requests import HTTPConnection

logger = logging.getLogger(__name__)

_LOCAL_HOSTS = ("127.0.0.1", "::1", "localhost")


def _is_valid_ip(ip_str: str) -> bool:
    """Check if a string is a valid IP address."""
    try:
        ipaddress.ip_address(ip_str)
        return True
    except ValueError:
        return False


def get_client_ip(request: HTTPConnection) -> str | None:
    """Get the client IP address from a request.

    Priority order:
    1. CF-Connecting-IP (set by the Cloudflare edge)
    2. X-Real-IP, only when the direct peer is a local reverse proxy
    3. Direct client connection

    X-Forwarded-For is never trusted since clients can set it freely.
    """
    cf_ip = request.headers.get("CF-Connecting-IP")
    if cf_ip:
        ip = cf_ip.strip()
        if _is_valid_ip(ip):
            return ip
        logger.warning(f"Invalid CF-Connecting-IP: {cf_ip}")

    if request.client and request.client.host in _LOCAL_HOSTS:
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            ip = real_ip.strip()
            if _is_valid_ip(ip):
                return ip
            logger.warning(f"Invalid X-Real-IP: {real_ip}")

    if request.client:
        return request.client.host

    return None


@dataclass(frozen=True)
class RequestContext:
    """What token extraction, the CSRF guard and the auth gate look at.

    Header names are stored lower-cased.
    """

    method: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    cookies: Mapping[str, str] = field(default_factory=dict)
    client_ip: str | None = None

    @classmethod
    def from_request(cls, request: HTTPConnection) -> "RequestContext":
        return cls(
            method=request.scope.get("method", "GET").upper(),
            path=request.url.path,
            headers={k.lower(): v for k, v in request.headers.items()},
            cookies=dict(request.cookies),
            client_ip=get_client_ip(request),
        )

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    @property
    def user_agent(self) -> str | None:
        return self.header("user-agent")

    @property
    def is_api(self) -> bool:
        return self.path == "/api" or self.path.startswith("/api/")

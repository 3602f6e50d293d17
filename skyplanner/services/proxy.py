"""Reverse proxy client for the backend API.

Browser requests under ``/api/app/*`` are forwarded to the backend with a
fixed header allowlist. Failures are reported as ``ProxyError``; upstream
error text only ever reaches the server log. Requests are never retried.
"""

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass

import httpx

from skyplanner.core.config import Settings
from skyplanner.core.errors import ProxyError, ValidationError

logger = logging.getLogger(__name__)

FORWARDED_REQUEST_HEADERS = ("cookie", "content-type", "authorization", "x-csrf-token")

# Transport-level headers, plus those invalidated by re-emitting a decoded body
EXCLUDED_RESPONSE_HEADERS = frozenset(
    {"transfer-encoding", "connection", "content-encoding", "content-length", "keep-alive"}
)

BODYLESS_METHODS = ("GET", "HEAD")


@dataclass(frozen=True)
class ProxiedResponse:
    status_code: int
    headers: list[tuple[str, str]]
    body: bytes


def validate_proxy_path(path: str) -> str:
    """Reject traversal attempts and return the path without leading slashes."""
    if ".." in path or "\x00" in path:
        raise ValidationError("Ugyldig sti")
    return path.lstrip("/")


class BackendProxy:
    """Forwards requests to the backend over a shared httpx client."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        max_response_bytes: int = 50 * 1024 * 1024,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_response_bytes = max_response_bytes
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> "BackendProxy":
        return cls(
            base_url=settings.backend_api_url,
            timeout=settings.proxy_timeout,
            max_response_bytes=settings.proxy_max_response_bytes,
            transport=transport,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.AsyncClient(
                    timeout=self.timeout,
                    limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
                    transport=self._transport,
                    follow_redirects=False,
                )
            return self._client

    async def close(self) -> None:
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None

    def build_url(self, path: str, query: str = "") -> str:
        url = f"{self.base_url}/api/{validate_proxy_path(path)}"
        if query:
            url = f"{url}?{query}"
        return url

    @staticmethod
    def forwarded_headers(
        headers: Mapping[str, str], client_ip: str | None = None
    ) -> dict[str, str]:
        lowered = {k.lower(): v for k, v in headers.items()}
        forwarded = {
            name: lowered[name] for name in FORWARDED_REQUEST_HEADERS if name in lowered
        }
        if client_ip:
            forwarded["x-forwarded-for"] = client_ip
        return forwarded

    async def forward(
        self,
        method: str,
        path: str,
        query: str = "",
        headers: Mapping[str, str] | None = None,
        body: bytes | None = None,
        client_ip: str | None = None,
    ) -> ProxiedResponse:
        """Send one request to the backend and collect its response.

        Raises:
            ValidationError: Path attempts traversal
            ProxyError: Backend unreachable, too slow or response too large
        """
        url = self.build_url(path, query)
        method = method.upper()
        client = await self._get_client()
        request = client.build_request(
            method,
            url,
            headers=self.forwarded_headers(headers or {}, client_ip),
            content=None if method in BODYLESS_METHODS else body,
        )

        try:
            response = await client.send(request, stream=True)
        except httpx.TimeoutException as e:
            logger.error(f"Proxy timeout: {method} {url}: {e!r}")
            raise ProxyError("Backend svarte ikke i tide", code="PROXY_TIMEOUT") from e
        except httpx.HTTPError as e:
            logger.error(f"Proxy error: {method} {url}: {e!r}")
            raise ProxyError() from e

        try:
            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > self.max_response_bytes:
                raise self._too_large(method, url)

            chunks: list[bytes] = []
            received = 0
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if received > self.max_response_bytes:
                    raise self._too_large(method, url)
                chunks.append(chunk)
        except httpx.TimeoutException as e:
            logger.error(f"Proxy timeout reading body: {method} {url}: {e!r}")
            raise ProxyError("Backend svarte ikke i tide", code="PROXY_TIMEOUT") from e
        except httpx.HTTPError as e:
            logger.error(f"Proxy error reading body: {method} {url}: {e!r}")
            raise ProxyError() from e
        finally:
            await response.aclose()

        return ProxiedResponse(
            status_code=response.status_code,
            headers=[
                (name, value)
                for name, value in response.headers.multi_items()
                if name.lower() not in EXCLUDED_RESPONSE_HEADERS
            ],
            body=b"".join(chunks),
        )

    def _too_large(self, method: str, url: str) -> ProxyError:
        logger.error(f"Proxy response exceeds {self.max_response_bytes} bytes: {method} {url}")
        return ProxyError("Svaret fra backend er for stort", code="RESPONSE_TOO_LARGE")

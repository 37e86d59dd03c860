"""HTTP client for the remote library API.

This module provides:
- APIClient: Async HTTP client for communicating with the API
- Message: A single (possibly paginated) API response
- Error classes mapped from HTTP status codes
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from shelfsync.core.config import APIConfig

logger = logging.getLogger(__name__)

LINK_PATTERN = re.compile(r'<([^>]+)>;\s*rel="([^"]+)"')


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Authentication failed or key lacks access."""


class NotFoundError(APIError):
    """Resource not found."""


class RateLimitError(APIError):
    """Too many requests; retry after the given delay."""

    def __init__(
        self, message: str, status_code: int | None = None, retry_after: float | None = None
    ) -> None:
        super().__init__(message, status_code)
        self.retry_after = retry_after


def parse_links(header: str | None) -> dict[str, str]:
    """Parse a Link header into a rel -> url mapping.

    Args:
        header: Raw Link header value.

    Returns:
        Mapping of relation names to URLs.
    """
    if not header:
        return {}
    return {rel: url for url, rel in LINK_PATTERN.findall(header)}


def content_kind(content_type: str | None) -> str:
    """Classify a response content type as json, text or binary."""
    if not content_type:
        return "binary"
    mime = content_type.split(";", 1)[0].strip().lower()
    if mime == "application/json" or mime.endswith("+json"):
        return "json"
    if mime.startswith("text/"):
        return "text"
    return "binary"


@dataclass
class Message:
    """A response from the API.

    Attributes:
        type: Kind of payload ("json", "text" or "binary").
        data: Decoded payload.
        version: Library version reported by the server.
        unmodified: True if the server answered 304 Not Modified.
        total: Total number of results across all pages, if reported.
        links: Pagination links indexed by relation.
        headers: Response headers.
    """

    type: str = "json"
    data: Any = None
    version: int | None = None
    unmodified: bool = False
    total: int | None = None
    links: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    follow: Callable[[str], Awaitable[Message]] | None = field(
        default=None, repr=False, compare=False
    )

    @property
    def multi(self) -> bool:
        """Whether the result spans more than one page."""
        return "next" in self.links or "prev" in self.links

    @property
    def done(self) -> bool:
        """Whether this is the last page."""
        return "next" not in self.links

    async def next(self) -> Message:
        """Fetch the following page.

        Raises:
            APIError: If there is no following page.
        """
        if self.done or self.follow is None:
            raise APIError("no more pages")
        return await self.follow(self.links["next"])

    @classmethod
    def from_response(
        cls,
        response: httpx.Response,
        follow: Callable[[str], Awaitable[Message]] | None = None,
    ) -> Message:
        """Create from an httpx response."""
        if response.status_code == 304:
            return cls(type="none", unmodified=True, headers=dict(response.headers))

        kind = content_kind(response.headers.get("content-type"))
        if kind == "json":
            data: Any = response.json()
        elif kind == "text":
            data = response.text
        else:
            data = response.content

        return cls(
            type=kind,
            data=data,
            version=_int_header(response, "last-modified-version"),
            total=_int_header(response, "total-results"),
            links=parse_links(response.headers.get("link")),
            headers=dict(response.headers),
            follow=follow,
        )


def _int_header(response: httpx.Response, name: str) -> int | None:
    value = response.headers.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring malformed %s header: %r", name, value)
        return None


class APIClient:
    """Async HTTP client for the library API."""

    def __init__(self, config: APIConfig | None = None) -> None:
        """Initialize the API client.

        Args:
            config: API configuration (URL, timeout, TLS verification).
        """
        self._config = config or APIConfig()
        self._client = httpx.AsyncClient(
            base_url=self._config.api_url,
            timeout=self._config.timeout,
            verify=self._config.verify_ssl,
            headers={"Zotero-API-Version": self._config.api_version},
            follow_redirects=True,
        )

    @property
    def config(self) -> APIConfig:
        """Get the client configuration."""
        return self._config

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> APIClient:
        """Context manager entry."""
        return self

    async def __aexit__(self, *args: object) -> None:
        """Context manager exit."""
        await self.aclose()

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code in (401, 403):
            raise AuthenticationError("Invalid key or access denied", response.status_code)
        if response.status_code == 404:
            raise NotFoundError(f"Resource not found: {response.url.path}", 404)
        if response.status_code == 429:
            retry_after = response.headers.get("retry-after")
            raise RateLimitError(
                "Too many requests",
                429,
                retry_after=float(retry_after) if retry_after else None,
            )
        if response.status_code >= 400:
            raise APIError(response.text or "Unknown error", response.status_code)
        return response

    async def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Message:
        """Fetch a resource.

        Args:
            path: Resource path relative to the API URL.
            params: Query parameters.
            headers: Additional HTTP headers.

        Returns:
            The API response; follow-up pages reuse the same headers.
        """
        logger.debug("GET %s %s", path, params or "")
        response = self._handle_response(
            await self._client.get(path, params=params, headers=headers)
        )
        return Message.from_response(response, follow=self._follower(headers))

    async def delete(self, path: str, headers: dict[str, str] | None = None) -> None:
        """Delete a resource.

        Args:
            path: Resource path relative to the API URL.
            headers: Additional HTTP headers.
        """
        logger.debug("DELETE %s", path)
        self._handle_response(await self._client.delete(path, headers=headers))

    def _follower(
        self, headers: dict[str, str] | None
    ) -> Callable[[str], Awaitable[Message]]:
        async def follow(url: str) -> Message:
            logger.debug("GET %s", url)
            response = self._handle_response(await self._client.get(url, headers=headers))
            return Message.from_response(response, follow=follow)

        return follow

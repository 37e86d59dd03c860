"""Tests for the library API client."""

from __future__ import annotations

import httpx
import pytest

from shelfsync.client.api import (
    APIClient,
    APIError,
    AuthenticationError,
    Message,
    NotFoundError,
    RateLimitError,
    content_kind,
    parse_links,
)
from shelfsync.core.config import APIConfig

BASE = "https://api.test"


def make_client() -> APIClient:
    """Create an APIClient for testing."""
    return APIClient(APIConfig(api_url=BASE + "/"))


class TestParseLinks:
    """Tests for Link header parsing."""

    def test_parses_relations(self) -> None:
        """Should map relation names to URLs."""
        header = (
            '<https://api.test/users/1/items?start=50>; rel="next", '
            '<https://api.test/users/1/items?start=100>; rel="last"'
        )

        assert parse_links(header) == {
            "next": "https://api.test/users/1/items?start=50",
            "last": "https://api.test/users/1/items?start=100",
        }

    def test_empty(self) -> None:
        """Should return an empty mapping for missing headers."""
        assert parse_links(None) == {}
        assert parse_links("") == {}


class TestContentKind:
    """Tests for content type classification."""

    @pytest.mark.parametrize(
        ("content_type", "kind"),
        [
            ("application/json", "json"),
            ("application/json; charset=utf-8", "json"),
            ("application/vnd.api+json", "json"),
            ("text/plain", "text"),
            ("application/pdf", "binary"),
            (None, "binary"),
        ],
    )
    def test_kinds(self, content_type: str | None, kind: str) -> None:
        """Should classify content types."""
        assert content_kind(content_type) == kind


class TestMessage:
    """Tests for Message pagination properties."""

    def test_single_page(self) -> None:
        """Should be done without links."""
        m = Message(data={})

        assert m.multi is False
        assert m.done is True

    def test_first_page(self) -> None:
        """Should not be done while a next link exists."""
        m = Message(links={"next": "/p2"})

        assert m.multi is True
        assert m.done is False

    def test_last_page(self) -> None:
        """Should be done on the last of several pages."""
        m = Message(links={"prev": "/p1"})

        assert m.multi is True
        assert m.done is True

    @pytest.mark.asyncio
    async def test_next_when_done(self) -> None:
        """Should raise when there is no next page."""
        with pytest.raises(APIError):
            await Message().next()


class TestAPIClient:
    """Tests for APIClient requests."""

    @pytest.mark.asyncio
    async def test_get_json(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should decode JSON and read version headers."""
        httpx_mock.add_response(
            url=f"{BASE}/users/1/items?format=versions",
            json={"A": 3},
            headers={"Last-Modified-Version": "3", "Total-Results": "1"},
        )

        async with make_client() as client:
            message = await client.get("/users/1/items", params={"format": "versions"})

        assert message.type == "json"
        assert message.data == {"A": 3}
        assert message.version == 3
        assert message.total == 1
        assert message.unmodified is False

    @pytest.mark.asyncio
    async def test_sends_headers(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should send the API version and request headers."""
        httpx_mock.add_response(url=f"{BASE}/users/1/items", json=[])

        async with make_client() as client:
            await client.get("/users/1/items", headers={"Authorization": "Bearer k"})

        request = httpx_mock.get_request()
        assert request.headers["Zotero-API-Version"] == "3"
        assert request.headers["Authorization"] == "Bearer k"

    @pytest.mark.asyncio
    async def test_not_modified(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should report 304 responses as unmodified."""
        httpx_mock.add_response(url=f"{BASE}/users/1/items", status_code=304)

        async with make_client() as client:
            message = await client.get("/users/1/items")

        assert message.unmodified is True
        assert message.version is None

    @pytest.mark.asyncio
    async def test_text_and_binary(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should keep text and binary payloads undecoded."""
        httpx_mock.add_response(
            url=f"{BASE}/a", text="hello", headers={"Content-Type": "text/plain"}
        )
        httpx_mock.add_response(
            url=f"{BASE}/b", content=b"%PDF", headers={"Content-Type": "application/pdf"}
        )

        async with make_client() as client:
            text = await client.get("/a")
            binary = await client.get("/b")

        assert (text.type, text.data) == ("text", "hello")
        assert (binary.type, binary.data) == ("binary", b"%PDF")

    @pytest.mark.asyncio
    async def test_follows_pages(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should fetch following pages with the same headers."""
        httpx_mock.add_response(
            url=f"{BASE}/users/1/items",
            json={"A": 1},
            headers={
                "Last-Modified-Version": "5",
                "Link": f'<{BASE}/users/1/items?start=1>; rel="next"',
            },
        )
        httpx_mock.add_response(
            url=f"{BASE}/users/1/items?start=1",
            json={"B": 2},
            headers={
                "Last-Modified-Version": "5",
                "Link": f'<{BASE}/users/1/items>; rel="prev"',
            },
        )

        async with make_client() as client:
            first = await client.get("/users/1/items", headers={"Authorization": "Bearer k"})
            second = await first.next()

        assert second.data == {"B": 2}
        assert second.done is True
        assert httpx_mock.get_requests()[1].headers["Authorization"] == "Bearer k"

    @pytest.mark.asyncio
    async def test_delete(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should send DELETE requests."""
        httpx_mock.add_response(method="DELETE", url=f"{BASE}/users/1/keys/k", status_code=204)

        async with make_client() as client:
            await client.delete("/users/1/keys/k")

        assert httpx_mock.get_request().method == "DELETE"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "error"),
        [
            (401, AuthenticationError),
            (403, AuthenticationError),
            (404, NotFoundError),
            (500, APIError),
        ],
    )
    async def test_errors(self, httpx_mock, status: int, error: type[APIError]) -> None:  # type: ignore[no-untyped-def]
        """Should map error statuses to exceptions."""
        httpx_mock.add_response(url=f"{BASE}/users/1/items", status_code=status)

        async with make_client() as client:
            with pytest.raises(error) as exc_info:
                await client.get("/users/1/items")

        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_rate_limit(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should expose the Retry-After delay."""
        httpx_mock.add_response(
            url=f"{BASE}/users/1/items", status_code=429, headers={"Retry-After": "10"}
        )

        async with make_client() as client:
            with pytest.raises(RateLimitError) as exc_info:
                await client.get("/users/1/items")

        assert exc_info.value.retry_after == 10.0

    @pytest.mark.asyncio
    async def test_network_errors_propagate(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should not swallow transport errors."""
        httpx_mock.add_exception(httpx.ConnectError("refused"))

        async with make_client() as client:
            with pytest.raises(httpx.ConnectError):
                await client.get("/users/1/items")

"""Tests for the GitHub client: response parsing and HTTP error mapping."""

import base64
import json
from datetime import datetime, timezone

import aiohttp
import pytest

from stargazer_sync.api.error_handling import (
    AccessDeniedError,
    AuthenticationError,
    MalformedRequestError,
    MalformedResponseError,
    RateLimitedError,
    TransientNetworkError,
)
from stargazer_sync.api.github_client import (
    GitHubClient,
    parse_item,
    parse_page,
    parse_rate_limit_headers,
)
from stargazer_sync.config.api import APIConfig
from stargazer_sync.data.models import ContentNotFound, ContentPayload

from conftest import make_item


def _edge(index, readme_oid="oid-md", **node_overrides):
    node = {
        "id": f"R_{index}",
        "name": f"repo{index}",
        "nameWithOwner": f"octo/repo{index}",
        "description": "A repo",
        "url": f"https://github.com/octo/repo{index}",
        "stargazerCount": 42,
        "primaryLanguage": {"name": "Python"},
        "owner": {"login": "octo"},
        "createdAt": "2020-01-01T00:00:00Z",
        "updatedAt": "2024-01-01T00:00:00Z",
        "repositoryTopics": {"nodes": [{"topic": {"name": "cli"}}, {"topic": {"name": "sync"}}]},
        "readmeMd": {"oid": readme_oid} if readme_oid else None,
        "readmeLower": None,
        "readmeRst": None,
        "readmePlain": None,
    }
    node.update(node_overrides)
    return {"starredAt": "2024-02-01T00:00:00Z", "node": node}


def _payload(edges, has_next=False, end_cursor=None, total=None):
    return {
        "data": {
            "viewer": {
                "starredRepositories": {
                    "totalCount": total if total is not None else len(edges),
                    "pageInfo": {"hasNextPage": has_next, "endCursor": end_cursor},
                    "edges": edges,
                }
            },
            "rateLimit": {"limit": 5000, "cost": 1, "remaining": 4990, "resetAt": "2024-01-01T01:00:00Z"},
        }
    }


class FakeResponse:
    def __init__(self, status=200, body="", headers=None):
        self.status = status
        self._body = body if isinstance(body, str) else json.dumps(body)
        self.headers = headers or {}

    async def text(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.closed = False
        self.requests = []

    def _request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response

    def post(self, url, **kwargs):
        return self._request("POST", url, **kwargs)

    def get(self, url, **kwargs):
        return self._request("GET", url, **kwargs)

    async def close(self):
        self.closed = True


class TestParsing:
    def test_parse_item_maps_fields(self):
        item = parse_item(_edge(1))

        assert item.id == "R_1"
        assert item.name_with_owner == "octo/repo1"
        assert item.star_count == 42
        assert item.primary_language == "Python"
        assert item.owner == "octo"
        assert item.starred_at == "2024-02-01T00:00:00Z"
        assert item.topics == ["cli", "sync"]
        assert item.content_fingerprint == "oid-md"

    def test_fingerprint_falls_back_to_other_readme_names(self):
        item = parse_item(_edge(1, readme_oid=None, readmeRst={"oid": "oid-rst"}))
        assert item.content_fingerprint == "oid-rst"

    def test_no_readme_has_no_fingerprint(self):
        item = parse_item(_edge(1, readme_oid=None, primaryLanguage=None))
        assert item.content_fingerprint is None
        assert item.primary_language is None

    def test_parse_page(self):
        page = parse_page(_payload([_edge(1), _edge(2)], has_next=True, end_cursor="Y3Vyc29y", total=300))

        assert [item.id for item in page.items] == ["R_1", "R_2"]
        assert page.has_more is True
        assert page.next_cursor == "Y3Vyc29y"
        assert page.total_count == 300
        assert page.rate_limit.remaining == 4990
        assert page.rate_limit.reset_at == datetime(2024, 1, 1, 1, tzinfo=timezone.utc)

    def test_last_page(self):
        page = parse_page(_payload([_edge(1)]))
        assert page.has_more is False
        assert page.next_cursor is None

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"data": None},
            {"data": {"viewer": {}}},
            _payload([{"node": {"name": "no id"}}]),
            _payload([_edge(1)], has_next=True, end_cursor=None),
        ],
    )
    def test_malformed_page(self, payload):
        with pytest.raises(MalformedResponseError):
            parse_page(payload)

    def test_rate_limit_headers(self):
        info = parse_rate_limit_headers(
            {
                "x-ratelimit-limit": "5000",
                "x-ratelimit-remaining": "120",
                "x-ratelimit-used": "4880",
                "x-ratelimit-reset": "1704067200",
            }
        )
        assert info.limit == 5000
        assert info.remaining == 120
        assert info.used == 4880
        assert info.reset_at == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_rate_limit_headers_absent(self):
        assert parse_rate_limit_headers({}) is None
        assert parse_rate_limit_headers({"x-ratelimit-limit": "n/a", "x-ratelimit-remaining": "1"}) is None


class TestErrorMapping:
    def setup_method(self):
        self.client = GitHubClient(token="t0ken")

    @pytest.mark.parametrize(
        "status,headers,item_id,expected",
        [
            (401, {}, None, AuthenticationError),
            (403, {}, None, AuthenticationError),
            (403, {}, "R_1", AccessDeniedError),
            (403, {"x-ratelimit-remaining": "0"}, None, RateLimitedError),
            (403, {"retry-after": "30"}, "R_1", RateLimitedError),
            (429, {}, None, RateLimitedError),
            (500, {}, None, TransientNetworkError),
            (502, {}, None, TransientNetworkError),
            (503, {}, "R_1", TransientNetworkError),
            (400, {}, None, MalformedRequestError),
            (422, {}, None, MalformedRequestError),
        ],
    )
    def test_status_mapping(self, status, headers, item_id, expected):
        error = self.client._error_for_status(status, headers, "body", item_id=item_id)
        assert type(error) is expected

    def test_retry_after_sets_wait(self):
        error = self.client._error_for_status(429, {"retry-after": "12"}, "")
        assert error.wait_seconds() == 12.0

    def test_reset_header_sets_wait(self):
        error = self.client._error_for_status(
            403,
            {"x-ratelimit-limit": "5000", "x-ratelimit-remaining": "0", "x-ratelimit-reset": "1704067200"},
            "",
        )
        assert error.reset_at == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert error.wait_seconds(now=datetime(2023, 12, 31, 23, 59, tzinfo=timezone.utc)) == 60.0

    def test_graphql_rate_limited_without_reset_waits_fallback(self):
        with pytest.raises(RateLimitedError) as exc_info:
            self.client._raise_for_graphql_errors(
                {"errors": [{"type": "RATE_LIMITED", "message": "API rate limit exceeded"}]}
            )
        assert exc_info.value.reset_at is None
        assert exc_info.value.wait_seconds() == APIConfig.RATE_LIMIT_FALLBACK_WAIT

    def test_secondary_limit_without_headers_waits_fallback(self):
        error = self.client._error_for_status(429, {}, "")
        assert error.wait_seconds() == 60.0

    def test_graphql_other_error(self):
        with pytest.raises(MalformedRequestError, match="Field 'foo' doesn't exist"):
            self.client._raise_for_graphql_errors({"errors": [{"message": "Field 'foo' doesn't exist"}]})

    def test_graphql_no_errors(self):
        self.client._raise_for_graphql_errors({"data": {}})


class TestFetchPage:
    @pytest.mark.asyncio
    async def test_fetch_page_posts_query(self):
        session = FakeSession(FakeResponse(200, _payload([_edge(1)], has_next=True, end_cursor="c1")))
        client = GitHubClient(token="t0ken", session=session)

        page = await client.fetch_page("c0", page_size=50)

        method, url, kwargs = session.requests[0]
        assert method == "POST"
        assert url == "https://api.github.com/graphql"
        assert kwargs["json"]["variables"] == {"first": 50, "after": "c0"}
        assert page.next_cursor == "c1"

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        client = GitHubClient(token="t0ken", session=FakeSession(FakeResponse(502, "Bad Gateway")))
        with pytest.raises(TransientNetworkError) as exc_info:
            await client.fetch_page(None)
        assert exc_info.value.status == 502

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        session = FakeSession(error=aiohttp.ClientConnectionError("connection refused"))
        client = GitHubClient(token="t0ken", session=session)
        with pytest.raises(TransientNetworkError):
            await client.fetch_page(None)

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        client = GitHubClient(token="t0ken", session=FakeSession(FakeResponse(200, "<html>")))
        with pytest.raises(MalformedResponseError):
            await client.fetch_page(None)

    @pytest.mark.asyncio
    async def test_missing_token(self):
        client = GitHubClient(token="", session=FakeSession(FakeResponse(200, "{}")))
        with pytest.raises(AuthenticationError):
            await client.fetch_page(None)


class TestFetchContent:
    @pytest.mark.asyncio
    async def test_readme_is_decoded(self):
        body = {
            "name": "README.md",
            "sha": "abc123",
            "size": 8,
            "encoding": "base64",
            "content": base64.b64encode(b"# hello\n").decode("ascii"),
        }
        headers = {"x-ratelimit-limit": "5000", "x-ratelimit-remaining": "4999"}
        session = FakeSession(FakeResponse(200, body, headers))
        client = GitHubClient(token="t0ken", session=session)

        result = await client.fetch_content(make_item(3))

        assert isinstance(result, ContentPayload)
        assert result.content == b"# hello\n"
        assert result.fingerprint == "abc123"
        assert result.file_name == "README.md"
        assert result.rate_limit.remaining == 4999
        assert session.requests[0][1] == "https://api.github.com/repos/owner3/repo3/readme"

    @pytest.mark.asyncio
    async def test_missing_readme(self):
        client = GitHubClient(token="t0ken", session=FakeSession(FakeResponse(404, '{"message": "Not Found"}')))
        result = await client.fetch_content(make_item(1))
        assert isinstance(result, ContentNotFound)
        assert result.item_id == "R_0001"

    @pytest.mark.asyncio
    async def test_forbidden_is_access_denied(self):
        client = GitHubClient(token="t0ken", session=FakeSession(FakeResponse(403, "Forbidden")))
        with pytest.raises(AccessDeniedError) as exc_info:
            await client.fetch_content(make_item(1))
        assert exc_info.value.item_id == "R_0001"

    @pytest.mark.asyncio
    async def test_garbled_content(self):
        body = {"name": "README.md", "sha": "x", "encoding": "base64", "content": "!!!not base64"}
        client = GitHubClient(token="t0ken", session=FakeSession(FakeResponse(200, body)))
        with pytest.raises(MalformedResponseError):
            await client.fetch_content(make_item(1))

    @pytest.mark.asyncio
    async def test_injected_session_is_not_closed(self):
        session = FakeSession(FakeResponse(404, ""))
        async with GitHubClient(token="t0ken", session=session) as client:
            await client.fetch_content(make_item(1))
        assert session.closed is False

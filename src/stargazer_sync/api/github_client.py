"""GitHub client for starred repositories and their READMEs."""

import asyncio
import base64
import binascii
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

import aiohttp

from stargazer_sync.api.error_handling import (
    AccessDeniedError,
    AuthenticationError,
    MalformedRequestError,
    MalformedResponseError,
    RateLimitedError,
    SyncError,
    TransientNetworkError,
)
from stargazer_sync.config.api import APIConfig
from stargazer_sync.config.settings import Settings
from stargazer_sync.data.models import (
    ContentNotFound,
    ContentPayload,
    ContentResult,
    ItemSummary,
    PageResult,
    RateLimitInfo,
    parse_instant,
)

# README blob ids for the common file names; the first hit is the cheap fingerprint
README_EXPRESSIONS = {
    "readmeMd": "HEAD:README.md",
    "readmeLower": "HEAD:readme.md",
    "readmeRst": "HEAD:README.rst",
    "readmePlain": "HEAD:README",
}

STARRED_QUERY = """
query StarredRepositories($first: Int!, $after: String) {
  viewer {
    starredRepositories(first: $first, after: $after, orderBy: {field: STARRED_AT, direction: DESC}) {
      totalCount
      pageInfo { hasNextPage endCursor }
      edges {
        starredAt
        node {
          id
          name
          nameWithOwner
          description
          url
          stargazerCount
          primaryLanguage { name }
          owner { login }
          createdAt
          updatedAt
          repositoryTopics(first: 20) { nodes { topic { name } } }
%s
        }
      }
    }
  }
  rateLimit { limit cost remaining resetAt }
}
""" % "\n".join(
    f'          {alias}: object(expression: "{expression}") {{ ... on Blob {{ oid }} }}'
    for alias, expression in README_EXPRESSIONS.items()
)


def parse_rate_limit_headers(headers: Mapping[str, str]) -> Optional[RateLimitInfo]:
    """Build RateLimitInfo from REST ``x-ratelimit-*`` headers, None if absent or unparseable."""
    try:
        limit = int(headers["x-ratelimit-limit"])
        remaining = int(headers["x-ratelimit-remaining"])
    except (KeyError, TypeError, ValueError):
        return None

    used = headers.get("x-ratelimit-used")
    reset = headers.get("x-ratelimit-reset")
    try:
        reset_at = datetime.fromtimestamp(int(reset), tz=timezone.utc) if reset else None
    except (TypeError, ValueError, OverflowError):
        reset_at = None

    return RateLimitInfo(
        limit=limit,
        remaining=min(remaining, limit),
        used=int(used) if used and used.isdigit() else max(0, limit - remaining),
        reset_at=reset_at,
        cost=1,
    )


def parse_graphql_rate_limit(raw: Any) -> Optional[RateLimitInfo]:
    if not isinstance(raw, dict):
        return None
    try:
        limit = int(raw["limit"])
        remaining = int(raw["remaining"])
        cost = int(raw.get("cost") or 1)
    except (KeyError, TypeError, ValueError):
        return None
    return RateLimitInfo(
        limit=limit,
        remaining=min(remaining, limit),
        used=max(0, limit - remaining),
        reset_at=parse_instant(raw.get("resetAt")),
        cost=cost,
    )


def parse_item(edge: Dict[str, Any]) -> ItemSummary:
    """Convert one ``starredRepositories`` edge into an ItemSummary."""
    node = edge["node"]
    item_id = node["id"]
    if not isinstance(item_id, str) or not item_id:
        raise ValueError("repository node has no id")

    name_with_owner = node["nameWithOwner"]
    fingerprint = None
    for alias in README_EXPRESSIONS:
        blob = node.get(alias)
        if isinstance(blob, dict) and blob.get("oid"):
            fingerprint = blob["oid"]
            break

    topics = [
        topic_node["topic"]["name"]
        for topic_node in ((node.get("repositoryTopics") or {}).get("nodes") or [])
        if topic_node and topic_node.get("topic")
    ]

    return ItemSummary(
        id=item_id,
        name=node.get("name") or name_with_owner.split("/")[-1],
        name_with_owner=name_with_owner,
        url=node.get("url") or "",
        description=node.get("description"),
        star_count=int(node.get("stargazerCount") or 0),
        primary_language=(node.get("primaryLanguage") or {}).get("name"),
        owner=(node.get("owner") or {}).get("login") or name_with_owner.split("/")[0],
        created_at=node.get("createdAt"),
        updated_at=node.get("updatedAt"),
        starred_at=edge.get("starredAt"),
        content_fingerprint=fingerprint,
        topics=topics,
    )


def parse_page(payload: Any) -> PageResult:
    """Validate a GraphQL response body and convert it into a PageResult.

    Raises:
        MalformedResponseError: the body does not have the expected shape.
    """
    try:
        data = payload["data"]
        connection = data["viewer"]["starredRepositories"]
        page_info = connection["pageInfo"]
        edges = connection["edges"]
        if not isinstance(edges, list):
            raise TypeError("edges is not a list")
        items = [parse_item(edge) for edge in edges if edge]
        has_more = bool(page_info["hasNextPage"])
        next_cursor = page_info.get("endCursor")
        total_count = connection.get("totalCount")
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise MalformedResponseError(f"Unexpected starred repositories response: {e}") from e

    if next_cursor is not None and not isinstance(next_cursor, str):
        raise MalformedResponseError("endCursor is not a string")
    if has_more and not next_cursor:
        raise MalformedResponseError("hasNextPage is true but endCursor is missing")

    return PageResult(
        items=items,
        next_cursor=next_cursor,
        has_more=has_more,
        total_count=total_count if isinstance(total_count, int) else None,
        rate_limit=parse_graphql_rate_limit(data.get("rateLimit")),
    )


class GitHubClient:
    """Client for the GitHub GraphQL and REST APIs."""

    def __init__(
        self,
        token: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        logger_obj: Optional[logging.Logger] = None,
    ):
        self.logger = logger_obj or logging.getLogger(__name__)
        self.config = APIConfig()
        self.token = token if token is not None else Settings.get_github_token()
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if not self.token:
            raise AuthenticationError(f"No GitHub token configured; set {Settings.GITHUB_TOKEN_ENV}")
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Accept": "application/vnd.github+json",
                    "User-Agent": "stargazer-sync",
                },
                timeout=aiohttp.ClientTimeout(total=self.config.REQUEST_TIMEOUT),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def fetch_page(self, cursor: Optional[str], page_size: int = APIConfig.PAGE_SIZE) -> PageResult:
        """Fetch one page of the viewer's starred repositories."""
        session = self._get_session()
        request = {"query": STARRED_QUERY, "variables": {"first": page_size, "after": cursor}}

        try:
            async with session.post(self.config.GRAPHQL_URL, json=request) as resp:
                body = await resp.text()
                if resp.status >= 400:
                    raise self._error_for_status(resp.status, resp.headers, body)
        except SyncError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientNetworkError(f"GraphQL request failed: {e}") from e

        try:
            payload = json.loads(body)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"GraphQL response is not JSON: {e}") from e

        self._raise_for_graphql_errors(payload)
        page = parse_page(payload)
        self.logger.info(
            f"Fetched page of {len(page.items)} starred repositories (has_more={page.has_more}, total={page.total_count})"
        )
        return page

    async def fetch_content(self, item: ItemSummary) -> ContentResult:
        """Fetch the README of one repository."""
        session = self._get_session()
        owner, _, repo = item.name_with_owner.partition("/")
        url = self.config.get_readme_url(owner, repo)

        try:
            async with session.get(url) as resp:
                body = await resp.text()
                rate_limit = parse_rate_limit_headers(resp.headers)
                if resp.status == 404:
                    return ContentNotFound(item_id=item.id, rate_limit=rate_limit)
                if resp.status >= 400:
                    raise self._error_for_status(resp.status, resp.headers, body, item_id=item.id)
        except SyncError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientNetworkError(f"README request for {item.name_with_owner} failed: {e}") from e

        try:
            data = json.loads(body)
            encoded = data["content"]
            content = base64.b64decode(encoded) if data.get("encoding", "base64") == "base64" else encoded.encode("utf-8")
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError, binascii.Error) as e:
            raise MalformedResponseError(f"Unexpected README response for {item.name_with_owner}: {e}") from e

        size = data.get("size")
        return ContentPayload(
            item_id=item.id,
            content=content,
            fingerprint=data.get("sha"),
            size=size if isinstance(size, int) else len(content),
            file_name=data.get("name"),
            rate_limit=rate_limit,
        )

    def _error_for_status(
        self,
        status: int,
        headers: Mapping[str, str],
        body: str,
        item_id: Optional[str] = None,
    ) -> SyncError:
        """Map an HTTP error status to the sync error taxonomy."""
        message = f"HTTP {status}: {body[:200]}"

        if status == 401:
            return AuthenticationError(message)
        if status in (403, 429):
            retry_after = headers.get("retry-after")
            if status == 429 or retry_after is not None or headers.get("x-ratelimit-remaining") == "0":
                rate_limit = parse_rate_limit_headers(headers)
                try:
                    retry_seconds = float(retry_after) if retry_after is not None else None
                except ValueError:
                    retry_seconds = None
                return RateLimitedError(
                    message,
                    reset_at=rate_limit.reset_at if rate_limit else None,
                    retry_after=retry_seconds,
                )
            if item_id is not None:
                return AccessDeniedError(item_id, status)
            return AuthenticationError(message)
        if 500 <= status < 600:
            return TransientNetworkError(message, status=status)
        return MalformedRequestError(message)

    def _raise_for_graphql_errors(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            raise MalformedResponseError("GraphQL response is not an object")
        errors = payload.get("errors")
        if not errors:
            return

        messages = "; ".join(str(error.get("message", error)) for error in errors if isinstance(error, dict))
        if any(isinstance(error, dict) and error.get("type") == "RATE_LIMITED" for error in errors):
            rate_limit = parse_graphql_rate_limit((payload.get("data") or {}).get("rateLimit"))
            raise RateLimitedError(messages, reset_at=rate_limit.reset_at if rate_limit else None)
        raise MalformedRequestError(f"GraphQL errors: {messages}")

# tests/conftest.py
import asyncio
import os
import sys
from typing import Callable, Dict, List, Optional

import pytest

# Make sure `src/` is on the import path
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
sys.path.insert(0, os.path.join(ROOT, "src"))

from stargazer_sync.api.rate_limiter import RateLimiter  # noqa: E402
from stargazer_sync.data.models import (  # noqa: E402
    ContentNotFound,
    ContentPayload,
    ItemSummary,
    PageResult,
)
from stargazer_sync.data.repositories.item_repository import ItemRepository  # noqa: E402
from stargazer_sync.data.services.checkpoint_store import CheckpointStore  # noqa: E402
from stargazer_sync.data.services.sync_orchestrator import SyncOrchestrator  # noqa: E402
from stargazer_sync.data.storage.content_store import ContentStore  # noqa: E402
from stargazer_sync.data.storage.local_storage import LocalStorage  # noqa: E402


def make_item(index: int, fingerprint: Optional[str] = "auto", **overrides) -> ItemSummary:
    """Build a starred repository with deterministic fields."""
    data = dict(
        id=f"R_{index:04d}",
        name=f"repo{index}",
        name_with_owner=f"owner{index % 7}/repo{index}",
        url=f"https://github.com/owner{index % 7}/repo{index}",
        description=f"Repository {index}",
        star_count=index * 3,
        primary_language="Python",
        owner=f"owner{index % 7}",
        updated_at="2024-01-01T00:00:00Z",
        starred_at="2024-02-01T00:00:00Z",
        content_fingerprint=f"sha-{index}" if fingerprint == "auto" else fingerprint,
    )
    data.update(overrides)
    return ItemSummary(**data)


def make_items(count: int, start: int = 0) -> List[ItemSummary]:
    return [make_item(i) for i in range(start, start + count)]


class FakeSource:
    """In-memory remote collection with integer-offset cursors.

    ``fail_at`` maps a cursor to a list of exceptions raised, one per call,
    before that page succeeds. ``content_errors`` maps item ids to exceptions.
    Items absent from ``readmes`` have no README.
    """

    def __init__(self, items: List[ItemSummary], content_delay: float = 0.0):
        self.items = list(items)
        self.readmes: Dict[str, tuple] = {
            item.id: (f"# {item.name}\n".encode("utf-8"), item.content_fingerprint) for item in items
        }
        self.fail_at: Dict[Optional[str], List[Exception]] = {}
        self.content_errors: Dict[str, Exception] = {}
        self.content_delays: Dict[str, float] = {}
        self.content_delay = content_delay
        self.on_page: Optional[Callable[[int], None]] = None
        self.page_rate_limit = None

        self.page_calls: List[Optional[str]] = []
        self.content_calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_page(self, cursor: Optional[str], page_size: int) -> PageResult:
        call_index = len(self.page_calls)
        self.page_calls.append(cursor)
        if self.on_page is not None:
            self.on_page(call_index)
        await asyncio.sleep(0)

        errors = self.fail_at.get(cursor)
        if errors:
            raise errors.pop(0)

        start = int(cursor) if cursor else 0
        chunk = self.items[start:start + page_size]
        end = start + len(chunk)
        has_more = end < len(self.items)
        return PageResult(
            items=chunk,
            next_cursor=str(end) if has_more else None,
            has_more=has_more,
            total_count=len(self.items),
            rate_limit=self.page_rate_limit,
        )

    async def fetch_content(self, item: ItemSummary):
        self.content_calls.append(item.id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.content_delays.get(item.id, self.content_delay))
            if item.id in self.content_errors:
                raise self.content_errors[item.id]
            if item.id not in self.readmes:
                return ContentNotFound(item_id=item.id)
            content, fingerprint = self.readmes[item.id]
            return ContentPayload(
                item_id=item.id,
                content=content,
                fingerprint=fingerprint,
                size=len(content),
                file_name="README.md",
            )
        finally:
            self.in_flight -= 1


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(tmp_path / "data")


@pytest.fixture
def checkpoint_store(storage):
    return CheckpointStore(storage)


@pytest.fixture
def content_store(storage):
    return ContentStore(storage)


@pytest.fixture
def item_repository(tmp_path):
    return ItemRepository(tmp_path / "data" / "test.duckdb")


@pytest.fixture
def make_orchestrator(checkpoint_store, item_repository, content_store):
    """Factory for orchestrators sharing one storage root, with zero retry delays."""

    def factory(source, **kwargs):
        kwargs.setdefault("retry_base_delay", 0)
        kwargs.setdefault("page_size", 100)
        kwargs.setdefault("page_rate_limiter", RateLimiter())
        kwargs.setdefault("content_rate_limiter", RateLimiter())
        return SyncOrchestrator(
            source=source,
            checkpoint_store=checkpoint_store,
            item_repository=item_repository,
            content_store=content_store,
            **kwargs,
        )

    return factory

"""Bounded-concurrency README fetching with change detection and failure isolation."""

import asyncio
import inspect
import logging
from collections import Counter
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Union

from stargazer_sync.api.error_handling import (
    ContentTimeoutError,
    SizeLimitExceededError,
    SyncCancelledError,
    categorize_error,
)
from stargazer_sync.api.rate_limiter import RateLimiter
from stargazer_sync.api.source import RemoteCollectionSource
from stargazer_sync.config.api import APIConfig
from stargazer_sync.data.models import (
    ConflictDetectionResult,
    ConflictResolution,
    ContentMetadata,
    ContentNotFound,
    ContentPayload,
    FetchOutcome,
    FetchResult,
    FetchStatus,
    ItemSummary,
)
from stargazer_sync.data.services.change_tracker import ChangeTracker
from stargazer_sync.data.services.conflict_detector import ConflictDetector
from stargazer_sync.data.storage.content_store import ContentStore

ConflictCallback = Callable[
    [ItemSummary, ConflictDetectionResult],
    Union[ConflictResolution, Awaitable[ConflictResolution]],
]


class ContentFetchPool:
    """
    Fetches content for batches of items with at most ``concurrency`` requests in flight.

    One semaphore is shared by every batch of the run, so the cap holds across
    overlapping batches too, and waiting items acquire slots in submission
    order. Every submitted item resolves to a FetchResult; per-item errors
    are recorded in the item's ContentMetadata and never escape the batch.
    """

    def __init__(
        self,
        source: RemoteCollectionSource,
        content_store: ContentStore,
        change_tracker: Optional[ChangeTracker] = None,
        conflict_detector: Optional[ConflictDetector] = None,
        rate_limiter: Optional[RateLimiter] = None,
        initial_metadata: Optional[Dict[str, ContentMetadata]] = None,
        concurrency: int = APIConfig.CONTENT_CONCURRENCY_LIMIT,
        max_bytes: int = APIConfig.CONTENT_MAX_BYTES,
        timeout: float = APIConfig.CONTENT_FETCH_TIMEOUT,
        force_refresh: bool = False,
        completed_ids: Optional[Iterable[str]] = None,
        confirm_conflict: Optional[ConflictCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
        logger_obj: Optional[logging.Logger] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.source = source
        self.content_store = content_store
        self.logger = logger_obj or logging.getLogger(__name__)
        self.change_tracker = change_tracker or ChangeTracker(self.logger)
        self.conflict_detector = conflict_detector or ConflictDetector()
        self.rate_limiter = rate_limiter
        self.concurrency = concurrency
        self.max_bytes = max_bytes
        self.timeout = timeout
        self.force_refresh = force_refresh
        self.completed_ids = set(completed_ids or ())
        self.confirm_conflict = confirm_conflict
        self.cancel_event = cancel_event

        self._metadata: Dict[str, ContentMetadata] = dict(initial_metadata or {})
        self._semaphore = asyncio.Semaphore(concurrency)
        self._outcomes: Counter = Counter()

    async def fetch_batch(self, items: List[ItemSummary]) -> List[FetchResult]:
        """Fetch content for every item; results come back in input order.

        Raises:
            SyncCancelledError: the run was cancelled while items were queued.
        """
        if not items:
            return []

        self.logger.info(f"Fetching content for batch of {len(items)} items")
        results = await asyncio.gather(*(self._process_item(item) for item in items), return_exceptions=True)

        batch: List[FetchResult] = []
        cancelled: Optional[SyncCancelledError] = None
        for item, result in zip(items, results):
            if isinstance(result, SyncCancelledError):
                cancelled = cancelled or result
                continue
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                result = self._record_failure(item, result)
            batch.append(result)

        if cancelled is not None:
            raise cancelled

        counts = Counter(result.outcome.value for result in batch)
        self.logger.info(f"Batch complete: {dict(counts)}")
        return batch

    async def _process_item(self, item: ItemSummary) -> FetchResult:
        stored = self._metadata.get(item.id)
        # items already fetched by an interrupted run fall back to fingerprint checks
        force = self.force_refresh and item.id not in self.completed_ids
        fetch, reason = self.change_tracker.needs_fetch(stored, item.content_fingerprint, force)
        if not fetch:
            self.logger.debug(f"Skipping content for {item.name_with_owner}: {reason}")
            self._outcomes[FetchOutcome.SKIPPED] += 1
            return FetchResult(item.id, FetchOutcome.SKIPPED, metadata=stored, skip_reason=reason)

        async with self._semaphore:
            if self.cancel_event is not None and self.cancel_event.is_set():
                raise SyncCancelledError("Sync cancelled before content fetch")
            try:
                return await self._fetch_and_store(item, stored)
            except SyncCancelledError:
                raise
            except Exception as e:
                return self._record_failure(item, e)

    async def _fetch_and_store(self, item: ItemSummary, stored: Optional[ContentMetadata]) -> FetchResult:
        try:
            result = await asyncio.wait_for(self.source.fetch_content(item), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ContentTimeoutError(item.id, self.timeout) from e

        if self.rate_limiter is not None:
            self.rate_limiter.update(result.rate_limit)

        location = self.content_store.location_for(item)

        if isinstance(result, ContentNotFound):
            metadata = ContentMetadata(storage_location="", fetch_status=FetchStatus.NOT_AVAILABLE)
            self._metadata[item.id] = metadata
            self._outcomes[FetchOutcome.NOT_AVAILABLE] += 1
            self.logger.info(f"No README available for {item.name_with_owner}")
            return FetchResult(item.id, FetchOutcome.NOT_AVAILABLE, metadata=metadata)

        if not isinstance(result, ContentPayload):
            raise TypeError(f"Unexpected content result type: {type(result).__name__}")

        size = max(result.size or 0, len(result.content))
        if size > self.max_bytes:
            raise SizeLimitExceededError(item.id, size, self.max_bytes)

        stored_fingerprint = stored.fingerprint if stored else None
        local_modified = self.content_store.detect_local_modification(
            location, stored.local_hash if stored else None
        )
        detection = self.conflict_detector.detect_conflict(
            local_modified, stored_fingerprint, result.fingerprint, item.id
        )

        if detection.has_conflict:
            resolution = await self._resolve_conflict(item, detection)
            self.logger.warning(f"Content conflict for {item.name_with_owner}: resolved as {resolution.value}")
            if resolution is not ConflictResolution.ACCEPT_REMOTE:
                metadata = self._keep_local(item.id, stored, location)
                self._outcomes[FetchOutcome.CONFLICT] += 1
                return FetchResult(item.id, FetchOutcome.CONFLICT, metadata=metadata, conflict=detection)
        elif local_modified:
            metadata = self._keep_local(item.id, stored, location)
            self._outcomes[FetchOutcome.SKIPPED] += 1
            return FetchResult(
                item.id, FetchOutcome.SKIPPED, metadata=metadata, skip_reason=detection.reason, conflict=detection
            )

        local_hash = self.content_store.write(location, result.content)
        metadata = ContentMetadata(
            storage_location=location,
            fetch_status=FetchStatus.SUCCESS,
            fingerprint=result.fingerprint,
            local_hash=local_hash,
            size=size,
            original_file_name=result.file_name,
        )
        self._metadata[item.id] = metadata
        self._outcomes[FetchOutcome.FETCHED] += 1
        return FetchResult(
            item.id,
            FetchOutcome.FETCHED,
            metadata=metadata,
            conflict=detection if detection.has_conflict else None,
        )

    def _keep_local(self, item_id: str, stored: Optional[ContentMetadata], location: str) -> ContentMetadata:
        # The stored fingerprint is kept so the remote change is seen again next run
        metadata = ContentMetadata(
            storage_location=stored.storage_location if stored and stored.storage_location else location,
            fetch_status=FetchStatus.SUCCESS,
            fingerprint=stored.fingerprint if stored else None,
            local_modified=True,
            local_hash=stored.local_hash if stored else None,
            size=stored.size if stored else None,
            original_file_name=stored.original_file_name if stored else None,
        )
        self._metadata[item_id] = metadata
        return metadata

    async def _resolve_conflict(self, item: ItemSummary, detection: ConflictDetectionResult) -> ConflictResolution:
        if self.confirm_conflict is None:
            return ConflictResolution.KEEP_LOCAL
        decision = self.confirm_conflict(item, detection)
        if inspect.isawaitable(decision):
            decision = await decision
        return ConflictResolution(decision)

    def _record_failure(self, item: ItemSummary, error: Exception) -> FetchResult:
        category = categorize_error(error)
        self.logger.warning(f"Content fetch failed for {item.name_with_owner} ({category.value}): {error}")
        stored = self._metadata.get(item.id)
        metadata = ContentMetadata(
            storage_location=stored.storage_location if stored else "",
            fetch_status=FetchStatus.FAILED,
            fingerprint=stored.fingerprint if stored else None,
            error_message=str(error),
            local_hash=stored.local_hash if stored else None,
        )
        self._metadata[item.id] = metadata
        self._outcomes[FetchOutcome.FAILED] += 1
        return FetchResult(item.id, FetchOutcome.FAILED, metadata=metadata, error=error)

    def get_metadata(self) -> Dict[str, ContentMetadata]:
        return dict(self._metadata)

    def get_stats(self) -> Dict[str, int]:
        """Metadata counts by fetch status plus per-outcome counters for this run."""
        statuses = Counter(metadata.fetch_status for metadata in self._metadata.values())
        return {
            "success": statuses[FetchStatus.SUCCESS],
            "failed": statuses[FetchStatus.FAILED],
            "not_available": statuses[FetchStatus.NOT_AVAILABLE],
            "fetched": self._outcomes[FetchOutcome.FETCHED],
            "skipped": self._outcomes[FetchOutcome.SKIPPED],
            "conflicts": self._outcomes[FetchOutcome.CONFLICT],
            "errors": self._outcomes[FetchOutcome.FAILED],
        }

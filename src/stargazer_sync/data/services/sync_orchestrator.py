"""Sync orchestrator coordinating paginated fetches, content fetches and checkpoints."""

import asyncio
import inspect
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, List, Optional, Set, Tuple, Union

import backoff

from stargazer_sync.api.error_handling import (
    RETRYABLE_ERRORS,
    CheckpointValidationError,
    RateLimitedError,
    SyncCancelledError,
    categorize_error,
)
from stargazer_sync.api.rate_limiter import RateLimiter
from stargazer_sync.api.source import RemoteCollectionSource
from stargazer_sync.config.api import APIConfig
from stargazer_sync.data.models import (
    CheckpointStatus,
    CheckpointSummary,
    ConflictDetectionResult,
    FetchOutcome,
    FetchResult,
    ItemError,
    ItemSummary,
    PageResult,
    ResumeDecision,
    SyncCheckpoint,
    SyncMode,
    SyncProgress,
    SyncReport,
    SyncState,
)
from stargazer_sync.data.repositories.item_repository import ItemRepository
from stargazer_sync.data.services.change_tracker import ChangeTracker
from stargazer_sync.data.services.checkpoint_store import CheckpointStore
from stargazer_sync.data.services.conflict_detector import ConflictDetector
from stargazer_sync.data.services.content_fetch_pool import ConflictCallback, ContentFetchPool
from stargazer_sync.data.storage.content_store import ContentStore

ResumeCallback = Callable[[CheckpointSummary], Union[ResumeDecision, Awaitable[ResumeDecision]]]
ProgressCallback = Callable[[SyncProgress], None]


class SyncOrchestrator:
    """
    Drives one sync run of the starred collection.

    Pages are fetched strictly one after another; each page is checkpointed
    before its items are handed to the content pool, and content batches run
    in the background (at most ``max_pending_batches`` at a time) while the
    next page is fetched. Every checkpoint write goes through one lock.
    """

    def __init__(
        self,
        source: RemoteCollectionSource,
        checkpoint_store: CheckpointStore,
        item_repository: ItemRepository,
        content_store: ContentStore,
        page_rate_limiter: Optional[RateLimiter] = None,
        content_rate_limiter: Optional[RateLimiter] = None,
        change_tracker: Optional[ChangeTracker] = None,
        conflict_detector: Optional[ConflictDetector] = None,
        confirm_resume: Optional[ResumeCallback] = None,
        confirm_conflict: Optional[ConflictCallback] = None,
        progress_callback: Optional[ProgressCallback] = None,
        page_size: int = APIConfig.PAGE_SIZE,
        max_retries: int = APIConfig.MAX_RETRIES,
        retry_base_delay: float = APIConfig.RETRY_BASE_DELAY,
        rate_limit_max_waits: int = APIConfig.RATE_LIMIT_MAX_WAITS,
        content_concurrency: int = APIConfig.CONTENT_CONCURRENCY_LIMIT,
        content_max_bytes: int = APIConfig.CONTENT_MAX_BYTES,
        content_timeout: float = APIConfig.CONTENT_FETCH_TIMEOUT,
        max_pending_batches: int = APIConfig.MAX_PENDING_CONTENT_BATCHES,
        logger_obj: Optional[logging.Logger] = None,
    ):
        self.logger = logger_obj or logging.getLogger(__name__)
        self.source = source
        self.checkpoint_store = checkpoint_store
        self.item_repository = item_repository
        self.content_store = content_store
        self.page_rate_limiter = page_rate_limiter or RateLimiter(logger_obj=self.logger)
        self.content_rate_limiter = content_rate_limiter or RateLimiter(logger_obj=self.logger)
        self.change_tracker = change_tracker or ChangeTracker(self.logger)
        self.conflict_detector = conflict_detector or ConflictDetector()
        self.confirm_resume = confirm_resume
        self.confirm_conflict = confirm_conflict
        self.progress_callback = progress_callback

        self.page_size = page_size
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.rate_limit_max_waits = rate_limit_max_waits
        self.content_concurrency = content_concurrency
        self.content_max_bytes = content_max_bytes
        self.content_timeout = content_timeout
        self.max_pending_batches = max(1, max_pending_batches)

        self.state = SyncState.IDLE
        self._cancel_event = asyncio.Event()
        self._checkpoint_lock = asyncio.Lock()
        self._checkpoint: Optional[SyncCheckpoint] = None
        self._pool: Optional[ContentFetchPool] = None
        self._pending: Set[asyncio.Task] = set()
        self._run_task: Optional[asyncio.Task] = None
        self._reset_run_results()

        self._fetch_page = self._with_retries(self._fetch_page_once)

    # ----------------------------------------------------------- retries
    def _with_retries(self, func):
        """Wrap a page call: server-timed waits on rate limits, exponential backoff on transient errors."""
        rate_limited = backoff.on_exception(
            backoff.runtime,
            RateLimitedError,
            value=lambda e: e.wait_seconds(),
            max_tries=self.rate_limit_max_waits + 1,
            jitter=None,
            on_backoff=self._rate_limit_handler,
        )(func)
        return backoff.on_exception(
            backoff.expo,
            RETRYABLE_ERRORS,
            factor=self.retry_base_delay,
            max_tries=self.max_retries + 1,
            jitter=None,
            on_backoff=self._backoff_handler,
            on_giveup=self._giveup_handler,
        )(rate_limited)

    def _backoff_handler(self, details):
        """Handler for logging backoff attempts with error categorization."""
        exception = details["exception"]
        error_category = categorize_error(exception)
        self.logger.warning(
            f"Backing off {details['wait']:.1f}s after {error_category.value} error "
            f"(attempt {details['tries']}/{self.max_retries + 1}): {exception}"
        )

    def _rate_limit_handler(self, details):
        self.logger.warning(f"Rate limited by server; waiting {details['wait']:.0f}s for quota reset")
        self._report_progress(f"Rate limited; waiting {details['wait']:.0f}s")

    def _giveup_handler(self, details):
        self.logger.error(f"Giving up after {details['tries']} attempts: {details['exception']}")

    async def _fetch_page_once(self, cursor: Optional[str]) -> PageResult:
        self._raise_if_cancelled()
        return await self.source.fetch_page(cursor, self.page_size)

    # ------------------------------------------------------------ public
    async def run_sync(self, mode: Union[SyncMode, str] = SyncMode.INCREMENTAL) -> SyncReport:
        """Run a full sync and return the final item set, removed items and errors.

        Raises:
            SyncError: a terminal page-level failure; the checkpoint is kept
                with status ``failed`` so the next run can resume.
            SyncCancelledError / asyncio.CancelledError: the run was cancelled;
                the checkpoint is kept with status ``in_progress``.
        """
        mode = SyncMode(mode)
        self._run_task = asyncio.current_task()
        self._cancel_event.clear()
        self._checkpoint = None
        self._reset_run_results()

        try:
            self._set_state(SyncState.INITIALIZING)
            checkpoint, resumed = await self._initialize(mode)
            self._checkpoint = checkpoint
            if resumed and checkpoint.mode is not mode:
                self.logger.info(f"Resuming {checkpoint.mode.value} sync (requested {mode.value})")
            mode = checkpoint.mode
            self._pool = self._create_pool(checkpoint, force_refresh=mode is SyncMode.INITIAL)

            if resumed and checkpoint.items:
                self.logger.info(f"Re-evaluating content for {len(checkpoint.items)} checkpointed items")
                await self._dispatch(list(checkpoint.items))

            if not checkpoint.pages_complete:
                await self._walk_pages(checkpoint)

            self._set_state(SyncState.AWAITING_CONTENT)
            await self._drain_pending()

            self._set_state(SyncState.COMPLETING)
            report = self._complete(checkpoint, mode, resumed)
        except (SyncCancelledError, asyncio.CancelledError):
            self.logger.warning("Sync cancelled; saving checkpoint for resume")
            await self._abort(CheckpointStatus.IN_PROGRESS)
            self._set_state(SyncState.IDLE)
            raise
        except Exception as e:
            self.logger.error(f"Sync failed ({categorize_error(e).value}): {e}", exc_info=True)
            await self._abort(CheckpointStatus.FAILED)
            self._set_state(SyncState.FAILED, str(e))
            raise
        finally:
            self._run_task = None

        self._set_state(SyncState.IDLE, "Sync complete")
        return report

    def cancel(self) -> None:
        """Request cancellation of the running sync.

        Sets the run-scoped cancellation signal and cancels the running task,
        so the request is seen at whichever suspension point the run is in.
        """
        self.logger.info("Cancellation requested")
        self._cancel_event.set()
        if self._run_task is not None and not self._run_task.done():
            self._run_task.cancel()

    def get_checkpoint_summary(self, now: Optional[datetime] = None) -> Optional[CheckpointSummary]:
        """Summary of the stored checkpoint, or None when there is nothing to resume."""
        try:
            checkpoint = self.checkpoint_store.load()
        except CheckpointValidationError as e:
            self.logger.warning(f"Stored checkpoint is invalid: {e}")
            return None
        if checkpoint is None:
            return None
        return self._summarize(checkpoint, now)

    def reset_checkpoint(self) -> None:
        self.checkpoint_store.delete()

    # ------------------------------------------------------------ phases
    async def _initialize(self, mode: SyncMode) -> Tuple[SyncCheckpoint, bool]:
        try:
            existing = self.checkpoint_store.load()
        except CheckpointValidationError as e:
            self.logger.error(f"Discarding unusable checkpoint ({e.reason}): {e}")
            self._errors.append(ItemError("", categorize_error(e).value, str(e)))
            existing = None

        if existing is not None:
            if existing.status is CheckpointStatus.COMPLETED:
                self.logger.info("Found checkpoint of a completed run; starting fresh")
                self.checkpoint_store.delete()
                existing = None
            elif self.checkpoint_store.is_stale(existing):
                self.logger.info("Checkpoint is stale; starting fresh")
                self.checkpoint_store.delete()
                existing = None
            else:
                decision = await self._confirm_resume(self._summarize(existing))
                if decision is ResumeDecision.RESTART:
                    self.logger.info("Caller chose to restart; discarding checkpoint")
                    self.checkpoint_store.delete()
                    existing = None

        if existing is not None:
            existing.status = CheckpointStatus.IN_PROGRESS
            self.logger.info(
                f"Resuming session {existing.session_id} at {existing.fetched_count}/{existing.total_count} items"
            )
            return existing, True

        self.logger.info(f"Starting {mode.value} sync")
        return SyncCheckpoint(session_id=uuid.uuid4().hex, mode=mode), False

    async def _confirm_resume(self, summary: CheckpointSummary) -> ResumeDecision:
        if self.confirm_resume is None:
            return ResumeDecision.RESUME
        decision = self.confirm_resume(summary)
        if inspect.isawaitable(decision):
            decision = await decision
        return ResumeDecision(decision)

    def _create_pool(self, checkpoint: SyncCheckpoint, force_refresh: bool) -> ContentFetchPool:
        metadata = self.item_repository.get_content_metadata()
        metadata.update(checkpoint.content_metadata)
        return ContentFetchPool(
            source=self.source,
            content_store=self.content_store,
            change_tracker=self.change_tracker,
            conflict_detector=self.conflict_detector,
            rate_limiter=self.content_rate_limiter,
            initial_metadata=metadata,
            concurrency=self.content_concurrency,
            max_bytes=self.content_max_bytes,
            timeout=self.content_timeout,
            force_refresh=force_refresh,
            completed_ids=checkpoint.content_metadata,
            confirm_conflict=self.confirm_conflict,
            cancel_event=self._cancel_event,
            logger_obj=self.logger,
        )

    async def _walk_pages(self, checkpoint: SyncCheckpoint) -> None:
        while True:
            self._raise_if_cancelled()
            await self._wait_for_quota()

            self._set_state(SyncState.FETCHING_PAGE)
            page = await self._fetch_page(checkpoint.cursor)
            self.page_rate_limiter.update(page.rate_limit)

            added = checkpoint.merge_items(page.items)
            if page.total_count is not None:
                checkpoint.total_count = page.total_count
            checkpoint.total_count = max(checkpoint.total_count, checkpoint.fetched_count)
            if page.has_more:
                checkpoint.cursor = page.next_cursor
            else:
                checkpoint.pages_complete = True

            self._set_state(SyncState.CHECKPOINTING_PAGE)
            async with self._checkpoint_lock:
                self.checkpoint_store.save(checkpoint)
            self.logger.info(
                f"Page stored: {len(added)} new items, {checkpoint.fetched_count}/{checkpoint.total_count} total"
            )
            self._report_progress(f"Fetched {checkpoint.fetched_count} of {checkpoint.total_count} items")

            if added:
                await self._dispatch(added)
            if not page.has_more:
                return

    async def _wait_for_quota(self) -> None:
        if not self.page_rate_limiter.should_throttle():
            return
        wait = self.page_rate_limiter.get_time_until_reset().total_seconds()
        if wait <= 0:
            return

        info = self.page_rate_limiter.info
        quota = f"{info.remaining}/{info.limit}" if info is not None else "unknown"
        self.logger.warning(f"Rate limit quota low ({quota} left); waiting {wait:.0f}s until reset")
        self._report_progress(f"Rate limit quota low ({quota} left); waiting {wait:.0f}s")
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=wait)
        except asyncio.TimeoutError:
            return
        raise SyncCancelledError("Sync cancelled while waiting for rate limit reset")

    async def _dispatch(self, items: List[ItemSummary]) -> None:
        """Start a background content batch, first waiting for room if too many are pending."""
        while len(self._pending) >= self.max_pending_batches:
            done, _ = await asyncio.wait(self._pending, return_when=asyncio.FIRST_COMPLETED)
            self._collect(done)
        task = asyncio.create_task(self._run_content_batch(items))
        self._pending.add(task)

    async def _run_content_batch(self, items: List[ItemSummary]) -> List[FetchResult]:
        results = await self._pool.fetch_batch(items)
        async with self._checkpoint_lock:
            for result in results:
                if result.metadata is not None:
                    self._checkpoint.content_metadata[result.item_id] = result.metadata
            self.checkpoint_store.save(self._checkpoint)
        self._record_results(results)
        return results

    def _collect(self, done: Set[asyncio.Task]) -> None:
        for task in done:
            self._pending.discard(task)
            # re-raises a batch failure or cancellation in the run task
            task.result()

    async def _drain_pending(self) -> None:
        while self._pending:
            done, _ = await asyncio.wait(self._pending, return_when=asyncio.FIRST_COMPLETED)
            self._collect(done)

    def _complete(self, checkpoint: SyncCheckpoint, mode: SyncMode, resumed: bool) -> SyncReport:
        items = list(checkpoint.items)
        previous = self.item_repository.get_items()
        changes = self.change_tracker.detect_item_changes(previous, items)
        removed = changes.removed if mode is SyncMode.INCREMENTAL else []

        self.item_repository.store_items(items)
        if removed:
            self.item_repository.mark_removed(removed)
            self.logger.info(f"{len(removed)} items were removed upstream; local content kept")
        self.item_repository.store_content_metadata(self._pool.get_metadata())

        checkpoint.status = CheckpointStatus.COMPLETED
        self.checkpoint_store.delete()

        stats = self._pool.get_stats()
        self.logger.info(f"Sync complete: {len(items)} items, {len(removed)} removed, content stats {stats}")
        return SyncReport(
            items=items,
            removed_items=removed,
            errors=list(self._errors),
            added=[item.id for item in changes.added],
            updated=[item.id for item in changes.updated],
            conflicts=list(self._conflicts),
            resumed=resumed,
            fetched_count=self._outcome_counts[FetchOutcome.FETCHED],
            skipped_count=self._outcome_counts[FetchOutcome.SKIPPED],
            failed_count=self._outcome_counts[FetchOutcome.FAILED],
        )

    async def _abort(self, status: CheckpointStatus) -> None:
        """Stop background batches and persist the checkpoint with the given status."""
        for task in self._pending:
            task.cancel()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        self._pending.clear()

        # nothing to preserve before the first page was checkpointed
        if self._checkpoint is None or self._checkpoint.timestamp is None:
            return
        async with self._checkpoint_lock:
            self._checkpoint.status = status
            try:
                self.checkpoint_store.save(self._checkpoint)
            except OSError as e:
                self.logger.error(f"Could not save checkpoint after abort: {e}")

    # ----------------------------------------------------------- helpers
    def _reset_run_results(self) -> None:
        self._errors: List[ItemError] = []
        self._conflicts: List[ConflictDetectionResult] = []
        self._outcome_counts = {outcome: 0 for outcome in FetchOutcome}

    def _record_results(self, results: List[FetchResult]) -> None:
        for result in results:
            self._outcome_counts[result.outcome] += 1
            if result.outcome is FetchOutcome.FAILED and result.error is not None:
                self._errors.append(
                    ItemError(result.item_id, categorize_error(result.error).value, str(result.error))
                )
            if result.conflict is not None and result.conflict.has_conflict:
                self._conflicts.append(result.conflict)

    def _raise_if_cancelled(self) -> None:
        if self._cancel_event.is_set():
            raise SyncCancelledError("Sync cancelled")

    def _summarize(self, checkpoint: SyncCheckpoint, now: Optional[datetime] = None) -> CheckpointSummary:
        now = now or datetime.now(timezone.utc)
        age = now - checkpoint.timestamp if checkpoint.timestamp else timedelta(0)
        return CheckpointSummary(
            age=age,
            fetched_count=checkpoint.fetched_count,
            total_count=checkpoint.total_count,
            status=checkpoint.status,
            session_id=checkpoint.session_id,
        )

    def _set_state(self, state: SyncState, message: str = "") -> None:
        if state is not self.state:
            self.logger.debug(f"Sync state {self.state.value} -> {state.value}")
        self.state = state
        self._report_progress(message)

    def _report_progress(self, message: str = "") -> None:
        if self.progress_callback is None:
            return
        checkpoint = self._checkpoint
        self.progress_callback(
            SyncProgress(
                state=self.state,
                fetched_count=checkpoint.fetched_count if checkpoint else 0,
                total_count=checkpoint.total_count if checkpoint else 0,
                message=message,
            )
        )

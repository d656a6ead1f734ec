"""Dependency injection container for the application."""

import logging
from pathlib import Path
from typing import Optional

from stargazer_sync.api.github_client import GitHubClient
from stargazer_sync.api.rate_limiter import RateLimiter
from stargazer_sync.config.settings import Settings
from stargazer_sync.data.repositories.item_repository import ItemRepository
from stargazer_sync.data.services.checkpoint_store import CheckpointStore
from stargazer_sync.data.services.content_fetch_pool import ConflictCallback
from stargazer_sync.data.services.sync_orchestrator import ProgressCallback, ResumeCallback, SyncOrchestrator
from stargazer_sync.data.storage.content_store import ContentStore
from stargazer_sync.data.storage.local_storage import LocalStorage
from stargazer_sync.utils.logger_setup import setup_logging


class DependencyContainer:
    """Container for managing application dependencies."""

    def __init__(
        self,
        data_dir: Optional[Path] = None,
        db_path: Optional[Path] = None,
        token: Optional[str] = None,
        logger_name: str = "stargazer_sync",
        log_dir: Optional[Path] = None,
        console_output: bool = True,
    ):
        if data_dir is None:
            Settings.ensure_directories()
        self.data_dir = Path(data_dir or Settings.DATA_DIR)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path or (self.data_dir / Settings.DEFAULT_DB_PATH.name)
        self.token = token
        self.logger = setup_logging(
            logger_name, log_dir=log_dir or Settings.LOGS_DIR, console_output=console_output
        )

        self._storage = None
        self._checkpoint_store = None
        self._item_repository = None
        self._content_store = None
        self._client = None

    @property
    def storage(self) -> LocalStorage:
        if self._storage is None:
            self._storage = LocalStorage(self.data_dir, self.logger)
        return self._storage

    @property
    def checkpoint_store(self) -> CheckpointStore:
        if self._checkpoint_store is None:
            self._checkpoint_store = CheckpointStore(self.storage, logger_obj=self.logger)
        return self._checkpoint_store

    @property
    def item_repository(self) -> ItemRepository:
        if self._item_repository is None:
            self._item_repository = ItemRepository(self.db_path, self.logger)
        return self._item_repository

    @property
    def content_store(self) -> ContentStore:
        if self._content_store is None:
            self._content_store = ContentStore(self.storage, logger_obj=self.logger)
        return self._content_store

    @property
    def client(self) -> GitHubClient:
        if self._client is None:
            self._client = GitHubClient(token=self.token, logger_obj=self.logger)
        return self._client

    def create_orchestrator(
        self,
        confirm_resume: Optional[ResumeCallback] = None,
        confirm_conflict: Optional[ConflictCallback] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> SyncOrchestrator:
        """Build an orchestrator for one run, with fresh rate limiters."""
        return SyncOrchestrator(
            source=self.client,
            checkpoint_store=self.checkpoint_store,
            item_repository=self.item_repository,
            content_store=self.content_store,
            page_rate_limiter=RateLimiter(logger_obj=self.logger),
            content_rate_limiter=RateLimiter(logger_obj=self.logger),
            confirm_resume=confirm_resume,
            confirm_conflict=confirm_conflict,
            progress_callback=progress_callback,
            logger_obj=self.logger,
        )

    def get_logger(self, name: Optional[str] = None) -> logging.Logger:
        """Get a logger instance."""
        if name:
            return logging.getLogger(name)
        return self.logger

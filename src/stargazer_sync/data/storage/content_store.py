"""Persistence of fetched README content and local-edit detection."""

import hashlib
import logging
import re
from typing import Optional

from stargazer_sync.config.settings import Settings
from stargazer_sync.data.models import ItemSummary
from stargazer_sync.data.storage.local_storage import StorageAdapter

_UNSAFE_SEGMENT = re.compile(r"[^A-Za-z0-9._-]")


def content_hash(data: bytes) -> str:
    """SHA-256 hex digest of content bytes."""
    return hashlib.sha256(data).hexdigest()


def _safe_segment(value: str) -> str:
    cleaned = _UNSAFE_SEGMENT.sub("_", value).strip(".")
    return cleaned or "_"


class ContentStore:
    """Writes README bytes through a storage adapter and tracks what was written."""

    def __init__(
        self,
        storage: StorageAdapter,
        content_dir: str = Settings.CONTENT_DIR,
        logger_obj: Optional[logging.Logger] = None,
    ):
        self.storage = storage
        self.content_dir = content_dir
        self.logger = logger_obj or logging.getLogger(__name__)

    def location_for(self, item: ItemSummary) -> str:
        """Storage location for an item's README: ``readmes/<owner>/<repo>/README.md``."""
        owner, _, repo = item.name_with_owner.partition("/")
        return "/".join(
            [self.content_dir, _safe_segment(owner or item.owner), _safe_segment(repo or item.name), "README.md"]
        )

    def write(self, location: str, content: bytes) -> str:
        """Persist content and return the hash recorded for later local-edit detection."""
        self.storage.write(location, content)
        return content_hash(content)

    def read(self, location: str) -> Optional[bytes]:
        return self.storage.read(location)

    def detect_local_modification(self, location: str, recorded_hash: Optional[str]) -> bool:
        """Whether the file on disk differs from what the last sync wrote.

        Compares content hashes. With no recorded hash there is nothing to
        compare against, and a missing file has no local edit to protect.
        """
        if not recorded_hash:
            return False
        data = self.storage.read(location)
        if data is None:
            return False
        modified = content_hash(data) != recorded_hash
        if modified:
            self.logger.info(f"Local modification detected at {location}")
        return modified

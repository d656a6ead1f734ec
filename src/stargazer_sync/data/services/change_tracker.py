"""Fingerprint-based change detection for items and their content."""

import logging
from typing import Dict, Iterable, Optional, Tuple

from stargazer_sync.data.models import ContentMetadata, FetchStatus, ItemChanges, ItemSummary

# Fields whose difference marks a stored item as updated
TRACKED_FIELDS = ("updated_at", "star_count", "description", "primary_language", "content_fingerprint")


class ChangeTracker:
    """Decides whether an item's content must be re-fetched."""

    def __init__(self, logger_obj: Optional[logging.Logger] = None):
        self.logger = logger_obj or logging.getLogger(__name__)

    @staticmethod
    def has_changed(stored: Optional[str], current: Optional[str]) -> bool:
        if stored is None and current is None:
            return False
        if stored is None or current is None:
            return True
        return stored != current

    def needs_fetch(
        self,
        stored: Optional[ContentMetadata],
        current_fingerprint: Optional[str],
        force: bool = False,
    ) -> Tuple[bool, str]:
        """Return ``(fetch, reason)`` for one item.

        Forced refreshes, never-fetched items and items whose last attempt
        failed are always fetched. Otherwise the stored fingerprint is
        compared with the cheaply obtained current one.
        """
        if force:
            return True, "Force refresh"
        if stored is None:
            return True, "No stored metadata"
        if stored.fetch_status is FetchStatus.FAILED:
            return True, "Previous fetch failed"
        if self.has_changed(stored.fingerprint, current_fingerprint):
            return True, "Fingerprint changed"
        if stored.fetch_status is FetchStatus.NOT_AVAILABLE:
            return False, "Content not available at source"
        return False, "Content unchanged"

    def detect_item_changes(
        self,
        existing: Dict[str, ItemSummary],
        current: Iterable[ItemSummary],
    ) -> ItemChanges:
        """Classify current items against the previous full sync."""
        added = []
        updated = []
        seen = set()
        for item in current:
            seen.add(item.id)
            previous = existing.get(item.id)
            if previous is None:
                added.append(item)
            elif any(getattr(previous, name) != getattr(item, name) for name in TRACKED_FIELDS):
                updated.append(item)

        removed = [item_id for item_id in existing if item_id not in seen]
        self.logger.info(f"Item changes: {len(added)} added, {len(updated)} updated, {len(removed)} removed")
        return ItemChanges(added=added, updated=updated, removed=removed)

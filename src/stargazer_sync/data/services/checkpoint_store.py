"""Durable, atomic persistence of sync progress."""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from stargazer_sync.api.error_handling import CheckpointValidationError
from stargazer_sync.config.api import CheckpointConfig
from stargazer_sync.config.settings import Settings
from stargazer_sync.data.models import (
    CheckpointStatus,
    ContentMetadata,
    FetchStatus,
    ItemSummary,
    SyncCheckpoint,
    SyncMode,
    parse_instant,
    to_iso,
)
from stargazer_sync.data.storage.local_storage import StorageAdapter


class CheckpointStore:
    """
    Service for saving, loading and validating the sync checkpoint.

    The checkpoint is written to a temporary sibling and then renamed over the
    canonical file, so a crash mid-write leaves either the previous checkpoint
    or the new one, never a torn file. Content that cannot be parsed or
    validated is renamed to a ``.corrupted`` sibling, numbered when one
    already exists, and never deleted.
    """

    def __init__(
        self,
        storage: StorageAdapter,
        checkpoint_file: str = Settings.CHECKPOINT_FILE,
        logger_obj: Optional[logging.Logger] = None,
    ):
        self.storage = storage
        self.checkpoint_file = checkpoint_file
        self.temp_file = f"{checkpoint_file}{CheckpointConfig.TEMP_SUFFIX}"
        self.corrupted_file = f"{checkpoint_file}{CheckpointConfig.CORRUPTED_SUFFIX}"
        self.logger = logger_obj or logging.getLogger(__name__)

    # ------------------------------------------------------------------ save
    def save(self, checkpoint: SyncCheckpoint) -> SyncCheckpoint:
        """Atomically persist a checkpoint.

        Always stamps the current time; keeps an explicit status, defaulting
        to in_progress. The stamped values are also set on the passed object.
        """
        checkpoint.timestamp = datetime.now(timezone.utc)
        if not checkpoint.status:
            checkpoint.status = CheckpointStatus.IN_PROGRESS
        if not checkpoint.session_id:
            checkpoint.session_id = uuid.uuid4().hex

        content = json.dumps(self.serialize(checkpoint), indent=2).encode("utf-8")
        self.storage.write(self.temp_file, content)
        self.storage.rename(self.temp_file, self.checkpoint_file)

        self.logger.info(
            f"Checkpoint written: {checkpoint.fetched_count}/{checkpoint.total_count} items, "
            f"status={checkpoint.status.value}"
        )
        return checkpoint

    def serialize(self, checkpoint: SyncCheckpoint) -> Dict[str, Any]:
        return {
            "schema": CheckpointConfig.SCHEMA_NAME,
            "schema_version": CheckpointConfig.SCHEMA_VERSION,
            "cursor": checkpoint.cursor,
            "items": [item.to_dict() for item in checkpoint.items],
            "total_count": checkpoint.total_count,
            "fetched_count": checkpoint.fetched_count,
            "timestamp": to_iso(checkpoint.timestamp),
            "status": checkpoint.status.value,
            "session_id": checkpoint.session_id,
            "pages_complete": checkpoint.pages_complete,
            "mode": checkpoint.mode.value,
            "content_metadata": {
                item_id: metadata.to_dict() for item_id, metadata in checkpoint.content_metadata.items()
            },
        }

    # ------------------------------------------------------------------ load
    def load(self) -> Optional[SyncCheckpoint]:
        """Load the checkpoint, or None if there is no prior run.

        Raises:
            CheckpointValidationError: the stored content is unusable. It has
                been moved to the ``.corrupted`` sibling before raising.
        """
        data = self.storage.read(self.checkpoint_file)
        if data is None:
            return None
        if not data.strip():
            self.logger.warning(f"Checkpoint file {self.checkpoint_file} is empty")
            return None

        try:
            raw = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            self.logger.error(f"Failed to parse checkpoint JSON: {e}")
            self._quarantine()
            raise CheckpointValidationError(
                "Checkpoint file contains corrupted JSON", "json_parse_error", recoverable=False
            ) from e

        try:
            checkpoint = self.validate(raw)
        except CheckpointValidationError:
            self._quarantine()
            raise

        self.logger.info(
            f"Checkpoint loaded: {checkpoint.fetched_count}/{checkpoint.total_count} items, "
            f"timestamp={to_iso(checkpoint.timestamp)}"
        )
        return checkpoint

    def _quarantine(self) -> str:
        """Rename the checkpoint to the first unused ``.corrupted``, ``.corrupted.1``, ... name."""
        target = self.corrupted_file
        n = 0
        while self.storage.exists(target):
            n += 1
            target = f"{self.corrupted_file}.{n}"
        self.storage.rename(self.checkpoint_file, target)
        self.logger.warning(f"Preserved corrupted checkpoint as {target}")
        return target

    # -------------------------------------------------------------- validate
    def validate(self, raw: Any) -> SyncCheckpoint:
        """Leniently validate a decoded checkpoint record.

        Required: ``cursor`` (string or null), ``items`` (list),
        non-negative integer ``total_count`` and ``fetched_count``.
        Missing timestamp, status or session id only produce a warning.
        """
        if not isinstance(raw, dict):
            raise CheckpointValidationError("Checkpoint must be an object", "invalid_format")

        self._check_schema(raw)

        missing = [name for name in ("cursor", "items", "total_count", "fetched_count") if name not in raw]
        if missing:
            raise CheckpointValidationError(
                f"Checkpoint missing required fields: {', '.join(missing)}", "missing_required_field"
            )

        cursor = raw["cursor"]
        if cursor is not None and not isinstance(cursor, str):
            raise CheckpointValidationError("Checkpoint cursor must be string or null", "invalid_format")
        if not isinstance(raw["items"], list):
            raise CheckpointValidationError("Checkpoint items must be a list", "invalid_format")
        for count_field in ("total_count", "fetched_count"):
            value = raw[count_field]
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise CheckpointValidationError(
                    f"Checkpoint {count_field} must be a non-negative integer", "invalid_format"
                )

        missing_optional = [name for name in ("timestamp", "status", "session_id") if name not in raw]
        if missing_optional:
            self.logger.warning(f"Checkpoint missing optional fields: {missing_optional}")

        items = self._parse_items(raw["items"])
        if raw["fetched_count"] != len(items):
            self.logger.warning(
                f"Checkpoint data inconsistency: fetched_count={raw['fetched_count']}, items={len(items)}"
            )

        return SyncCheckpoint(
            cursor=cursor,
            items=items,
            total_count=raw["total_count"],
            fetched_count=raw["fetched_count"],
            timestamp=parse_instant(raw.get("timestamp")),
            status=self._parse_status(raw.get("status")),
            session_id=str(raw.get("session_id") or ""),
            content_metadata=self._parse_content_metadata(raw.get("content_metadata")),
            pages_complete=bool(raw.get("pages_complete", False)),
            mode=self._parse_mode(raw.get("mode")),
        )

    def _check_schema(self, raw: Dict[str, Any]) -> None:
        schema = raw.get("schema")
        if schema is None:
            self.logger.warning("Checkpoint has no schema marker; treating as current format")
            return
        if schema != CheckpointConfig.SCHEMA_NAME:
            raise CheckpointValidationError(f"Unknown checkpoint schema: {schema!r}", "schema_mismatch")
        version = raw.get("schema_version")
        if not isinstance(version, int) or version > CheckpointConfig.SCHEMA_VERSION:
            raise CheckpointValidationError(
                f"Unsupported checkpoint schema version: {version!r}", "schema_mismatch"
            )

    def _parse_items(self, raw_items: list) -> list:
        items = []
        seen = set()
        for index, raw_item in enumerate(raw_items):
            try:
                item = ItemSummary.from_dict(raw_item)
            except (KeyError, TypeError, ValueError) as e:
                raise CheckpointValidationError(
                    f"Checkpoint item {index} is invalid: {e}", "invalid_item"
                ) from e
            if item.id in seen:
                self.logger.warning(f"Dropping duplicate checkpoint item {item.id}")
                continue
            seen.add(item.id)
            items.append(item)
        return items

    def _parse_status(self, value: Any) -> CheckpointStatus:
        try:
            return CheckpointStatus(value)
        except ValueError:
            if value is not None:
                self.logger.warning(f"Unknown checkpoint status {value!r}, assuming in_progress")
            return CheckpointStatus.IN_PROGRESS

    def _parse_mode(self, value: Any) -> SyncMode:
        try:
            return SyncMode(value)
        except ValueError:
            return SyncMode.INCREMENTAL

    def _parse_content_metadata(self, raw: Any) -> Dict[str, ContentMetadata]:
        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise CheckpointValidationError(
                "Checkpoint content_metadata must be an object", "invalid_format", recoverable=True
            )

        metadata = {}
        for item_id, entry in raw.items():
            if not isinstance(entry, dict):
                self.logger.warning(f"Skipping malformed content metadata for {item_id}")
                continue
            try:
                parsed = ContentMetadata.from_dict(entry)
            except ValueError as e:
                self.logger.warning(f"Skipping content metadata for {item_id}: {e}")
                continue
            # success with neither fingerprint nor location means there was nothing to fetch
            if parsed.fetch_status is FetchStatus.SUCCESS and not parsed.fingerprint and not parsed.storage_location:
                parsed.fetch_status = FetchStatus.NOT_AVAILABLE
            metadata[item_id] = parsed
        return metadata

    # ---------------------------------------------------------------- staleness
    def is_stale(self, checkpoint: SyncCheckpoint, now: Optional[datetime] = None) -> bool:
        """True if the checkpoint has no usable timestamp or is strictly older than 7 days."""
        timestamp = parse_instant(checkpoint.timestamp)
        if timestamp is None:
            self.logger.warning("Checkpoint has no valid timestamp; treating as stale")
            return True

        now = now or datetime.now(timezone.utc)
        age = now - timestamp
        stale = age > CheckpointConfig.STALE_AFTER
        if stale:
            self.logger.warning(f"Checkpoint is stale ({age.days} days old)")
        return stale

    # ------------------------------------------------------------------ delete
    def delete(self) -> None:
        """Remove the checkpoint. Succeeds when it is already gone."""
        if not self.storage.exists(self.checkpoint_file):
            return
        try:
            self.storage.remove(self.checkpoint_file)
        except FileNotFoundError:
            return
        self.logger.info("Checkpoint deleted")

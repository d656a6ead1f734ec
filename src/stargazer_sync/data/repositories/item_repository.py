"""DuckDB repository for the items and content metadata of the last completed sync."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from stargazer_sync.backend.connection_manager import get_db_connection
from stargazer_sync.config.settings import Settings
from stargazer_sync.data.models import ContentMetadata, FetchStatus, ItemSummary, parse_instant, to_iso, utc_now

ITEM_COLUMNS = [
    "id",
    "name",
    "name_with_owner",
    "url",
    "description",
    "star_count",
    "primary_language",
    "owner",
    "created_at",
    "updated_at",
    "starred_at",
    "content_fingerprint",
    "topics",
]

CONTENT_COLUMNS = [
    "item_id",
    "fingerprint",
    "storage_location",
    "fetch_status",
    "last_fetched_at",
    "local_modified",
    "error_message",
    "local_hash",
    "size",
    "original_file_name",
]

SCHEMA_SQL = [
    """
    CREATE TABLE IF NOT EXISTS starred_items (
        id VARCHAR PRIMARY KEY,
        name VARCHAR,
        name_with_owner VARCHAR,
        url VARCHAR,
        description VARCHAR,
        star_count BIGINT,
        primary_language VARCHAR,
        owner VARCHAR,
        created_at VARCHAR,
        updated_at VARCHAR,
        starred_at VARCHAR,
        content_fingerprint VARCHAR,
        topics VARCHAR,
        is_removed BOOLEAN DEFAULT FALSE,
        synced_at TIMESTAMP DEFAULT current_timestamp
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS item_content (
        item_id VARCHAR PRIMARY KEY,
        fingerprint VARCHAR,
        storage_location VARCHAR,
        fetch_status VARCHAR,
        last_fetched_at VARCHAR,
        local_modified BOOLEAN,
        error_message VARCHAR,
        local_hash VARCHAR,
        size BIGINT,
        original_file_name VARCHAR
    )
    """,
]


def _records(df: pd.DataFrame) -> List[dict]:
    """DataFrame rows as dicts with SQL NULLs as None."""
    return df.astype(object).where(df.notna(), None).to_dict("records")


class ItemRepository:
    """Encapsulates DuckDB access for synced starred items.

    Items flagged ``is_removed`` are kept until the caller explicitly deletes
    them; a sync only ever flags.
    """

    def __init__(self, db_path: Optional[Path] = None, logger_obj: Optional[logging.Logger] = None) -> None:
        self.db_path = Path(db_path or Settings.get_db_path())
        self.logger = logger_obj or logging.getLogger(__name__)

    # --------------------------- Schema ---------------------------
    def ensure_schema(self) -> None:
        with get_db_connection(self.db_path, read_only=False, logger_obj=self.logger) as conn:
            for statement in SCHEMA_SQL:
                conn.execute(statement)

    # --------------------------- Items ---------------------------
    def store_items(self, items: Iterable[ItemSummary]) -> Tuple[int, int]:
        """Upsert items by id and clear their removed flag. Returns (inserted, updated)."""
        rows = {item.id: item for item in items}
        if not rows:
            return 0, 0

        df = pd.DataFrame([self._item_row(item) for item in rows.values()], columns=ITEM_COLUMNS)
        df["star_count"] = df["star_count"].astype("int64")
        self.ensure_schema()

        with get_db_connection(self.db_path, read_only=False, logger_obj=self.logger) as conn:
            existing = {row[0] for row in conn.execute("SELECT id FROM starred_items").fetchall()}
            updates = len(set(rows) & existing)

            staging_name = "_staging_starred_items"
            conn.register(staging_name, df)
            col_list = ", ".join(ITEM_COLUMNS)
            update_set = ", ".join(f"{c} = EXCLUDED.{c}" for c in ITEM_COLUMNS if c != "id")
            update_set += ", is_removed = FALSE, synced_at = now()"
            conn.execute(
                f"""
                INSERT INTO starred_items ({col_list})
                SELECT {col_list} FROM {staging_name}
                ON CONFLICT (id) DO UPDATE SET {update_set}
                """
            )
            conn.unregister(staging_name)

        inserted = len(rows) - updates
        self.logger.info(f"starred_items: {inserted} inserted, {updates} updated")
        return inserted, updates

    def get_items(self, include_removed: bool = False) -> Dict[str, ItemSummary]:
        """Items of the last completed sync keyed by id."""
        if not self.db_path.exists():
            return {}
        self.ensure_schema()

        sql = f"SELECT {', '.join(ITEM_COLUMNS)} FROM starred_items"
        if not include_removed:
            sql += " WHERE NOT is_removed"
        with get_db_connection(self.db_path, read_only=True, logger_obj=self.logger) as conn:
            df = conn.execute(sql).fetchdf()

        items = {}
        for record in _records(df):
            record["topics"] = json.loads(record["topics"]) if record.get("topics") else []
            item = ItemSummary.from_dict(record)
            items[item.id] = item
        return items

    def mark_removed(self, item_ids: Iterable[str]) -> int:
        """Flag items as removed upstream without touching their data."""
        ids = list(dict.fromkeys(item_ids))
        if not ids:
            return 0
        self.ensure_schema()
        with get_db_connection(self.db_path, read_only=False, logger_obj=self.logger) as conn:
            placeholders = ", ".join("?" for _ in ids)
            conn.execute(f"UPDATE starred_items SET is_removed = TRUE WHERE id IN ({placeholders})", ids)
        self.logger.info(f"Marked {len(ids)} items as removed upstream")
        return len(ids)

    def get_removed_ids(self) -> List[str]:
        if not self.db_path.exists():
            return []
        self.ensure_schema()
        with get_db_connection(self.db_path, read_only=True, logger_obj=self.logger) as conn:
            return [row[0] for row in conn.execute("SELECT id FROM starred_items WHERE is_removed ORDER BY id").fetchall()]

    def delete_items(self, item_ids: Iterable[str]) -> int:
        """Delete items and their content metadata. Only ever called on explicit request."""
        ids = list(dict.fromkeys(item_ids))
        if not ids or not self.db_path.exists():
            return 0
        self.ensure_schema()
        placeholders = ", ".join("?" for _ in ids)
        with get_db_connection(self.db_path, read_only=False, logger_obj=self.logger) as conn:
            deleted = conn.execute(
                f"SELECT COUNT(*) FROM starred_items WHERE id IN ({placeholders})", ids
            ).fetchone()[0]
            conn.execute(f"DELETE FROM starred_items WHERE id IN ({placeholders})", ids)
            conn.execute(f"DELETE FROM item_content WHERE item_id IN ({placeholders})", ids)
        self.logger.info(f"Deleted {deleted} items")
        return int(deleted)

    def count_items(self, include_removed: bool = False) -> int:
        if not self.db_path.exists():
            return 0
        self.ensure_schema()
        sql = "SELECT COUNT(*) FROM starred_items"
        if not include_removed:
            sql += " WHERE NOT is_removed"
        with get_db_connection(self.db_path, read_only=True, logger_obj=self.logger) as conn:
            return int(conn.execute(sql).fetchone()[0])

    # ------------------------ Content metadata ------------------------
    def store_content_metadata(self, metadata: Dict[str, ContentMetadata]) -> int:
        """Upsert per-item content metadata so the next run can skip unchanged content."""
        if not metadata:
            return 0

        df = pd.DataFrame(
            [self._content_row(item_id, entry) for item_id, entry in metadata.items()],
            columns=CONTENT_COLUMNS,
        )
        df["size"] = pd.array([entry.size for entry in metadata.values()], dtype="Int64")
        df["local_modified"] = df["local_modified"].astype(bool)
        self.ensure_schema()

        with get_db_connection(self.db_path, read_only=False, logger_obj=self.logger) as conn:
            staging_name = "_staging_item_content"
            conn.register(staging_name, df)
            col_list = ", ".join(CONTENT_COLUMNS)
            update_set = ", ".join(f"{c} = EXCLUDED.{c}" for c in CONTENT_COLUMNS if c != "item_id")
            conn.execute(
                f"""
                INSERT INTO item_content ({col_list})
                SELECT {col_list} FROM {staging_name}
                ON CONFLICT (item_id) DO UPDATE SET {update_set}
                """
            )
            conn.unregister(staging_name)

        self.logger.info(f"item_content: stored metadata for {len(df)} items")
        return len(df)

    def get_content_metadata(self) -> Dict[str, ContentMetadata]:
        if not self.db_path.exists():
            return {}
        self.ensure_schema()
        with get_db_connection(self.db_path, read_only=True, logger_obj=self.logger) as conn:
            df = conn.execute(f"SELECT {', '.join(CONTENT_COLUMNS)} FROM item_content").fetchdf()

        metadata = {}
        for record in _records(df):
            metadata[record["item_id"]] = ContentMetadata(
                storage_location=record["storage_location"] or "",
                fetch_status=FetchStatus(record["fetch_status"]),
                last_fetched_at=parse_instant(record["last_fetched_at"]) or utc_now(),
                fingerprint=record["fingerprint"],
                local_modified=bool(record["local_modified"]),
                error_message=record["error_message"],
                local_hash=record["local_hash"],
                size=int(record["size"]) if record["size"] is not None else None,
                original_file_name=record["original_file_name"],
            )
        return metadata

    # --------------------------- Rows ---------------------------
    @staticmethod
    def _item_row(item: ItemSummary) -> dict:
        row = item.to_dict()
        row["topics"] = json.dumps(list(item.topics))
        return row

    @staticmethod
    def _content_row(item_id: str, metadata: ContentMetadata) -> dict:
        row = metadata.to_dict()
        row["item_id"] = item_id
        row["last_fetched_at"] = to_iso(metadata.last_fetched_at)
        return row

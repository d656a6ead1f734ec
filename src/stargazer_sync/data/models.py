"""Typed contracts for the starred-item sync engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional, Union


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def parse_instant(value: Any) -> Optional[datetime]:
    """Parse an ISO8601 string (``Z`` suffix accepted) into an aware datetime.

    Returns None for missing or unparseable input. Naive values are taken as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SyncMode(str, Enum):
    """How a sync run treats previously stored state."""

    INITIAL = "initial"
    INCREMENTAL = "incremental"


class CheckpointStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class FetchStatus(str, Enum):
    """Outcome recorded in ContentMetadata after each fetch attempt."""

    SUCCESS = "success"
    FAILED = "failed"
    NOT_AVAILABLE = "not_available"


class ConflictState(str, Enum):
    NO_CONFLICT = "no_conflict"
    CONFLICT = "conflict"


class ResumeDecision(str, Enum):
    RESUME = "resume"
    RESTART = "restart"


class ConflictResolution(str, Enum):
    KEEP_LOCAL = "keep_local"
    ACCEPT_REMOTE = "accept_remote"
    VIEW_DIFF = "view_diff"


class FetchOutcome(str, Enum):
    """What the content pool did for a single item."""

    FETCHED = "fetched"
    SKIPPED = "skipped"
    NOT_AVAILABLE = "not_available"
    CONFLICT = "conflict"
    FAILED = "failed"


class SyncState(str, Enum):
    """States of the sync orchestrator."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    FETCHING_PAGE = "fetching_page"
    AWAITING_CONTENT = "awaiting_content"
    CHECKPOINTING_PAGE = "checkpointing_page"
    COMPLETING = "completing"
    FAILED = "failed"


@dataclass
class ItemSummary:
    """One starred repository as fetched from the remote collection."""

    id: str
    name: str
    name_with_owner: str
    url: str = ""
    description: Optional[str] = None
    star_count: int = 0
    primary_language: Optional[str] = None
    owner: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    starred_at: Optional[str] = None
    content_fingerprint: Optional[str] = None
    topics: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "name_with_owner": self.name_with_owner,
            "url": self.url,
            "description": self.description,
            "star_count": self.star_count,
            "primary_language": self.primary_language,
            "owner": self.owner,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "starred_at": self.starred_at,
            "content_fingerprint": self.content_fingerprint,
            "topics": list(self.topics),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ItemSummary":
        """Build from a stored record. Raises KeyError/TypeError/ValueError on bad input."""
        if not isinstance(data, dict):
            raise TypeError(f"item must be a mapping, got {type(data).__name__}")
        item_id = data["id"]
        if not isinstance(item_id, str) or not item_id:
            raise ValueError("item id must be a non-empty string")
        name_with_owner = data.get("name_with_owner") or data.get("name") or item_id
        return cls(
            id=item_id,
            name=data.get("name") or name_with_owner.split("/")[-1],
            name_with_owner=name_with_owner,
            url=data.get("url") or "",
            description=data.get("description"),
            star_count=int(data.get("star_count") or 0),
            primary_language=data.get("primary_language"),
            owner=data.get("owner") or name_with_owner.split("/")[0],
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            starred_at=data.get("starred_at"),
            content_fingerprint=data.get("content_fingerprint"),
            topics=list(data.get("topics") or []),
        )


@dataclass
class ContentMetadata:
    """Per-item auxiliary content tracking, persisted in the checkpoint."""

    storage_location: str
    fetch_status: FetchStatus
    last_fetched_at: datetime = field(default_factory=utc_now)
    fingerprint: Optional[str] = None
    local_modified: bool = False
    error_message: Optional[str] = None
    local_hash: Optional[str] = None
    size: Optional[int] = None
    original_file_name: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "storage_location": self.storage_location,
            "fetch_status": self.fetch_status.value,
            "last_fetched_at": to_iso(self.last_fetched_at),
            "local_modified": self.local_modified,
            "error_message": self.error_message,
            "local_hash": self.local_hash,
            "size": self.size,
            "original_file_name": self.original_file_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContentMetadata":
        return cls(
            fingerprint=data.get("fingerprint") or None,
            storage_location=data.get("storage_location") or "",
            fetch_status=FetchStatus(data.get("fetch_status", FetchStatus.FAILED.value)),
            last_fetched_at=parse_instant(data.get("last_fetched_at")) or utc_now(),
            local_modified=bool(data.get("local_modified", False)),
            error_message=data.get("error_message"),
            local_hash=data.get("local_hash"),
            size=data.get("size"),
            original_file_name=data.get("original_file_name"),
        )


@dataclass
class SyncCheckpoint:
    """Resumable state of one sync run."""

    cursor: Optional[str] = None
    items: list[ItemSummary] = field(default_factory=list)
    total_count: int = 0
    fetched_count: int = 0
    timestamp: Optional[datetime] = None
    status: CheckpointStatus = CheckpointStatus.IN_PROGRESS
    session_id: str = ""
    content_metadata: dict[str, ContentMetadata] = field(default_factory=dict)
    pages_complete: bool = False
    mode: SyncMode = SyncMode.INCREMENTAL

    def item_ids(self) -> set[str]:
        return {item.id for item in self.items}

    def merge_items(self, new_items: list[ItemSummary]) -> list[ItemSummary]:
        """Append items not already present, keeping ids unique. Returns what was added."""
        known = self.item_ids()
        added = []
        for item in new_items:
            if item.id in known:
                continue
            known.add(item.id)
            added.append(item)
        self.items.extend(added)
        self.fetched_count = len(self.items)
        return added


@dataclass(frozen=True)
class CheckpointSummary:
    """What a resume-confirmation step gets to see."""

    age: timedelta
    fetched_count: int
    total_count: int
    status: CheckpointStatus
    session_id: str = ""


@dataclass(frozen=True)
class RateLimitInfo:
    """Quota snapshot taken from a remote response. Never persisted."""

    limit: int
    remaining: int
    used: int = 0
    reset_at: Optional[datetime] = None
    cost: int = 1


@dataclass(frozen=True)
class PageResult:
    """One page of the remote collection, validated at the boundary."""

    items: list[ItemSummary]
    next_cursor: Optional[str]
    has_more: bool
    total_count: Optional[int] = None
    rate_limit: Optional[RateLimitInfo] = None


@dataclass(frozen=True)
class ContentPayload:
    """Content was found for the item."""

    item_id: str
    content: bytes
    fingerprint: Optional[str]
    size: Optional[int] = None
    file_name: Optional[str] = None
    rate_limit: Optional[RateLimitInfo] = None


@dataclass(frozen=True)
class ContentNotFound:
    """The source reports that no content exists for the item."""

    item_id: str
    rate_limit: Optional[RateLimitInfo] = None


ContentResult = Union[ContentPayload, ContentNotFound]


@dataclass(frozen=True)
class ConflictDetectionResult:
    has_conflict: bool
    state: ConflictState
    local_modified: bool
    remote_modified: bool
    local_fingerprint: Optional[str]
    remote_fingerprint: Optional[str]
    reason: str
    item_id: str = ""


@dataclass
class FetchResult:
    """Per-item outcome of ContentFetchPool.fetch_batch."""

    item_id: str
    outcome: FetchOutcome
    metadata: Optional[ContentMetadata] = None
    error: Optional[Exception] = None
    skip_reason: Optional[str] = None
    conflict: Optional[ConflictDetectionResult] = None

    @property
    def success(self) -> bool:
        return self.outcome is not FetchOutcome.FAILED


@dataclass(frozen=True)
class ItemError:
    """A failure the caller can explain: which item, what kind, what happened."""

    item_id: str
    category: str
    message: str


@dataclass(frozen=True)
class ItemChanges:
    added: list[ItemSummary]
    updated: list[ItemSummary]
    removed: list[str]


@dataclass(frozen=True)
class SyncProgress:
    state: SyncState
    fetched_count: int
    total_count: int
    message: str = ""


@dataclass
class SyncReport:
    """Result report for a completed sync run."""

    items: list[ItemSummary]
    removed_items: list[str]
    errors: list[ItemError] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    conflicts: list[ConflictDetectionResult] = field(default_factory=list)
    resumed: bool = False
    fetched_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0

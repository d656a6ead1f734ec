"""Error taxonomy and categorization for sync operations."""

import asyncio
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import aiohttp

from stargazer_sync.config.api import APIConfig


class ErrorCategory(Enum):
    """Categories for different types of sync errors."""
    NETWORK = "network"
    SERVER = "server"
    CLIENT = "client"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    DATA = "data"
    UNKNOWN = "unknown"


class SyncError(Exception):
    """Base class for all errors raised by the sync engine."""


class TransientNetworkError(SyncError):
    """Network failure or 5xx response that may succeed on retry."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RateLimitedError(SyncError):
    """The server refused the call because the quota is exhausted.

    The wait before retrying comes from the server-provided reset time,
    not from exponential backoff. Without one, a fixed fallback wait applies.
    """

    def __init__(self, message: str, reset_at: Optional[datetime] = None, retry_after: Optional[float] = None):
        super().__init__(message)
        self.reset_at = reset_at
        self.retry_after = retry_after

    def wait_seconds(self, now: Optional[datetime] = None) -> float:
        """Seconds to wait before the next attempt, never negative."""
        if self.retry_after is not None:
            return max(0.0, float(self.retry_after))
        if self.reset_at is None:
            return float(APIConfig.RATE_LIMIT_FALLBACK_WAIT)
        now = now or datetime.now(timezone.utc)
        return max(0.0, (self.reset_at - now).total_seconds())


class AuthenticationError(SyncError):
    """Credentials are missing, invalid or lack permission. Never retried."""


class MalformedRequestError(SyncError):
    """The server rejected the request itself (4xx, GraphQL error). Never retried."""


class MalformedResponseError(SyncError):
    """The server response did not have the expected shape."""


class SyncCancelledError(SyncError):
    """The run-scoped cancellation signal was observed."""


class CheckpointValidationError(SyncError):
    """Checkpoint content is structurally invalid."""

    def __init__(self, message: str, reason: str = "invalid_format", recoverable: bool = False):
        super().__init__(message)
        self.reason = reason
        self.recoverable = recoverable


class ContentFetchError(SyncError):
    """Per-item content failure. Isolated to the item, never aborts a batch."""

    def __init__(self, message: str, item_id: str = ""):
        super().__init__(message)
        self.item_id = item_id


class AccessDeniedError(ContentFetchError):
    """Access to the item's content was denied."""

    def __init__(self, item_id: str, status: int):
        super().__init__(f"Access denied to '{item_id}' (status {status})", item_id)
        self.status = status


class ContentTimeoutError(ContentFetchError):
    """Content fetch exceeded its wall-clock budget."""

    def __init__(self, item_id: str, timeout: float):
        super().__init__(f"Content fetch for '{item_id}' timed out after {timeout} seconds", item_id)
        self.timeout = timeout


class SizeLimitExceededError(ContentFetchError):
    """Content is larger than the configured ceiling."""

    def __init__(self, item_id: str, size: int, max_size: int):
        super().__init__(
            f"Content for '{item_id}' is too large ({size} bytes, limit is {max_size} bytes)", item_id
        )
        self.size = size
        self.max_size = max_size


# errors retried with exponential backoff; rate limits wait for the reset instead
RETRYABLE_ERRORS = (TransientNetworkError,)


def categorize_error(exception: BaseException) -> ErrorCategory:
    """Categorize an exception into error types for better handling."""
    if isinstance(exception, RateLimitedError):
        return ErrorCategory.RATE_LIMIT
    elif isinstance(exception, (AuthenticationError, AccessDeniedError)):
        return ErrorCategory.AUTH
    elif isinstance(exception, (ContentTimeoutError, asyncio.TimeoutError)):
        return ErrorCategory.TIMEOUT
    elif isinstance(exception, TransientNetworkError):
        if exception.status is not None and 500 <= exception.status < 600:
            return ErrorCategory.SERVER
        return ErrorCategory.NETWORK
    elif isinstance(exception, MalformedRequestError):
        return ErrorCategory.CLIENT
    elif isinstance(exception, (MalformedResponseError, CheckpointValidationError, SizeLimitExceededError)):
        return ErrorCategory.DATA
    elif isinstance(exception, aiohttp.ClientResponseError):
        if 400 <= exception.status < 500:
            return ErrorCategory.CLIENT
        elif 500 <= exception.status < 600:
            return ErrorCategory.SERVER
        else:
            return ErrorCategory.UNKNOWN
    elif isinstance(exception, aiohttp.ClientError):
        return ErrorCategory.NETWORK
    elif isinstance(exception, (json.JSONDecodeError, ValueError)):
        return ErrorCategory.DATA
    else:
        return ErrorCategory.UNKNOWN

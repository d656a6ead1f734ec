"""API layer: GitHub client, rate limiting and error taxonomy."""

from .error_handling import ErrorCategory, SyncError, categorize_error
from .github_client import GitHubClient
from .rate_limiter import RateLimiter
from .source import RemoteCollectionSource

__all__ = ["GitHubClient", "RateLimiter", "RemoteCollectionSource", "SyncError", "ErrorCategory", "categorize_error"]

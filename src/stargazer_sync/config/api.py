"""API configuration for the GitHub endpoints and sync engine limits."""

from datetime import timedelta


class APIConfig:
    """API configuration and settings."""

    # GitHub endpoints
    GRAPHQL_URL = "https://api.github.com/graphql"
    REST_URL = "https://api.github.com"

    # Request settings
    PAGE_SIZE = 100
    REQUEST_TIMEOUT = 60

    # Retry settings: MAX_RETRIES retries after the first attempt, waiting 1s, 2s, 4s
    MAX_RETRIES = 3
    RETRY_BASE_DELAY = 1.0
    RATE_LIMIT_MAX_WAITS = 3

    # Rate limiting
    DEFAULT_RATE_LIMIT = 5000
    RATE_LIMIT_THRESHOLD = 0.20
    # wait used when a rate-limit response carries neither Retry-After nor a reset time
    RATE_LIMIT_FALLBACK_WAIT = 60

    # Content fetching
    CONTENT_CONCURRENCY_LIMIT = 5
    CONTENT_MAX_BYTES = 5 * 1024 * 1024
    CONTENT_FETCH_TIMEOUT = 30
    MAX_PENDING_CONTENT_BATCHES = 2

    @classmethod
    def get_readme_url(cls, owner: str, repo: str) -> str:
        """Get the REST URL for a repository README."""
        return f"{cls.REST_URL}/repos/{owner}/{repo}/readme"


class CheckpointConfig:
    """Checkpoint file format and lifecycle settings."""

    SCHEMA_NAME = "stargazer-sync/checkpoint"
    SCHEMA_VERSION = 1

    STALE_AFTER = timedelta(days=7)

    TEMP_SUFFIX = ".tmp"
    CORRUPTED_SUFFIX = ".corrupted"

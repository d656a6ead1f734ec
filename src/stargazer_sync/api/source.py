"""Contract of the remote starred-item collection."""

from typing import Optional, Protocol

from stargazer_sync.data.models import ContentResult, ItemSummary, PageResult


class RemoteCollectionSource(Protocol):
    """What the sync engine needs from a remote collection.

    Implementations raise the typed errors from ``api.error_handling``:
    transient (``TransientNetworkError``, ``RateLimitedError``) or terminal
    (``AuthenticationError``, ``MalformedRequestError``,
    ``MalformedResponseError``, ``AccessDeniedError``).
    """

    async def fetch_page(self, cursor: Optional[str], page_size: int) -> PageResult:
        ...

    async def fetch_content(self, item: ItemSummary) -> ContentResult:
        ...

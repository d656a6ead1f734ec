from .content_store import ContentStore
from .local_storage import LocalStorage, StorageAdapter

__all__ = ["ContentStore", "LocalStorage", "StorageAdapter"]

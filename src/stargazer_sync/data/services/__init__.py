"""Sync engine services."""

from .change_tracker import ChangeTracker
from .checkpoint_store import CheckpointStore
from .conflict_detector import ConflictDetector
from .content_fetch_pool import ContentFetchPool
from .sync_orchestrator import SyncOrchestrator

__all__ = ["ChangeTracker", "CheckpointStore", "ConflictDetector", "ContentFetchPool", "SyncOrchestrator"]

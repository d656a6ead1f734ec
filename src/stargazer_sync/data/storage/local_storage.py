"""Durable local filesystem storage used by the checkpoint and content stores."""

import logging
import os
from pathlib import Path
from typing import Optional, Protocol


class StorageAdapter(Protocol):
    """Minimal durable storage contract. Paths are relative to the storage root."""

    def read(self, path: str) -> Optional[bytes]:
        ...

    def write(self, path: str, data: bytes) -> None:
        ...

    def remove(self, path: str) -> None:
        ...

    def rename(self, source: str, destination: str) -> None:
        ...

    def exists(self, path: str) -> bool:
        ...


class LocalStorage:
    """
    Storage adapter backed by a directory on the local filesystem.

    Writes are flushed and fsynced before returning; rename uses os.replace,
    which atomically swaps the destination on both POSIX and Windows.
    """

    def __init__(self, root: Path, logger_obj: Optional[logging.Logger] = None):
        self.root = Path(root)
        self.logger = logger_obj or logging.getLogger(__name__)

    def resolve(self, path: str) -> Path:
        """Resolve a relative storage path, refusing anything that escapes the root."""
        root = self.root.resolve()
        full = (root / path).resolve()
        if full != root and root not in full.parents:
            raise ValueError(f"Path escapes storage root: {path}")
        return full

    def read(self, path: str) -> Optional[bytes]:
        """Read file bytes, or None if the file does not exist."""
        try:
            return self.resolve(path).read_bytes()
        except FileNotFoundError:
            return None

    def write(self, path: str, data: bytes) -> None:
        """Write bytes to a file, creating parent directories as needed."""
        full = self.resolve(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        with open(full, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        self.logger.debug(f"Wrote {len(data)} bytes to {full}")

    def remove(self, path: str) -> None:
        """Remove a file. Raises FileNotFoundError if it is absent."""
        self.resolve(path).unlink()
        self.logger.debug(f"Removed {path}")

    def rename(self, source: str, destination: str) -> None:
        """Atomically move source to destination, replacing any existing file."""
        src = self.resolve(source)
        dst = self.resolve(destination)
        dst.parent.mkdir(parents=True, exist_ok=True)
        os.replace(src, dst)
        self.logger.debug(f"Renamed {source} -> {destination}")

    def exists(self, path: str) -> bool:
        return self.resolve(path).exists()

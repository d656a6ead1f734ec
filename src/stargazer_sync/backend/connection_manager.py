"""
Database connection management with guaranteed cleanup.
"""

from __future__ import annotations

import contextlib
import logging
from pathlib import Path
from typing import Generator

import duckdb


@contextlib.contextmanager
def get_db_connection(
    db_path: Path, read_only: bool = True, logger_obj: logging.Logger | None = None
) -> Generator[duckdb.DuckDBPyConnection, None, None]:
    """
    Context manager for DuckDB connections that always closes the connection.

    Args:
        db_path: Path to the database file
        read_only: Whether to open in read-only mode
        logger_obj: Optional logger for debug messages

    Yields:
        DuckDB connection that will be automatically closed

    Example:
        with get_db_connection(db_path) as conn:
            rows = conn.execute("SELECT id FROM starred_items").fetchall()
    """
    if logger_obj is None:
        logger_obj = logging.getLogger(__name__)

    if not db_path.exists():
        if read_only:
            raise FileNotFoundError(f"Database {db_path} does not exist")
        logger_obj.info(f"Database {db_path} does not exist. It will be created.")
        db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = None
    try:
        conn = duckdb.connect(database=db_path.as_posix(), read_only=read_only)
        logger_obj.debug(f"Connected to DuckDB at {db_path} (read_only={read_only})")
        yield conn
    except Exception as e:
        logger_obj.error(f"Database error at {db_path}: {e}", exc_info=True)
        raise
    finally:
        if conn:
            conn.close()
            logger_obj.debug(f"Connection to {db_path} closed")

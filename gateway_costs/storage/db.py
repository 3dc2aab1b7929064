"""
Database connection management.

Provides SQLite connections for the cost cache and the gateway directory.
"""

import sqlite3
from pathlib import Path

DEFAULT_CACHE_PATH = "gateway_costs.db"


def get_connection(db_path: str = DEFAULT_CACHE_PATH, timeout: float = 30.0) -> sqlite3.Connection:
    """Create and return a SQLite database connection.

    A busy timeout makes concurrent writers wait for the lock instead of
    failing immediately with "database is locked".

    Args:
        db_path: Path to SQLite database file
        timeout: Seconds to wait for a locked database

    Returns:
        SQLite connection
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=timeout)
    conn.execute(f"PRAGMA busy_timeout = {int(timeout * 1000)}")
    return conn


def get_readonly_connection(db_path: str, timeout: float = 30.0) -> sqlite3.Connection:
    """Open an existing database read-only.

    Raises:
        sqlite3.OperationalError: If the file does not exist
    """
    uri = f"{Path(db_path).resolve().as_uri()}?mode=ro"
    return sqlite3.connect(uri, uri=True, timeout=timeout)

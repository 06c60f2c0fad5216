"""
Database connection management.

Provides SQLite connections for the quota ledger and response history.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "ai_reply_stream.db"


def get_connection(db_path: str = DEFAULT_DB_PATH, timeout: float = 30.0) -> sqlite3.Connection:
    """Create and return a SQLite database connection with foreign keys enabled.

    The busy timeout lets concurrent writers wait on each other's
    ``BEGIN IMMEDIATE`` locks instead of failing immediately.

    Args:
        db_path: Path to SQLite database file
        timeout: Seconds to wait for a locked database

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=timeout)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn

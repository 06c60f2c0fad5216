"""
Repository functions for data access.

Handles the account quota records and the append-only response history.
"""

import json
from datetime import datetime
from typing import List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import PersistedResult, QuotaState, VariantResult


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the account_quota and response_history tables if they don't exist.

    response_history is keyed by request_id so a request can be recorded
    at most once. No UPDATE or DELETE is ever performed on it.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS account_quota (
                account_id TEXT PRIMARY KEY,
                usage_count INTEGER NOT NULL DEFAULT 0,
                monthly_allowance INTEGER NOT NULL,
                period_reset_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS response_history (
                request_id TEXT PRIMARY KEY,
                account_id TEXT NOT NULL,
                original_message TEXT NOT NULL,
                context TEXT NOT NULL,
                variants TEXT NOT NULL,
                provider TEXT NOT NULL,
                estimated_cost REAL NOT NULL,
                confidence_score REAL,
                created_at TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()


def upsert_account(
    account_id: str,
    monthly_allowance: int,
    period_reset_at: datetime,
    db_path: str = DEFAULT_DB_PATH
) -> None:
    """Create an account quota record, or change the allowance of an existing one.

    Usage and the reset timestamp of an existing account are left untouched;
    a new allowance is simply observed by the next reservation.

    Args:
        account_id: Account identifier
        monthly_allowance: Number of generations allowed per period
        period_reset_at: Reset timestamp used only when the record is new
        db_path: Path to SQLite database file
    """
    if monthly_allowance < 0:
        raise ValueError("monthly_allowance must be >= 0")

    conn = get_connection(db_path)
    try:
        conn.execute("""
            INSERT INTO account_quota (account_id, usage_count, monthly_allowance, period_reset_at)
            VALUES (?, 0, ?, ?)
            ON CONFLICT(account_id) DO UPDATE SET monthly_allowance = excluded.monthly_allowance
        """, (account_id, monthly_allowance, period_reset_at.isoformat()))
        conn.commit()
    finally:
        conn.close()


def get_quota_state(account_id: str, db_path: str = DEFAULT_DB_PATH) -> Optional[QuotaState]:
    """Fetch the quota record for an account, or None if it doesn't exist."""
    conn = get_connection(db_path)
    try:
        row = conn.execute("""
            SELECT account_id, usage_count, monthly_allowance, period_reset_at
            FROM account_quota WHERE account_id = ?
        """, (account_id,)).fetchone()
        if row is None:
            return None
        return QuotaState(
            account_id=row[0],
            usage_count=row[1],
            monthly_allowance=row[2],
            period_reset_at=datetime.fromisoformat(row[3]),
        )
    finally:
        conn.close()


def try_increment_usage(
    account_id: str,
    now: datetime,
    next_reset_at: datetime,
    db_path: str = DEFAULT_DB_PATH
) -> Optional[bool]:
    """Roll the period over if due, then take one unit of quota atomically.

    Both steps run inside a single ``BEGIN IMMEDIATE`` transaction, and the
    increment is a conditional UPDATE, so two concurrent callers can never
    both observe the last free unit.

    Args:
        account_id: Account identifier
        now: Current time, compared against period_reset_at
        next_reset_at: Reset timestamp to store when the period rolls over
        db_path: Path to SQLite database file

    Returns:
        True if a unit was reserved, False if the allowance is used up,
        None if the account doesn't exist
    """
    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN IMMEDIATE")
        conn.execute("""
            UPDATE account_quota
            SET usage_count = 0, period_reset_at = ?
            WHERE account_id = ? AND period_reset_at <= ?
        """, (next_reset_at.isoformat(), account_id, now.isoformat()))
        cursor = conn.execute("""
            UPDATE account_quota
            SET usage_count = usage_count + 1
            WHERE account_id = ? AND usage_count < monthly_allowance
        """, (account_id,))
        if cursor.rowcount == 1:
            conn.commit()
            return True
        exists = conn.execute(
            "SELECT 1 FROM account_quota WHERE account_id = ?", (account_id,)
        ).fetchone()
        conn.commit()
        return False if exists else None
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def insert_result(result: PersistedResult, db_path: str = DEFAULT_DB_PATH) -> bool:
    """Insert a persisted result unless one already exists for its request_id.

    The record is written in one statement, so it either exists in full
    or not at all.

    Args:
        result: The result to record
        db_path: Path to SQLite database file

    Returns:
        True if a new record was written, False if request_id was already recorded
    """
    conn = get_connection(db_path)
    try:
        cursor = conn.execute("""
            INSERT OR IGNORE INTO response_history
            (request_id, account_id, original_message, context, variants,
             provider, estimated_cost, confidence_score, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            result.request_id,
            result.account_id,
            result.original_message,
            json.dumps(result.context, ensure_ascii=False),
            json.dumps([v.to_dict() for v in result.variants], ensure_ascii=False),
            result.provider,
            result.estimated_cost,
            result.confidence_score,
            result.created_at.isoformat()
        ))
        conn.commit()
        return cursor.rowcount == 1
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _row_to_result(row) -> PersistedResult:
    return PersistedResult(
        request_id=row[0],
        account_id=row[1],
        original_message=row[2],
        context=json.loads(row[3]),
        variants=[VariantResult.from_dict(v) for v in json.loads(row[4])],
        provider=row[5],
        estimated_cost=row[6],
        confidence_score=row[7],
        created_at=datetime.fromisoformat(row[8]),
    )


_RESULT_COLUMNS = """
    request_id, account_id, original_message, context, variants,
    provider, estimated_cost, confidence_score, created_at
"""


def fetch_result(request_id: str, db_path: str = DEFAULT_DB_PATH) -> Optional[PersistedResult]:
    """Fetch the persisted result for a request, or None if none was written."""
    conn = get_connection(db_path)
    try:
        row = conn.execute(
            f"SELECT {_RESULT_COLUMNS} FROM response_history WHERE request_id = ?",
            (request_id,)
        ).fetchone()
        return _row_to_result(row) if row else None
    finally:
        conn.close()


def fetch_recent_results(
    account_id: Optional[str] = None,
    limit: int = 20,
    db_path: str = DEFAULT_DB_PATH
) -> List[PersistedResult]:
    """Fetch recent results, newest first, optionally for one account.

    Args:
        account_id: Optional filter for a specific account
        limit: Maximum number of results to return
        db_path: Path to SQLite database file

    Returns:
        List of results ordered by created_at (newest first)
    """
    conn = get_connection(db_path)
    try:
        query = f"SELECT {_RESULT_COLUMNS} FROM response_history"
        params = []
        if account_id:
            query += " WHERE account_id = ?"
            params.append(account_id)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        return [_row_to_result(row) for row in conn.execute(query, params).fetchall()]
    finally:
        conn.close()

"""
Per-account usage quota.

Admission takes one unit of the monthly allowance before any generation
work begins. The unit pays for the attempt, not for success: it is not
refunded when variants fail or the client goes away.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from .errors import AdmissionDenied, DenialReason
from ai_reply_stream.storage.db import DEFAULT_DB_PATH
from ai_reply_stream.storage.models import QuotaState
from ai_reply_stream.storage.repository import (
    get_quota_state,
    try_increment_usage,
    upsert_account,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reservation:
    """Outcome of a reservation attempt."""
    account_id: str
    reason: Optional[DenialReason] = None

    @property
    def allowed(self) -> bool:
        return self.reason is None

    def raise_for_denial(self) -> None:
        if self.reason is not None:
            raise AdmissionDenied(self.reason)


def next_period_start(now: datetime) -> datetime:
    """First instant of the calendar month after ``now``, in UTC."""
    now = now.astimezone(timezone.utc)
    if now.month == 12:
        return datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QuotaLedger:
    """Tracks per-account usage against a monthly allowance.

    The check-and-increment is a single database transaction, so
    concurrent requests from one account can never overdraw it.
    Period rollover happens lazily inside the next reservation.
    """

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        clock: Callable[[], datetime] = _utc_now
    ):
        self.db_path = db_path
        self._clock = clock

    def reserve(self, account_id: str, now: Optional[datetime] = None) -> Reservation:
        """Take one unit of quota for ``account_id`` if any is left.

        Args:
            account_id: Account identifier, trusted as given
            now: Override of the current time (defaults to the ledger clock)

        Returns:
            Reservation; ``allowed`` is False with a reason on denial
        """
        now = (now or self._clock()).astimezone(timezone.utc)
        taken = try_increment_usage(
            account_id,
            now=now,
            next_reset_at=next_period_start(now),
            db_path=self.db_path
        )
        if taken is None:
            logger.info("Quota denied for %s: account not found", account_id)
            return Reservation(account_id, DenialReason.ACCOUNT_NOT_FOUND)
        if not taken:
            logger.info("Quota denied for %s: monthly limit exceeded", account_id)
            return Reservation(account_id, DenialReason.LIMIT_EXCEEDED)
        return Reservation(account_id)

    def status(self, account_id: str) -> Optional[QuotaState]:
        """Current quota record for an account, without reserving anything."""
        return get_quota_state(account_id, self.db_path)

    def set_allowance(self, account_id: str, monthly_allowance: int) -> None:
        """Create the account or change its allowance; applied on the next reservation."""
        upsert_account(
            account_id,
            monthly_allowance,
            period_reset_at=next_period_start(self._clock()),
            db_path=self.db_path
        )

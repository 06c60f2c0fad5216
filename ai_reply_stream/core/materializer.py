"""
Durable recording of finished requests.

A request is persisted at most once, keyed by its request_id; a retried
call returns the record already written instead of creating another.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from .errors import PersistenceFailure
from ai_reply_stream.storage.db import DEFAULT_DB_PATH
from ai_reply_stream.storage.models import PersistedResult, VariantResult
from ai_reply_stream.storage.repository import fetch_result, insert_result

logger = logging.getLogger(__name__)


def average_confidence(variants: List[VariantResult]) -> Optional[float]:
    scores = [v.confidence for v in variants if v.state == "complete" and v.confidence is not None]
    if not scores:
        return None
    return round(sum(scores) / len(scores), 4)


class ResultMaterializer:
    """Writes the finalized variant set, cost and provenance to history."""

    def __init__(self, provider: str, db_path: str = DEFAULT_DB_PATH):
        self.provider = provider
        self.db_path = db_path

    def persist(
        self,
        request_id: str,
        account_id: str,
        message: str,
        context: Dict[str, Any],
        variant_results: List[VariantResult],
        cost: Union[Decimal, float]
    ) -> PersistedResult:
        """Persist one request's outcome exactly once.

        Args:
            request_id: Idempotency key of the record
            account_id: Account that made the request
            message: Original message text
            context: Context tags as plain values
            variant_results: Final state of every variant, failed ones included
            cost: Estimated provider cost in dollars

        Returns:
            The record now stored for request_id

        Raises:
            PersistenceFailure: If the record could not be written or read back
        """
        if cost < 0:
            raise ValueError("cost must be >= 0")

        result = PersistedResult(
            request_id=request_id,
            account_id=account_id,
            original_message=message,
            context=context,
            variants=sorted(variant_results, key=lambda v: v.index),
            provider=self.provider,
            estimated_cost=float(cost),
            created_at=datetime.now(timezone.utc),
            confidence_score=average_confidence(variant_results),
        )

        try:
            created = insert_result(result, self.db_path)
            if created:
                logger.info(
                    "Persisted result %s (%d/%d variants complete, cost $%.4f)",
                    request_id, len(result.completed_variants), len(result.variants),
                    result.estimated_cost
                )
                return result
            existing = fetch_result(request_id, self.db_path)
        except sqlite3.Error as e:
            raise PersistenceFailure(request_id, f"Failed to persist result {request_id}: {e}") from e

        if existing is None:
            raise PersistenceFailure(request_id, f"Result {request_id} vanished after insert")
        logger.info("Result %s already persisted; returning existing record", request_id)
        return existing

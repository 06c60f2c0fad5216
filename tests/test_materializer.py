"""
Tests for result persistence.
"""
import os
import shutil
import sqlite3
import tempfile
from decimal import Decimal
from unittest.mock import patch

import pytest

from ai_reply_stream.core.errors import PersistenceFailure
from ai_reply_stream.core.materializer import ResultMaterializer, average_confidence
from ai_reply_stream.storage.db import get_connection
from ai_reply_stream.storage.models import VariantResult
from ai_reply_stream.storage.repository import fetch_result, initialize_schema

VARIANTS = [
    VariantResult(index=1, state="complete", content="Hi!", tone="casual", length="brief",
                  confidence=0.9, reasoning="r"),
    VariantResult(index=0, state="complete", content="Hello.", tone="professional",
                  length="standard", confidence=0.8, reasoning="r"),
    VariantResult(index=2, state="failed", content="", error="boom"),
]


class TestResultMaterializer:
    """Test idempotent history writes."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.materializer = ResultMaterializer("scripted:gpt-4", self.db_path)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _persist(self, request_id="req_1", cost=Decimal("0.0123")):
        return self.materializer.persist(
            request_id=request_id,
            account_id="acct",
            message="Can you send the report?",
            context={"urgency": "standard"},
            variant_results=VARIANTS,
            cost=cost,
        )

    def test_persist_writes_record(self):
        result = self._persist()

        assert [v.index for v in result.variants] == [0, 1, 2]
        assert result.provider == "scripted:gpt-4"
        assert result.estimated_cost == pytest.approx(0.0123)
        assert result.confidence_score == pytest.approx(0.85)
        assert len(result.completed_variants) == 2
        assert fetch_result("req_1", self.db_path) == result

    def test_second_call_returns_existing_record(self):
        first = self._persist()
        second = self._persist(cost=Decimal("9.99"))

        assert second == first
        conn = get_connection(self.db_path)
        try:
            count = conn.execute(
                "SELECT COUNT(*) FROM response_history WHERE request_id = 'req_1'"
            ).fetchone()[0]
        finally:
            conn.close()
        assert count == 1

    def test_negative_cost_rejected(self):
        with pytest.raises(ValueError, match="cost"):
            self._persist(cost=Decimal("-0.01"))

    def test_storage_error_becomes_persistence_failure(self):
        with patch("ai_reply_stream.core.materializer.insert_result",
                   side_effect=sqlite3.OperationalError("disk I/O error")):
            with pytest.raises(PersistenceFailure) as excinfo:
                self._persist()
        assert excinfo.value.request_id == "req_1"
        assert "disk I/O error" in str(excinfo.value)

    def test_average_confidence_ignores_failed(self):
        assert average_confidence(VARIANTS) == pytest.approx(0.85)
        assert average_confidence([VARIANTS[2]]) is None

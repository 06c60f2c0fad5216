"""
Data models for storage layer.

Defines the quota record and the durable response-history record.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class QuotaState:
    """Usage of one account against its monthly allowance.

    After a successful admission usage_count never exceeds monthly_allowance.
    """
    account_id: str
    usage_count: int
    monthly_allowance: int
    period_reset_at: datetime

    @property
    def remaining(self) -> int:
        return max(self.monthly_allowance - self.usage_count, 0)


@dataclass(frozen=True)
class VariantResult:
    """Final state of one variant as recorded in history."""
    index: int
    state: str
    content: str
    tone: Optional[str] = None
    length: Optional[str] = None
    confidence: Optional[float] = None
    reasoning: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "state": self.state,
            "content": self.content,
            "tone": self.tone,
            "length": self.length,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VariantResult":
        return cls(
            index=int(data["index"]),
            state=str(data["state"]),
            content=str(data.get("content") or ""),
            tone=data.get("tone"),
            length=data.get("length"),
            confidence=data.get("confidence"),
            reasoning=data.get("reasoning"),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class PersistedResult:
    """Immutable record of one finished generation request.

    Written once, at stream end, keyed by request_id. Either the whole
    record exists or none of it does.
    """
    request_id: str
    account_id: str
    original_message: str
    context: Dict[str, Any]
    variants: List[VariantResult]
    provider: str
    estimated_cost: float
    created_at: datetime
    confidence_score: Optional[float] = None

    @property
    def completed_variants(self) -> List[VariantResult]:
        return [v for v in self.variants if v.state == "complete"]

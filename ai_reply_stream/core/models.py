"""
Request and variant models for one generation request.

A GenerationRequest is immutable once admitted. VariantStream instances
belong to a single request for its whole lifetime and are never shared.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ai_reply_stream.storage.models import VariantResult

MIN_MESSAGE_LENGTH = 10
MAX_MESSAGE_LENGTH = 2000


class Urgency(Enum):
    IMMEDIATE = "immediate"
    STANDARD = "standard"
    NON_URGENT = "non_urgent"


class MessageType(Enum):
    UPDATE = "update"
    QUESTION = "question"
    CONCERN = "concern"
    DELIVERABLE = "deliverable"
    PAYMENT = "payment"
    SCOPE_CHANGE = "scope_change"


class RelationshipStage(Enum):
    NEW = "new"
    ESTABLISHED = "established"
    DIFFICULT = "difficult"
    LONG_TERM = "long_term"


class ProjectPhase(Enum):
    DISCOVERY = "discovery"
    ACTIVE = "active"
    COMPLETION = "completion"
    MAINTENANCE = "maintenance"
    ON_HOLD = "on_hold"


def _parse_enum(enum_cls, value: Any, name: str):
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str):
        raise ValueError(f"'{name}' must be a string")
    try:
        return enum_cls(value.lower())
    except ValueError:
        valid = [member.value for member in enum_cls]
        raise ValueError(f"'{name}' must be one of: {valid}")


@dataclass(frozen=True)
class ContextTags:
    """Closed-enumeration context for a message, plus optional free text."""
    urgency: Urgency
    message_type: MessageType
    relationship_stage: RelationshipStage
    project_phase: ProjectPhase
    client_name: Optional[str] = None
    user_name: Optional[str] = None
    custom_notes: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContextTags":
        """Parse and validate context tags.

        Raises:
            ValueError: If a required tag is missing or not a known value
        """
        allowed_keys = {
            "urgency", "message_type", "relationship_stage", "project_phase",
            "client_name", "user_name", "custom_notes",
        }
        unknown_keys = set(data.keys()) - allowed_keys
        if unknown_keys:
            raise ValueError(f"Unknown context keys: {unknown_keys}")
        for key in ("urgency", "message_type", "relationship_stage", "project_phase"):
            if key not in data:
                raise ValueError(f"Missing required context tag '{key}'")

        return cls(
            urgency=_parse_enum(Urgency, data["urgency"], "urgency"),
            message_type=_parse_enum(MessageType, data["message_type"], "message_type"),
            relationship_stage=_parse_enum(
                RelationshipStage, data["relationship_stage"], "relationship_stage"
            ),
            project_phase=_parse_enum(ProjectPhase, data["project_phase"], "project_phase"),
            client_name=data.get("client_name") or None,
            user_name=data.get("user_name") or None,
            custom_notes=data.get("custom_notes") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "urgency": self.urgency.value,
            "message_type": self.message_type.value,
            "relationship_stage": self.relationship_stage.value,
            "project_phase": self.project_phase.value,
        }
        for key in ("client_name", "user_name", "custom_notes"):
            value = getattr(self, key)
            if value:
                data[key] = value
        return data


@dataclass(frozen=True)
class GenerationRequest:
    """One admitted request for N reply variants."""
    request_id: str
    account_id: str
    message: str
    context: ContextTags
    variant_count: int

    @classmethod
    def create(
        cls,
        account_id: str,
        message: str,
        context: Any,
        variant_count: int = 3,
        request_id: Optional[str] = None,
        min_length: int = MIN_MESSAGE_LENGTH,
        max_length: int = MAX_MESSAGE_LENGTH
    ) -> "GenerationRequest":
        """Validate inputs and build a request.

        Raises:
            ValueError: If any input is out of bounds
        """
        if not account_id or not account_id.strip():
            raise ValueError("account_id is required and cannot be empty")
        if not isinstance(message, str):
            raise ValueError("message must be a string")
        message = message.strip()
        if len(message) < min_length:
            raise ValueError(f"message must be at least {min_length} characters")
        if len(message) > max_length:
            raise ValueError(f"message must be at most {max_length} characters")
        if variant_count < 1:
            raise ValueError("variant_count must be >= 1")
        if not isinstance(context, ContextTags):
            context = ContextTags.from_dict(context)

        return cls(
            request_id=request_id or uuid.uuid4().hex,
            account_id=account_id,
            message=message,
            context=context,
            variant_count=variant_count,
        )


@dataclass(frozen=True)
class VariantMetadata:
    """Metadata attached to a variant when it completes."""
    tone: str
    length: str
    confidence: float
    reasoning: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tone": self.tone,
            "length": self.length,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VariantMetadata":
        """Parse metadata from a decoded frame.

        Raises:
            ValueError: If a field has the wrong type
        """
        if not isinstance(data, dict):
            raise ValueError("metadata must be an object")
        for key in ("tone", "length", "reasoning"):
            value = data.get(key)
            if value is not None and not isinstance(value, str):
                raise ValueError(f"metadata '{key}' must be a string")
        confidence = data.get("confidence", 0.8)
        # bool is an int subclass; reject it for the score
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            raise ValueError("metadata 'confidence' must be a number")

        return cls(
            tone=data.get("tone") or "professional",
            length=data.get("length") or "standard",
            confidence=float(confidence),
            reasoning=data.get("reasoning") or "",
        )


class VariantState(Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (VariantState.COMPLETE, VariantState.FAILED)


@dataclass
class VariantStream:
    """Lifecycle and accumulated text of one variant within a request.

    pending -> streaming -> complete | failed. Metadata is attached only
    on completion.
    """
    index: int
    state: VariantState = VariantState.PENDING
    chunks: List[str] = field(default_factory=list)
    metadata: Optional[VariantMetadata] = None
    error: Optional[str] = None

    @property
    def text(self) -> str:
        return "".join(self.chunks)

    def begin(self) -> None:
        if self.state is not VariantState.PENDING:
            raise ValueError(f"variant {self.index} already started")
        self.state = VariantState.STREAMING

    def append(self, delta: str) -> None:
        if self.state is not VariantState.STREAMING:
            raise ValueError(f"variant {self.index} is not streaming")
        self.chunks.append(delta)

    def complete(self, metadata: VariantMetadata) -> None:
        if self.state is not VariantState.STREAMING:
            raise ValueError(f"variant {self.index} is not streaming")
        self.state = VariantState.COMPLETE
        self.metadata = metadata

    def fail(self, message: str) -> None:
        if self.state.is_terminal:
            raise ValueError(f"variant {self.index} already finished")
        self.state = VariantState.FAILED
        self.error = message

    def to_result(self) -> VariantResult:
        meta = self.metadata
        return VariantResult(
            index=self.index,
            state=self.state.value,
            content=self.text,
            tone=meta.tone if meta else None,
            length=meta.length if meta else None,
            confidence=meta.confidence if meta else None,
            reasoning=meta.reasoning if meta else None,
            error=self.error,
        )

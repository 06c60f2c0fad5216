"""
Error taxonomy for the generation pipeline.

Variant-scoped errors never abort a request; request-scoped errors
(admission, transport) are terminal for every variant.
"""

from enum import Enum
from typing import Optional


class DenialReason(Enum):
    """Why a quota reservation was refused."""
    LIMIT_EXCEEDED = "LimitExceeded"
    ACCOUNT_NOT_FOUND = "AccountNotFound"


class ReplyStreamError(Exception):
    """Base class for pipeline errors."""


class AdmissionDenied(ReplyStreamError):
    """Raised when a request is refused before any generation work starts."""
    def __init__(self, reason: DenialReason, message: Optional[str] = None):
        super().__init__(message or _DENIAL_MESSAGES[reason])
        self.reason = reason


_DENIAL_MESSAGES = {
    DenialReason.LIMIT_EXCEEDED: "Monthly usage limit exceeded",
    DenialReason.ACCOUNT_NOT_FOUND: "Account not found",
}


class VariantOpenFailure(ReplyStreamError):
    """A provider stream for one variant could not be opened."""
    def __init__(self, index: int, message: str):
        super().__init__(message)
        self.index = index


class VariantGenerationFailure(ReplyStreamError):
    """A provider stream for one variant failed after it was opened."""
    def __init__(self, index: int, message: str):
        super().__init__(message)
        self.index = index


class TransportInterruption(ReplyStreamError):
    """The outbound connection was closed by the far end."""


class PersistenceFailure(ReplyStreamError):
    """The result for a request could not be written to history."""
    def __init__(self, request_id: str, message: str):
        super().__init__(message)
        self.request_id = request_id

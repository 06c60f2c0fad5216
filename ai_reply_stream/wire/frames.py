"""
Frame model and encoder for the outbound stream.

Each frame is one Server-Sent-Events block: ``data: <json>`` followed by
a blank line. Compact JSON never contains a raw newline, so the block
terminator cannot appear inside a block.

Per variant index a consumer sees exactly one ``start``, zero or more
``content``, then exactly one of ``complete``/``error``. One ``done``
frame follows every per-variant terminal frame.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from ai_reply_stream.core.models import VariantMetadata

BLOCK_PREFIX = b"data: "
BLOCK_TERMINATOR = b"\n\n"


class FrameKind(Enum):
    START = "start"
    CONTENT = "content"
    COMPLETE = "complete"
    ERROR = "error"
    DONE = "done"


@dataclass(frozen=True)
class Frame:
    """One self-delimited unit on the wire.

    ``index`` is absent on ``done`` and on request-level ``error`` frames
    (admission denial).
    """
    kind: FrameKind
    index: Optional[int] = None
    content: Optional[str] = None
    metadata: Optional[VariantMetadata] = None
    error: Optional[str] = None
    code: Optional[str] = None
    request_id: Optional[str] = None
    persisted: Optional[bool] = None

    @property
    def is_terminal(self) -> bool:
        """True for the per-variant terminal kinds."""
        return self.index is not None and self.kind in (FrameKind.COMPLETE, FrameKind.ERROR)

    @classmethod
    def start(cls, index: int) -> "Frame":
        return cls(FrameKind.START, index=index)

    @classmethod
    def delta(cls, index: int, text: str) -> "Frame":
        return cls(FrameKind.CONTENT, index=index, content=text)

    @classmethod
    def complete(cls, index: int, metadata: VariantMetadata) -> "Frame":
        return cls(FrameKind.COMPLETE, index=index, metadata=metadata)

    @classmethod
    def failure(cls, index: Optional[int], message: str, code: Optional[str] = None) -> "Frame":
        return cls(FrameKind.ERROR, index=index, error=message, code=code)

    @classmethod
    def done(cls, request_id: Optional[str] = None, persisted: Optional[bool] = None) -> "Frame":
        return cls(FrameKind.DONE, request_id=request_id, persisted=persisted)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.kind.value}
        if self.index is not None:
            data["index"] = self.index
        if self.content is not None:
            data["content"] = self.content
        if self.metadata is not None:
            data["metadata"] = self.metadata.to_dict()
        if self.error is not None:
            data["error"] = self.error
        if self.code is not None:
            data["code"] = self.code
        if self.request_id is not None:
            data["request_id"] = self.request_id
        if self.persisted is not None:
            data["persisted"] = self.persisted
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Frame":
        """Build a frame from a decoded block.

        Raises:
            ValueError: If the block doesn't describe a well-formed frame
        """
        if not isinstance(data, dict):
            raise ValueError("frame must be a JSON object")
        try:
            kind = FrameKind(data.get("type"))
        except ValueError:
            raise ValueError(f"unknown frame type: {data.get('type')!r}")

        index = data.get("index")
        if index is not None and (
            not isinstance(index, int) or isinstance(index, bool) or index < 0
        ):
            raise ValueError(f"invalid variant index: {index!r}")
        if kind in (FrameKind.START, FrameKind.CONTENT, FrameKind.COMPLETE) and index is None:
            raise ValueError(f"{kind.value} frame requires an index")
        if kind is FrameKind.DONE and index is not None:
            raise ValueError("done frame must not carry an index")

        content = data.get("content")
        if kind is FrameKind.CONTENT and not isinstance(content, str):
            raise ValueError("content frame requires a text delta")

        metadata = None
        if kind is FrameKind.COMPLETE:
            raw = data.get("metadata")
            if not isinstance(raw, dict):
                raise ValueError("complete frame requires metadata")
            metadata = VariantMetadata.from_dict(raw)

        error = data.get("error")
        if kind is FrameKind.ERROR and not isinstance(error, str):
            raise ValueError("error frame requires a message")

        return cls(
            kind=kind,
            index=index,
            content=content if kind is FrameKind.CONTENT else None,
            metadata=metadata,
            error=error if kind is FrameKind.ERROR else None,
            code=data.get("code") if kind is FrameKind.ERROR else None,
            request_id=data.get("request_id") if kind is FrameKind.DONE else None,
            persisted=data.get("persisted") if kind is FrameKind.DONE else None,
        )


def encode_frame(frame: Frame) -> bytes:
    """Serialize one frame to a complete, terminated block."""
    payload = json.dumps(frame.to_dict(), ensure_ascii=False, separators=(",", ":"))
    return BLOCK_PREFIX + payload.encode("utf-8") + BLOCK_TERMINATOR

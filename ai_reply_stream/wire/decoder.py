"""
Consumer-side decoding and demultiplexing of the frame stream.

FrameDecoder turns arbitrarily chunked bytes back into frames; it keeps
no I/O of its own, so it can be driven from threads, coroutines or a
plain read loop. VariantDemultiplexer rebuilds per-variant text from the
interleaved frames.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .frames import BLOCK_PREFIX, BLOCK_TERMINATOR, Frame, FrameKind
from ai_reply_stream.core.models import VariantMetadata

logger = logging.getLogger(__name__)


class FrameDecoder:
    """Reassembles frames from a byte stream split at arbitrary points.

    Buffering is done on bytes, so a multi-byte UTF-8 character split
    across two reads is decoded correctly. Malformed blocks are dropped
    and decoding continues with the next one.
    """

    def __init__(self):
        self._buffer = bytearray()
        self.dropped = 0

    def feed(self, data: bytes) -> List[Frame]:
        """Append ``data`` and return every frame completed by it."""
        self._buffer.extend(data)
        frames = []
        while True:
            end = self._buffer.find(BLOCK_TERMINATOR)
            if end < 0:
                break
            block = bytes(self._buffer[:end])
            del self._buffer[:end + len(BLOCK_TERMINATOR)]
            frame = self._parse_block(block)
            if frame is not None:
                frames.append(frame)
        return frames

    @property
    def pending_bytes(self) -> int:
        """Size of the trailing partial block held for the next read."""
        return len(self._buffer)

    def _parse_block(self, block: bytes) -> Optional[Frame]:
        if not block.strip():
            return None
        try:
            if not block.startswith(BLOCK_PREFIX):
                raise ValueError("block is missing the data prefix")
            data = json.loads(block[len(BLOCK_PREFIX):].decode("utf-8"))
            return Frame.from_dict(data)
        except (ValueError, TypeError) as e:
            self.dropped += 1
            logger.debug("Dropping malformed frame block: %s", e)
            return None


@dataclass
class VariantBuffer:
    """Per-index accumulator on the consumer side."""
    index: int
    state: str = "pending"
    chunks: List[str] = field(default_factory=list)
    metadata: Optional[VariantMetadata] = None
    error: Optional[str] = None

    @property
    def text(self) -> str:
        return "".join(self.chunks)

    @property
    def is_finished(self) -> bool:
        return self.state in ("complete", "error")


class VariantDemultiplexer:
    """Routes frames to per-variant buffers, discarding protocol violations.

    Content before a ``start`` or after a terminal frame for the same
    index is a violation and is ignored, as is a second ``start`` or a
    terminal frame with no preceding ``start``.
    """

    def __init__(self, decoder: Optional[FrameDecoder] = None):
        self.decoder = decoder or FrameDecoder()
        self.variants: Dict[int, VariantBuffer] = {}
        self.request_error: Optional[str] = None
        self.error_code: Optional[str] = None
        self.done = False
        self.request_id: Optional[str] = None
        self.persisted: Optional[bool] = None
        self.violations = 0

    def expect(self, variant_count: int) -> None:
        """Pre-allocate pending buffers for the requested variants."""
        for index in range(variant_count):
            self.variants.setdefault(index, VariantBuffer(index=index))

    def feed(self, data: bytes) -> List[Frame]:
        """Decode ``data`` and apply every frame it completes."""
        frames = self.decoder.feed(data)
        for frame in frames:
            self.apply(frame)
        return frames

    def apply_all(self, frames: Iterable[Frame]) -> None:
        for frame in frames:
            self.apply(frame)

    def apply(self, frame: Frame) -> bool:
        """Apply one frame; returns False if it was discarded."""
        if self.done:
            return self._violation(frame, "frame after done")

        if frame.kind is FrameKind.DONE:
            self.done = True
            self.request_id = frame.request_id
            self.persisted = frame.persisted
            return True

        if frame.index is None:
            # Request-level error, e.g. admission denial.
            self.request_error = frame.error
            self.error_code = frame.code
            return True

        buffer = self.variants.get(frame.index)

        if frame.kind is FrameKind.START:
            if buffer is not None and buffer.state != "pending":
                return self._violation(frame, "duplicate start")
            self.variants[frame.index] = VariantBuffer(index=frame.index, state="streaming")
            return True

        if buffer is None or buffer.state != "streaming":
            return self._violation(frame, "not streaming")

        if frame.kind is FrameKind.CONTENT:
            buffer.chunks.append(frame.content or "")
        elif frame.kind is FrameKind.COMPLETE:
            buffer.state = "complete"
            buffer.metadata = frame.metadata
        elif frame.kind is FrameKind.ERROR:
            buffer.state = "error"
            buffer.error = frame.error
        return True

    def _violation(self, frame: Frame, why: str) -> bool:
        self.violations += 1
        logger.debug("Discarding %s frame for index %s: %s", frame.kind.value, frame.index, why)
        return False

    def text(self, index: int) -> str:
        buffer = self.variants.get(index)
        return buffer.text if buffer else ""

    def ordered(self) -> List[VariantBuffer]:
        return [self.variants[i] for i in sorted(self.variants)]

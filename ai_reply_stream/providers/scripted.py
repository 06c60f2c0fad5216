"""
Deterministic provider for offline runs and tests.

Each variant follows a VariantScript: the deltas to emit, and optionally
a failure on open, a failure part-way through, or a hold that never
completes until the handle is cancelled.
"""

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional

from .base import ProviderAdapter, VariantEvent, VariantHandle
from ai_reply_stream.core.errors import VariantGenerationFailure, VariantOpenFailure
from ai_reply_stream.core.models import VariantMetadata
from ai_reply_stream.core.prompts import extract_metadata, variant_style

_CANNED_REPLIES = {
    "professional": (
        "Hello, thank you for reaching out. I have reviewed your message and "
        "will follow up with a detailed update by the end of the day. "
        "Best regards"
    ),
    "casual": "Hi! Thanks for the note, I'm on it and will get back to you shortly. Thanks",
    "formal": (
        "Dear client, I appreciate your message and the context you have provided. "
        "I will review every point carefully and respond with a complete plan, "
        "including timelines and next steps, within one business day. Sincerely"
    ),
}


def split_words(text: str) -> List[str]:
    """Split text into word-sized deltas that join back to the original."""
    words = text.split(" ")
    return [word if i == len(words) - 1 else word + " " for i, word in enumerate(words)]


@dataclass
class VariantScript:
    deltas: List[str] = field(default_factory=list)
    fail_on_open: Optional[str] = None
    fail_after: Optional[int] = None
    error: str = "scripted provider failure"
    hold: bool = False
    metadata: Optional[VariantMetadata] = None


class ScriptedVariantHandle(VariantHandle):

    def __init__(self, index: int, script: VariantScript, delay: float):
        super().__init__(index)
        self.script = script
        self.delay = delay
        self.emitted = 0

    async def _events(self) -> AsyncIterator[VariantEvent]:
        script = self.script
        for position, delta in enumerate(script.deltas):
            if script.fail_after == position:
                raise VariantGenerationFailure(self.index, script.error)
            await asyncio.sleep(self.delay)
            self.emitted += 1
            yield delta
        if script.fail_after is not None and script.fail_after >= len(script.deltas):
            raise VariantGenerationFailure(self.index, script.error)
        if script.hold:
            await asyncio.Event().wait()
        yield script.metadata or extract_metadata("".join(script.deltas), self.index)


class ScriptedAdapter(ProviderAdapter):
    """Replays scripted variants; unscripted indices get a canned reply."""

    name = "scripted"

    def __init__(
        self,
        scripts: Optional[Dict[int, VariantScript]] = None,
        model: str = "gpt-4",
        delay: float = 0.0
    ):
        super().__init__(model)
        self.scripts = scripts or {}
        self.delay = delay
        self.handles: List[ScriptedVariantHandle] = []

    def script_for(self, index: int) -> VariantScript:
        if index in self.scripts:
            return self.scripts[index]
        return VariantScript(deltas=split_words(_CANNED_REPLIES[variant_style(index).tone]))

    async def open_variant(self, prompt: str, index: int) -> VariantHandle:
        script = self.script_for(index)
        if script.fail_on_open is not None:
            raise VariantOpenFailure(index, script.fail_on_open)
        handle = ScriptedVariantHandle(index, script, self.delay)
        self.handles.append(handle)
        return handle

"""
OpenAI streaming adapter.

Opens one chat-completion stream per variant. Each variant gets its own
style hint and a slightly higher temperature so the outputs differ.
"""

import logging
from typing import AsyncIterator, Optional

import openai
from openai import AsyncOpenAI

from .base import ProviderAdapter, VariantEvent, VariantHandle
from ai_reply_stream.core.errors import VariantGenerationFailure, VariantOpenFailure
from ai_reply_stream.core.prompts import SYSTEM_PROMPT, build_variant_prompt, extract_metadata

logger = logging.getLogger(__name__)

TEMPERATURE_STEP = 0.05


class OpenAIVariantHandle(VariantHandle):
    """Iterates one OpenAI chat-completion stream."""

    def __init__(self, index: int, stream):
        super().__init__(index)
        self._stream = stream

    async def _events(self) -> AsyncIterator[VariantEvent]:
        parts = []
        try:
            async for chunk in self._stream:
                if not getattr(chunk, "choices", None):
                    continue
                delta = getattr(chunk.choices[0], "delta", None)
                text = getattr(delta, "content", None) or ""
                if text:
                    parts.append(text)
                    yield text
        except openai.OpenAIError as e:
            raise VariantGenerationFailure(self.index, f"Provider stream failed: {e}") from e
        yield extract_metadata("".join(parts), self.index)

    async def _release(self) -> None:
        await self._stream.close()


class OpenAIAdapter(ProviderAdapter):
    """Provider adapter backed by the OpenAI async client.

    The API key and organization are read from the environment by the
    client itself.
    """

    name = "openai"

    def __init__(
        self,
        model: str,
        max_tokens: int = 500,
        base_temperature: float = 0.7,
        client: Optional[AsyncOpenAI] = None
    ):
        super().__init__(model)
        self.max_tokens = max_tokens
        self.base_temperature = base_temperature
        self.client = client or AsyncOpenAI()

    async def open_variant(self, prompt: str, index: int) -> VariantHandle:
        try:
            stream = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_variant_prompt(prompt, index)},
                ],
                temperature=self.base_temperature + index * TEMPERATURE_STEP,
                max_tokens=self.max_tokens,
                stream=True,
            )
        except openai.OpenAIError as e:
            raise VariantOpenFailure(index, f"Failed to start generation: {e}") from e
        logger.debug("Opened OpenAI stream for variant %d", index)
        return OpenAIVariantHandle(index, stream)

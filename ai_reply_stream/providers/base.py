"""
Provider adapter contract.

A VariantHandle is a lazy, finite, non-restartable async sequence of
text deltas that ends with one VariantMetadata value on success, or
raises on failure. Handles are independent: closing or failing one
never affects another.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Union

from ai_reply_stream.core.errors import VariantOpenFailure
from ai_reply_stream.core.models import VariantMetadata

logger = logging.getLogger(__name__)

VariantEvent = Union[str, VariantMetadata]


class VariantHandle(ABC):
    """One provider stream for one variant index."""

    def __init__(self, index: int):
        self.index = index
        self.closed = False
        self._iterated = False

    def __aiter__(self) -> AsyncIterator[VariantEvent]:
        if self._iterated:
            raise RuntimeError(f"variant {self.index} stream cannot be restarted")
        self._iterated = True
        return self._events()

    @abstractmethod
    def _events(self) -> AsyncIterator[VariantEvent]:
        """Yield text deltas, then exactly one VariantMetadata."""

    async def aclose(self) -> None:
        """Cancel the stream and release provider resources. Idempotent."""
        if self.closed:
            return
        self.closed = True
        await self._release()

    async def _release(self) -> None:
        pass


class ProviderAdapter(ABC):
    """Wraps a generation provider behind the handle contract."""

    name = "provider"

    def __init__(self, model: str):
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        self.model = model

    @property
    def provider_id(self) -> str:
        return f"{self.name}:{self.model}"

    @abstractmethod
    async def open_variant(self, prompt: str, index: int) -> VariantHandle:
        """Open the provider stream for one variant.

        Raises:
            VariantOpenFailure: If the stream could not be opened
        """

    async def open(
        self,
        prompt: str,
        variant_count: int
    ) -> List[Union[VariantHandle, VariantOpenFailure]]:
        """Open one handle per variant concurrently.

        A failure to open one index is returned in that index's slot
        rather than raised, so the other variants are unaffected. If the
        caller is cancelled while opening, handles already opened are
        closed before the cancellation propagates.
        """
        tasks = [
            asyncio.ensure_future(self.open_variant(prompt, index))
            for index in range(variant_count)
        ]
        try:
            results = await asyncio.gather(*tasks, return_exceptions=True)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.wait(tasks)
            await self._close_opened(tasks)
            raise
        handles: List[Union[VariantHandle, VariantOpenFailure]] = []
        for index, result in enumerate(results):
            if isinstance(result, VariantHandle):
                handles.append(result)
            elif isinstance(result, VariantOpenFailure):
                handles.append(result)
            elif isinstance(result, Exception):
                logger.warning("Failed to open variant %d: %s", index, result)
                handles.append(VariantOpenFailure(index, f"Failed to start generation: {result}"))
            else:
                raise result
        return handles

    async def _close_opened(self, tasks: List[asyncio.Future]) -> None:
        for task in tasks:
            if task.cancelled() or task.exception() is not None:
                continue
            handle = task.result()
            try:
                await handle.aclose()
            except Exception as e:
                logger.warning("Failed to close provider stream %d: %s", handle.index, e)

"""
Generation orchestration for one request.

Lifecycle: Admitting -> Dispatching -> Streaming -> Finalizing -> Closed.

Every variant is pumped by its own task into a bounded queue, so a slow
consumer blocks the producers instead of letting frames pile up. Frames
of different variants interleave freely; frames of one variant keep
their order because each pump writes them sequentially.

If the consumer stops reading before the result is written (the
generator is closed or its task cancelled, Finalizing included), every
pump is cancelled and every provider handle closed. Variants that
already finished are persisted together with an interrupted marker for
the rest; if none finished, nothing is written. The quota unit taken at
admission is never refunded.
"""

import asyncio
import contextlib
import logging
from typing import AsyncIterator, List, Optional, Protocol, Union

from .errors import (
    AdmissionDenied,
    PersistenceFailure,
    TransportInterruption,
    VariantGenerationFailure,
    VariantOpenFailure,
)
from .materializer import ResultMaterializer
from .models import (
    MAX_MESSAGE_LENGTH,
    MIN_MESSAGE_LENGTH,
    GenerationRequest,
    VariantMetadata,
    VariantStream,
)
from .pricing import PRICING_TABLE, CostMeter
from .prompts import build_prompt, build_variant_prompt
from .quota import QuotaLedger
from ai_reply_stream.config.loader import ServiceConfig
from ai_reply_stream.providers import ProviderAdapter, VariantHandle, get_adapter
from ai_reply_stream.wire.frames import Frame, FrameKind, encode_frame

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Generation interrupted before completion"


class FrameTransport(Protocol):
    """Outbound connection. ``write`` blocks while the far end is slow."""

    async def write(self, data: bytes) -> None:
        ...


class GenerationOrchestrator:
    """Owns the lifecycle of generation requests against one provider."""

    def __init__(
        self,
        ledger: QuotaLedger,
        adapter: ProviderAdapter,
        materializer: ResultMaterializer,
        variant_count: int = 3,
        max_in_flight_frames: int = 8,
        min_message_length: int = MIN_MESSAGE_LENGTH,
        max_message_length: int = MAX_MESSAGE_LENGTH
    ):
        if max_in_flight_frames <= 0:
            raise ValueError("max_in_flight_frames must be > 0")
        PRICING_TABLE.get_pricing(adapter.model)
        self.ledger = ledger
        self.adapter = adapter
        self.materializer = materializer
        self.variant_count = variant_count
        self.max_in_flight_frames = max_in_flight_frames
        self.min_message_length = min_message_length
        self.max_message_length = max_message_length

    @classmethod
    def from_config(
        cls,
        config: ServiceConfig,
        adapter: Optional[ProviderAdapter] = None
    ) -> "GenerationOrchestrator":
        """Wire up ledger, adapter and materializer from configuration."""
        if adapter is None:
            adapter = get_adapter(
                config.provider.name,
                model=config.provider.model,
                max_tokens=config.provider.max_tokens,
                base_temperature=config.provider.base_temperature,
            )
        db_path = config.storage.db_path
        return cls(
            ledger=QuotaLedger(db_path),
            adapter=adapter,
            materializer=ResultMaterializer(adapter.provider_id, db_path),
            variant_count=config.generation.variant_count,
            max_in_flight_frames=config.generation.max_in_flight_frames,
            min_message_length=config.generation.min_message_length,
            max_message_length=config.generation.max_message_length,
        )

    def build_request(
        self,
        account_id: str,
        message: str,
        context_tags,
        variant_count: Optional[int] = None,
        request_id: Optional[str] = None
    ) -> GenerationRequest:
        """Validate raw inputs into a request.

        Raises:
            ValueError: If any input is invalid
        """
        return GenerationRequest.create(
            account_id=account_id,
            message=message,
            context=context_tags,
            variant_count=self.variant_count if variant_count is None else variant_count,
            request_id=request_id,
            min_length=self.min_message_length,
            max_length=self.max_message_length,
        )

    def admit(
        self,
        account_id: str,
        message: str,
        context_tags,
        variant_count: Optional[int] = None,
        request_id: Optional[str] = None
    ) -> AsyncIterator[Frame]:
        """Request-admission entry point; returns the frame stream.

        Raises:
            ValueError: If the inputs are invalid (before any frame is produced)
        """
        request = self.build_request(account_id, message, context_tags, variant_count, request_id)
        return self.stream(request)

    async def stream(self, request: GenerationRequest) -> AsyncIterator[Frame]:
        """Run one request, yielding frames in emission order."""
        # Admitting
        reservation = await asyncio.to_thread(self.ledger.reserve, request.account_id)
        if not reservation.allowed:
            denial = AdmissionDenied(reservation.reason)
            yield Frame.failure(None, str(denial), code=denial.reason.value)
            yield Frame.done(request.request_id, persisted=False)
            return

        count = request.variant_count
        variants = [VariantStream(index) for index in range(count)]
        meter = CostMeter(self.adapter.model)
        prompt = build_prompt(request)
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_in_flight_frames)
        handles: List[Union[VariantHandle, VariantOpenFailure]] = []
        tasks: List[asyncio.Task] = []
        materialized = False

        try:
            # Dispatching
            handles = await self.adapter.open(prompt, count)
            opened = [h for h in handles if isinstance(h, VariantHandle)]
            for handle in opened:
                meter.add_prompt(build_variant_prompt(prompt, handle.index))
            if not opened:
                logger.warning(
                    "No provider stream could be opened for request %s; quota is not refunded",
                    request.request_id
                )
            tasks = [
                asyncio.create_task(self._pump(index, handle, queue))
                for index, handle in enumerate(handles)
            ]

            # Streaming
            remaining = count
            while remaining:
                frame = await queue.get()
                self._apply(variants, meter, frame)
                if frame.is_terminal:
                    remaining -= 1
                yield frame

            # Finalizing
            await asyncio.gather(*tasks)
            await self._close_handles(handles)
            persisted = await asyncio.to_thread(self._materialize, request, variants, meter)
            materialized = True
            yield Frame.done(request.request_id, persisted=persisted)
        finally:
            if not materialized:
                await self._abandon(request, variants, meter, tasks, handles)

    async def serve(self, request: GenerationRequest, transport: FrameTransport) -> bool:
        """Drive a request's frames into a transport.

        Returns:
            True if the stream ran to ``done``, False if the far end went away
        """
        async with contextlib.aclosing(self.stream(request)) as frames:
            async for frame in frames:
                try:
                    await transport.write(encode_frame(frame))
                except (ConnectionError, TransportInterruption) as e:
                    logger.info("Connection closed during request %s: %s", request.request_id, e)
                    return False
        return True

    async def _pump(
        self,
        index: int,
        handle: Union[VariantHandle, VariantOpenFailure],
        queue: asyncio.Queue
    ) -> None:
        started = False

        async def emit(frame: Frame) -> None:
            nonlocal started
            if not started:
                started = True
                await queue.put(Frame.start(index))
            await queue.put(frame)

        if isinstance(handle, VariantOpenFailure):
            await emit(Frame.failure(index, str(handle), code="VariantOpenFailure"))
            return

        try:
            async with contextlib.aclosing(handle.__aiter__()) as events:
                async for event in events:
                    if isinstance(event, VariantMetadata):
                        await emit(Frame.complete(index, event))
                        return
                    if event:
                        await emit(Frame.delta(index, event))
            raise VariantGenerationFailure(index, "Provider stream ended without completing")
        except Exception as e:
            if isinstance(e, VariantGenerationFailure):
                message = str(e)
            else:
                message = f"Generation failed: {e}"
            logger.warning("Variant %d failed: %s", index, message)
            await emit(Frame.failure(index, message, code="VariantGenerationFailure"))

    @staticmethod
    def _apply(variants: List[VariantStream], meter: CostMeter, frame: Frame) -> None:
        variant = variants[frame.index]
        if frame.kind is FrameKind.START:
            variant.begin()
        elif frame.kind is FrameKind.CONTENT:
            variant.append(frame.content)
            meter.add_completion(frame.content)
        elif frame.kind is FrameKind.COMPLETE:
            variant.complete(frame.metadata)
        elif frame.kind is FrameKind.ERROR:
            variant.fail(frame.error)

    async def _close_handles(self, handles) -> None:
        opened = [h for h in handles if isinstance(h, VariantHandle)]
        results = await asyncio.gather(*(h.aclose() for h in opened), return_exceptions=True)
        for handle, result in zip(opened, results):
            if isinstance(result, Exception):
                logger.warning("Failed to close provider stream %d: %s", handle.index, result)

    async def _abandon(self, request, variants, meter, tasks, handles) -> None:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self._close_handles(handles)

        if not any(v.state.is_terminal for v in variants):
            logger.info("Request %s abandoned before any variant finished; nothing persisted",
                        request.request_id)
            return
        for variant in variants:
            if not variant.state.is_terminal:
                variant.fail(INTERRUPTED_MESSAGE)
        logger.info("Request %s abandoned; persisting partial result", request.request_id)
        self._materialize(request, variants, meter)

    def _materialize(self, request, variants, meter) -> bool:
        try:
            self.materializer.persist(
                request_id=request.request_id,
                account_id=request.account_id,
                message=request.message,
                context=request.context.to_dict(),
                variant_results=[v.to_result() for v in variants],
                cost=meter.value,
            )
            return True
        except PersistenceFailure as e:
            logger.error("Result for request %s not persisted, needs reconciliation: %s",
                         request.request_id, e)
            return False

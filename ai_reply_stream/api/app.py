"""
HTTP surface for the generation pipeline.

Authentication happens upstream; the account id arrives in the trusted
``X-Account-Id`` header and is used as-is.
"""

import contextlib
import logging
from dataclasses import asdict
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Header, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from ai_reply_stream.core.models import MessageType, ProjectPhase, RelationshipStage, Urgency
from ai_reply_stream.core.orchestrator import GenerationOrchestrator
from ai_reply_stream.storage.repository import fetch_result
from ai_reply_stream.wire.frames import Frame, encode_frame

logger = logging.getLogger(__name__)

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "X-Accel-Buffering": "no",
}


class ContextModel(BaseModel):
    urgency: Urgency
    message_type: MessageType
    relationship_stage: RelationshipStage
    project_phase: ProjectPhase
    client_name: Optional[str] = None
    user_name: Optional[str] = None
    custom_notes: Optional[str] = None


class StreamRequestModel(BaseModel):
    original_message: str
    context: ContextModel
    request_id: Optional[str] = None


async def encode_stream(frames: AsyncIterator[Frame]) -> AsyncIterator[bytes]:
    """Encode frames for the wire, closing the source when the client goes away."""
    async with contextlib.aclosing(frames) as source:
        async for frame in source:
            yield encode_frame(frame)


def create_app(orchestrator: GenerationOrchestrator) -> FastAPI:
    app = FastAPI(title="ai-reply-stream")

    @app.post("/responses/stream")
    async def stream_responses(body: StreamRequestModel, x_account_id: str = Header(...)):
        try:
            request = orchestrator.build_request(
                account_id=x_account_id,
                message=body.original_message,
                context_tags=body.context.model_dump(exclude_none=True),
                request_id=body.request_id,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        logger.info("Streaming request %s for account %s", request.request_id, request.account_id)
        return StreamingResponse(
            encode_stream(orchestrator.stream(request)),
            media_type="text/event-stream",
            headers=STREAM_HEADERS,
        )

    @app.get("/responses/{request_id}")
    async def get_response(request_id: str):
        result = fetch_result(request_id, orchestrator.materializer.db_path)
        if result is None:
            raise HTTPException(status_code=404, detail="Response not found")
        return asdict(result)

    return app

# api/chat.py
"""
Chat API Endpoints

- POST   /api/ai/chat              one turn, JSON envelope
- GET    /api/ai/chat/stream       one turn as Server-Sent Events
- DELETE /api/ai/chat/{sessionId}  end a conversation (idempotent)
- GET    /api/ai/chat/health       feature and provider status
- GET    /api/ai/chat/quota        today's usage, nothing consumed
- GET    /api/ai/chat/metrics      telemetry snapshot
"""

import asyncio
from typing import Any, Dict, Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from loguru import logger

from concierge import __version__
from concierge.errors import ConciergeDisabledError
from concierge.interfaces.quota_manager import quota_subject
from concierge.schemas import ChatRequest, ChatResponse, ErrorResponse, HealthResponse, QuotaStatus


router = APIRouter(prefix="/api/ai/chat", tags=["chat"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    500: {"model": ChatResponse},
    503: {"model": ErrorResponse},
}


def get_services(request: Request):
    return request.app.state.services


def client_host(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


# ============================================
# Turns
# ============================================

@router.post("", response_model=ChatResponse, responses=ERROR_RESPONSES)
async def chat(body: ChatRequest, request: Request):
    """
    Process one chat message

    Returns:
        ChatResponse: reasoning, recommendations, alternatives and follow-ups.
        An internal failure still returns the envelope, with status 500 and
        code INTERNAL_ERROR.
    """
    services = get_services(request)
    result = await services.orchestrator.handle_turn(
        body.message,
        session_id=body.session_id,
        profile_id=body.profile_id,
        client_host=client_host(request),
    )
    response = result.to_response()
    if result.code:
        return JSONResponse(status_code=500, content=response.model_dump(mode="json", by_alias=True))
    return response


@router.get("/stream")
async def chat_stream(
    request: Request,
    message: str = Query(""),
    session: Optional[str] = Query(None),
    profile_id: Optional[str] = Query(None, alias="profileId"),
):
    """
    Stream one turn as `data: {"type": ..., "data": ...}` events.
    The turn is persisted only after the last recommendation event went out;
    a client disconnect before then cancels it and nothing is saved.
    """
    services = get_services(request)
    cancel = asyncio.Event()

    async def event_generator():
        events = services.orchestrator.stream_turn(
            message, session_id=session, profile_id=profile_id,
            client_host=client_host(request), cancel=cancel,
        )
        try:
            async for event in events:
                if await request.is_disconnected():
                    logger.info("Stream client disconnected")
                    cancel.set()
                    break
                yield event.to_sse()
        finally:
            cancel.set()
            await events.aclose()

    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=SSE_HEADERS)


# ============================================
# Session Management
# ============================================

@router.delete("/{session_id}")
async def end_session(session_id: str, request: Request) -> Dict[str, Any]:
    """End a conversation; unknown ids succeed too"""
    services = get_services(request)
    await services.sessions.end_session(session_id)
    return {"success": True, "sessionId": session_id}


# ============================================
# Status
# ============================================

@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    config = get_services(request).config
    if not config.AI_CONCIERGE_ENABLED:
        status = "disabled"
    elif not config.llm_configured:
        status = "degraded"
    else:
        status = "ready"
    return HealthResponse(
        enabled=config.AI_CONCIERGE_ENABLED,
        status=status,
        llm_provider=config.LLM_PROVIDER if config.llm_configured else "none",
        version=__version__,
    )


@router.get("/quota", response_model=QuotaStatus, responses={503: {"model": ErrorResponse}})
async def quota(request: Request, profile_id: Optional[str] = Query(None, alias="profileId")):
    """Current allowance for the caller without consuming it"""
    services = get_services(request)
    if not services.config.AI_CONCIERGE_ENABLED:
        raise ConciergeDisabledError()
    tier = await services.orchestrator.resolve_tier(profile_id)
    return await services.quotas.check_quota(quota_subject(profile_id, client_host(request)), tier)


@router.get("/metrics")
async def metrics(request: Request) -> Dict[str, Any]:
    return get_services(request).telemetry.snapshot()

"""Session capture endpoints."""
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from sessionreplay.api.deps import get_services
from sessionreplay.container import ReplayServices
from sessionreplay.schemas.replay import error_responses
from sessionreplay.schemas.session import (
    RecordingUploadResponse,
    SessionCreateResponse,
    SessionSaveRequest,
    SessionSaveResponse,
)
from sessionreplay.utils.exceptions import AppException, internal_error, to_http_exception
from sessionreplay.utils.hashing import generate_session_id
from sessionreplay.utils.logger import logger
from sessionreplay.utils.url import decode_session_id
from sessionreplay.utils.video_queue import queue_video_render

router = APIRouter(prefix="/api", tags=["sessions"])


@router.post(
    "/sessions",
    response_model=SessionSaveResponse,
    responses=error_responses(400, 500),
)
async def save_session(
    request: SessionSaveRequest,
    services: ReplayServices = Depends(get_services),
) -> SessionSaveResponse:
    """
    Append a batch of events to a session.

    The SDK posts a batch every few seconds; the first batch for an unknown
    session ID creates it. ``metadata.isComplete`` marks the recording
    finished and, when ``render_on_complete`` is enabled, queues a render.

    Args:
        request: Session ID, event batch and metadata patch
        services: Application services

    Returns:
        Save response with the number of events received
    """
    try:
        await run_in_threadpool(
            services.store.create_or_append,
            request.sessionId,
            request.events,
            request.metadata,
        )
    except AppException as e:
        logger.warning(f"[SESSIONS] Rejected batch for session {request.sessionId}: {e.kind}: {e.message}")
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to save session {request.sessionId}: {e}", exc_info=True)
        raise internal_error("save session", e)

    video_queued = False
    if request.metadata and request.metadata.get("isComplete") and services.settings.render_on_complete:
        video_queued = await queue_video_render(request.sessionId)

    return SessionSaveResponse(
        success=True,
        sessionId=request.sessionId,
        eventsReceived=len(request.events),
        videoJobQueued=video_queued,
    )


@router.post(
    "/sessions/new",
    response_model=SessionCreateResponse,
    responses=error_responses(400, 500),
)
async def create_session(
    metadata: Dict[str, Any] = Body(...),
    services: ReplayServices = Depends(get_services),
) -> SessionCreateResponse:
    """Generate a session ID and persist an empty session for it."""
    session_id = generate_session_id(metadata)
    try:
        await run_in_threadpool(services.store.create_or_append, session_id, [], metadata)
    except AppException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to create session: {e}", exc_info=True)
        raise internal_error("create session", e)

    logger.info(f"[SESSIONS] Created session {session_id}")
    return SessionCreateResponse(sessionId=session_id)


@router.put(
    "/sessions/{session_id}/recording",
    response_model=RecordingUploadResponse,
    responses=error_responses(400, 500),
)
async def upload_recording(
    session_id: str,
    request: Request,
    services: ReplayServices = Depends(get_services),
) -> RecordingUploadResponse:
    """Store the raw screen recording (WebM body) uploaded by the SDK."""
    decoded_session_id = decode_session_id(session_id)
    data = await request.body()
    if not data:
        raise HTTPException(status_code=400, detail={"kind": "InvalidSessionData", "message": "Empty recording"})

    try:
        await run_in_threadpool(services.artifacts.save_recording, decoded_session_id, data)
    except AppException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to store recording for {decoded_session_id}: {e}", exc_info=True)
        raise internal_error("store recording", e)

    return RecordingUploadResponse(success=True, sizeBytes=len(data))

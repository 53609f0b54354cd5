"""Replay endpoints: listing, raw events and rendered artifacts."""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from starlette.concurrency import run_in_threadpool

from sessionreplay.api.deps import get_services
from sessionreplay.container import ReplayServices
from sessionreplay.models.session import SessionSummary
from sessionreplay.schemas.replay import ArtifactUrlResponse, error_responses
from sessionreplay.utils.exceptions import AppException, internal_error, to_http_exception
from sessionreplay.utils.logger import logger
from sessionreplay.utils.url import decode_session_id

router = APIRouter(prefix="/api", tags=["replays"])


@router.get("/replays", response_model=List[SessionSummary], responses=error_responses(500))
async def list_replays(
    status: Optional[str] = Query(None, description="Only sessions with this status"),
    url: Optional[str] = Query(None, description="Only sessions whose URL contains this text"),
    limit: Optional[int] = Query(None, ge=0, le=1000),
    services: ReplayServices = Depends(get_services),
) -> List[SessionSummary]:
    """List stored sessions, newest first."""
    try:
        return await run_in_threadpool(services.directory.list, status, url, limit)
    except Exception as e:
        logger.error(f"Failed to list replays: {e}", exc_info=True)
        raise internal_error("list replays", e)


@router.get("/replays/{session_id}", responses=error_responses(400, 404, 500))
async def get_replay(
    session_id: str,
    services: ReplayServices = Depends(get_services),
) -> Dict[str, Any]:
    """Raw session document for the in-browser player, plus ``hasRecording``."""
    decoded_session_id = decode_session_id(session_id)
    try:
        return await run_in_threadpool(services.artifacts.get_raw_replay, decoded_session_id)
    except AppException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to load replay {decoded_session_id}: {e}", exc_info=True)
        raise internal_error("load replay", e)


@router.get(
    "/replays/{session_id}/video",
    response_model=ArtifactUrlResponse,
    responses=error_responses(400, 404, 500, 503),
)
async def get_replay_video(
    session_id: str,
    services: ReplayServices = Depends(get_services),
) -> ArtifactUrlResponse:
    """
    URL of the rendered MP4, rendering it first if needed.

    Transient renderer problems answer 503 with ``Retry-After``.
    """
    decoded_session_id = decode_session_id(session_id)
    try:
        url = await services.artifacts.get_video_url(decoded_session_id)
    except AppException as e:
        logger.warning(f"[REPLAYS] Video for {decoded_session_id} unavailable: {e.kind}: {e.message}")
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to render video for {decoded_session_id}: {e}", exc_info=True)
        raise internal_error("render video", e)
    return ArtifactUrlResponse(sessionId=decoded_session_id, url=url)


@router.get(
    "/replays/{session_id}/thumbnail",
    response_model=ArtifactUrlResponse,
    responses=error_responses(400, 404, 500, 503),
)
async def get_replay_thumbnail(
    session_id: str,
    services: ReplayServices = Depends(get_services),
) -> ArtifactUrlResponse:
    """URL of the session thumbnail, rendering it first if needed."""
    decoded_session_id = decode_session_id(session_id)
    try:
        url = await services.artifacts.get_thumbnail_url(decoded_session_id)
    except AppException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to render thumbnail for {decoded_session_id}: {e}", exc_info=True)
        raise internal_error("render thumbnail", e)
    return ArtifactUrlResponse(sessionId=decoded_session_id, url=url)


@router.get(
    "/replays/{session_id}/recording",
    response_model=ArtifactUrlResponse,
    responses=error_responses(400, 404),
)
async def get_replay_recording(
    session_id: str,
    services: ReplayServices = Depends(get_services),
) -> ArtifactUrlResponse:
    """URL of the raw screen recording uploaded by the SDK."""
    decoded_session_id = decode_session_id(session_id)
    try:
        url = services.artifacts.get_recording_url(decoded_session_id)
    except AppException as e:
        raise to_http_exception(e)
    return ArtifactUrlResponse(sessionId=decoded_session_id, url=url)

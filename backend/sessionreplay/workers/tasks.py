"""ARQ background tasks for video generation."""
from typing import Any, Dict

from arq import Retry

from sessionreplay.constants import SessionStatus
from sessionreplay.utils.exceptions import AppException, RendererUnavailable
from sessionreplay.utils.logger import logger


async def render_session_video(ctx: Dict[str, Any], session_id: str) -> Dict[str, Any]:
    """
    Generate the video for a completed session.

    Args:
        ctx: ARQ context, holding ``services`` built on startup
        session_id: The session to render

    Returns:
        Dict with success status and details
    """
    services = ctx["services"]

    try:
        session = services.store.read(session_id)
    except AppException as e:
        return {"success": False, "error": e.message, "kind": e.kind}

    if session.metadata.status != SessionStatus.COMPLETE:
        return {
            "success": False,
            "error": f"Session status is {session.metadata.status}, not eligible for video generation",
        }

    try:
        result = await services.pipeline.render_video(session)
    except RendererUnavailable as e:
        # Let ARQ re-run the job later, up to max_tries
        logger.warning(f"[WORKER] Renderer unavailable for session {session_id}, retrying in {e.retry_after}s")
        raise Retry(defer=e.retry_after) from e
    except AppException as e:
        logger.error(f"[WORKER] Video generation failed for session {session_id}: {e.message}")
        return {"success": False, "error": e.message, "kind": e.kind}

    return {
        "success": True,
        "session_id": session_id,
        "video_path": str(result.path),
        "cached": result.cached,
        "duration_ms": result.duration_ms,
        "size_bytes": result.size_bytes,
    }


async def cleanup_render_workdir(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Remove abandoned render scratch directories."""
    removed = ctx["services"].pipeline.cleanup_work_dir()
    return {"success": True, "removed": removed}

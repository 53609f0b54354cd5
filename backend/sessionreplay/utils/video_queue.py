"""Video generation queue utilities."""
from arq import create_pool

from sessionreplay.utils.logger import logger
from sessionreplay.workers.redis_config import redis_settings


async def queue_video_render(session_id: str) -> bool:
    """
    Queue a video generation job for the session.

    Args:
        session_id: The session ID to generate video for

    Returns:
        True if job was queued successfully, False otherwise
    """
    try:
        redis = await create_pool(redis_settings)
        await redis.enqueue_job("render_session_video", session_id, _job_id=f"render:{session_id}")
        await redis.close()
        return True
    except Exception as e:
        logger.error(f"Failed to queue video generation for session {session_id}: {e}", exc_info=True)
        return False

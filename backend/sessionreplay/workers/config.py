"""ARQ worker configuration."""
from arq.cron import cron

from sessionreplay.config import settings
from sessionreplay.container import build_services
from sessionreplay.utils.logger import logger
from sessionreplay.workers.redis_config import redis_settings

# Import the actual task functions
from sessionreplay.workers.tasks import cleanup_render_workdir, render_session_video


async def startup(ctx):
    """Worker startup hook."""
    logger.info("ARQ worker starting up...")
    ctx["services"] = build_services(settings).open()
    ctx["startup_complete"] = True


async def shutdown(ctx):
    """Worker shutdown hook."""
    logger.info("ARQ worker shutting down...")


class WorkerSettings:
    """ARQ worker settings."""

    # Use actual function references, not strings
    functions = [
        render_session_video,
        cleanup_render_workdir,
    ]

    cron_jobs = [
        # Sweep the render scratch directory every 15 minutes
        cron(cleanup_render_workdir, minute={0, 15, 30, 45}),
    ]

    on_startup = startup
    on_shutdown = shutdown

    redis_settings = redis_settings

    # Job configuration
    max_jobs = settings.max_concurrent_renders
    job_timeout = settings.render_job_timeout_seconds
    keep_result = 3600  # Keep results for 1 hour
    retry_jobs = True
    max_tries = 3

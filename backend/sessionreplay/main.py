"""Main FastAPI application."""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from sessionreplay.api import replays, sessions
from sessionreplay.config import Settings, settings as default_settings
from sessionreplay.container import ReplayServices, build_services
from sessionreplay.utils.logger import logger


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[ReplayServices] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings to use; defaults to the environment
        services: Pre-built services (tests inject fakes here)

    Returns:
        Configured FastAPI app; storage is initialized on startup
    """
    settings = settings or default_settings
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services.open()
        logger.info(f"Session replay API ready, data under {settings.data_dir}")
        yield

    app = FastAPI(
        title="Session Replay API",
        description="Stores recorded browser sessions and renders them to video",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(sessions.router)
    app.include_router(replays.router)

    # Rendered artifacts and uploaded recordings
    app.mount("/videos", StaticFiles(directory=settings.videos_dir, check_dir=False), name="videos")
    app.mount("/thumbnails", StaticFiles(directory=settings.thumbnails_dir, check_dir=False), name="thumbnails")
    app.mount("/recordings", StaticFiles(directory=settings.recordings_dir, check_dir=False), name="recordings")

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "message": "Session Replay API",
            "version": "0.1.0",
            "docs": "/docs",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()


def run() -> None:
    """Serve the API with uvicorn using the configured host and port."""
    import uvicorn

    uvicorn.run("sessionreplay.main:app", host=default_settings.api_host, port=default_settings.api_port)

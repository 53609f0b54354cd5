"""Builds the service graph from settings."""
from dataclasses import dataclass
from typing import Optional

from sessionreplay.config import Settings
from sessionreplay.services.artifacts import ArtifactResolver
from sessionreplay.services.encoder import FfmpegEncoder, VideoEncoder
from sessionreplay.services.renderer import PlaywrightRenderer, SessionRenderer
from sessionreplay.services.session_directory import SessionDirectory
from sessionreplay.services.session_store import SessionStore
from sessionreplay.services.video import VideoRenderPipeline


@dataclass
class ReplayServices:
    settings: Settings
    store: SessionStore
    directory: SessionDirectory
    pipeline: VideoRenderPipeline
    artifacts: ArtifactResolver

    def open(self) -> "ReplayServices":
        """Create storage directories. Raises ``StorageUnavailable``."""
        self.store.open()
        self.pipeline.open()
        return self


def build_services(
    settings: Settings,
    renderer: Optional[SessionRenderer] = None,
    encoder: Optional[VideoEncoder] = None,
) -> ReplayServices:
    """Wire store, directory, pipeline and resolver. Touches no files."""
    store = SessionStore(settings)
    pipeline = VideoRenderPipeline(
        settings,
        renderer=renderer or PlaywrightRenderer(settings),
        encoder=encoder or FfmpegEncoder(settings),
    )
    return ReplayServices(
        settings=settings,
        store=store,
        directory=SessionDirectory(store),
        pipeline=pipeline,
        artifacts=ArtifactResolver(settings, store, pipeline),
    )

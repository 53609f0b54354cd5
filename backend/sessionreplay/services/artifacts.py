"""Resolves a session ID to raw events, a cached artifact or a fresh render."""
import asyncio
import os
from pathlib import Path
from typing import Any, Dict

from sessionreplay.config import Settings
from sessionreplay.constants import RECORDING_FILE_SUFFIX, VIDEO_FILE_SUFFIX
from sessionreplay.models.session import Session
from sessionreplay.services.session_store import SessionStore
from sessionreplay.services.video import RenderResult, VideoRenderPipeline
from sessionreplay.utils.exceptions import SessionNotFound, StorageWriteFailed
from sessionreplay.utils.logger import logger
from sessionreplay.utils.url import public_url


class ArtifactResolver:
    """Front door for replay consumers."""

    def __init__(self, settings: Settings, store: SessionStore, pipeline: VideoRenderPipeline):
        self.settings = settings
        self.store = store
        self.pipeline = pipeline
        self.recordings_dir = Path(settings.recordings_dir)
        self.public_base_path = settings.public_base_path

    def recording_path_for(self, session_id: str) -> Path:
        self.store.path_for(session_id)  # validates the id
        return self.recordings_dir / f"{session_id}{RECORDING_FILE_SUFFIX}"

    def get_raw_replay(self, session_id: str) -> Dict[str, Any]:
        """
        Session document plus whether a raw screen recording was uploaded.

        Raises:
            SessionNotFound: No readable session
        """
        session = self.store.read(session_id)
        document = session.to_document()
        document["hasRecording"] = self.recording_path_for(session_id).is_file()
        logger.debug(f"[ARTIFACTS] Loaded replay {session_id} with {len(session.events)} events")
        return document

    async def ensure_video(self, session_id: str) -> RenderResult:
        """Render the session's video unless a cached one exists."""
        session = await asyncio.to_thread(self.store.read, session_id)
        if self.settings.invalidate_stale_artifacts:
            self._discard_if_stale(session)
        return await self.pipeline.render_video(session)

    async def get_video_url(self, session_id: str) -> str:
        await self.ensure_video(session_id)
        return public_url(self.public_base_path, "videos", f"{session_id}{VIDEO_FILE_SUFFIX}")

    async def get_thumbnail(self, session_id: str) -> Path:
        session = await asyncio.to_thread(self.store.read, session_id)
        result = await self.pipeline.render_thumbnail(session)
        return result.path

    async def get_thumbnail_url(self, session_id: str) -> str:
        path = await self.get_thumbnail(session_id)
        return public_url(self.public_base_path, "thumbnails", path.name)

    def get_recording_url(self, session_id: str) -> str:
        """
        URL of the uploaded screen recording.

        Raises:
            SessionNotFound: No recording was uploaded for this session
        """
        path = self.recording_path_for(session_id)
        if not path.is_file():
            raise SessionNotFound(session_id, f"Recording not found: {session_id}")
        return public_url(self.public_base_path, "recordings", path.name)

    def save_recording(self, session_id: str, data: bytes) -> Path:
        """Store an uploaded screen recording next to the session (temp file + rename)."""
        path = self.recording_path_for(session_id)
        temp = path.with_name(f".{path.name}.part")
        try:
            self.recordings_dir.mkdir(parents=True, exist_ok=True)
            with open(temp, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp, path)
        except OSError as e:
            try:
                temp.unlink()
            except FileNotFoundError:
                pass
            raise StorageWriteFailed(f"Failed to store recording for {session_id}: {e}") from e
        logger.info(f"[ARTIFACTS] Stored recording for {session_id} ({len(data)} bytes)")
        return path

    def _discard_if_stale(self, session: Session) -> None:
        video = self.pipeline.video_path_for(session.sessionId)
        last_updated = session.metadata.lastUpdated
        if not last_updated or not video.is_file():
            return
        if video.stat().st_mtime * 1000 < last_updated:
            logger.info(f"[ARTIFACTS] Video for {session.sessionId} predates last append, re-rendering")
            self.pipeline.discard_video(session.sessionId)

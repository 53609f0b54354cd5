"""Video generation service: stored session in, cached MP4 out."""
import asyncio
import os
import shutil
import tempfile
import time
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Optional, Set

from sessionreplay.config import Settings
from sessionreplay.constants import PARTIAL_PREFIX, PARTIAL_SUFFIX, THUMBNAIL_FILE_SUFFIX, VIDEO_FILE_SUFFIX
from sessionreplay.models.session import Session, Viewport
from sessionreplay.services.encoder import VideoEncoder
from sessionreplay.services.renderer import SessionRenderer
from sessionreplay.utils.exceptions import (
    EncodeFailed,
    InvalidSessionData,
    RendererBusy,
    RendererUnavailable,
    RetryBudgetExhausted,
    StorageUnavailable,
)
from sessionreplay.utils.locks import AsyncKeyedLock
from sessionreplay.utils.logger import logger


class RenderState(str, Enum):
    REQUESTED = "requested"
    CACHED_HIT = "cached_hit"
    BROWSER_LAUNCHING = "browser_launching"
    REPLAYING = "replaying"
    ENCODING = "encoding"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RenderResult:
    """Result of video or thumbnail generation."""
    session_id: str
    path: Path
    state: RenderState
    cached: bool = False
    duration_ms: int = 0
    size_bytes: int = 0


# (work_dir, partial_output, mark_state) -> None
BuildStep = Callable[[Path, Path, Callable[[RenderState], None]], Awaitable[None]]

# Most recent render states kept for inspection
MAX_TRACKED_STATES = 1024


class VideoRenderPipeline:
    """Renders sessions to video, at most once per session and a bounded number at a time."""

    def __init__(self, settings: Settings, renderer: SessionRenderer, encoder: VideoEncoder):
        self.settings = settings
        self.renderer = renderer
        self.encoder = encoder
        self.videos_dir = Path(settings.videos_dir)
        self.thumbnails_dir = Path(settings.thumbnails_dir)
        self.work_dir = Path(settings.render_work_dir)
        self.default_viewport = Viewport(
            width=settings.video_resolution_width,
            height=settings.video_resolution_height,
        )
        self.states: "OrderedDict[str, RenderState]" = OrderedDict()
        self._slots = asyncio.Semaphore(max(1, settings.max_concurrent_renders))
        self._requests = AsyncKeyedLock()
        self._active_work_dirs: Set[Path] = set()

    def open(self) -> "VideoRenderPipeline":
        """Create artifact and scratch directories."""
        try:
            for directory in (self.videos_dir, self.thumbnails_dir, self.work_dir):
                directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"Cannot initialize render directories: {e}") from e
        return self

    # Artifact paths

    def video_path_for(self, session_id: str) -> Path:
        return self.videos_dir / f"{session_id}{VIDEO_FILE_SUFFIX}"

    def thumbnail_path_for(self, session: Session) -> Path:
        recorded_at = session.metadata.recordedAt or 0
        return self.thumbnails_dir / f"{recorded_at}-{session.sessionId}{THUMBNAIL_FILE_SUFFIX}"

    @staticmethod
    def is_cached(path: Path) -> bool:
        try:
            return path.is_file() and path.stat().st_size > 0
        except OSError:
            return False

    def discard_video(self, session_id: str) -> None:
        """Remove the cached video so the next request re-renders."""
        path = self.video_path_for(session_id)
        try:
            path.unlink()
            logger.info(f"[VIDEO] Discarded cached video {path.name}")
        except FileNotFoundError:
            pass

    def state_of(self, session_id: str, label: str = "video") -> Optional[RenderState]:
        """Last known state of the session's video (or ``thumbnail``) render."""
        return self.states.get(f"{label}:{session_id}")

    # Public operations

    async def render_video(self, session: Session) -> RenderResult:
        """
        Ensure ``<videos_dir>/<id>.mp4`` exists for the session.

        A second call for a session whose video exists returns the cached
        path without touching the renderer.

        Raises:
            InvalidSessionData: The session has no events
            RendererUnavailable: Browser could not run (retry later)
            RetryBudgetExhausted: Browser kept failing
            EncodeFailed: ffmpeg failed
        """
        async def build(work: Path, partial: Path, mark: Callable[[RenderState], None]) -> None:
            raw = await self.renderer.render(
                session.events,
                work,
                self._viewport_for(session),
                on_replay=lambda: mark(RenderState.REPLAYING),
            )
            mark(RenderState.ENCODING)
            await self.encoder.encode(raw, partial)

        return await self._produce(session, self.video_path_for(session.sessionId), "video", build)

    async def render_thumbnail(self, session: Session) -> RenderResult:
        """Render just the first event and keep its first frame as a PNG."""
        async def build(work: Path, partial: Path, mark: Callable[[RenderState], None]) -> None:
            raw = await self.renderer.render(
                session.events[:1],
                work,
                self._viewport_for(session),
                on_replay=lambda: mark(RenderState.REPLAYING),
            )
            mark(RenderState.ENCODING)
            await self.encoder.extract_frame(raw, 0, partial)

        return await self._produce(session, self.thumbnail_path_for(session), "thumbnail", build)

    def cleanup_work_dir(self, min_age_seconds: Optional[float] = None) -> int:
        """
        Remove scratch entries and leftover partial artifacts not owned by an
        in-flight render.

        Entries younger than ``min_age_seconds`` (default: the render job
        timeout) are left alone, since another process may still be using them.

        Returns:
            Number of entries removed
        """
        if not self.work_dir.is_dir():
            return 0
        if min_age_seconds is None:
            min_age_seconds = self.settings.render_job_timeout_seconds
        cutoff = time.time() - min_age_seconds
        removed = 0
        try:
            entries = list(self.work_dir.iterdir())
        except OSError as e:
            logger.warning(f"[VIDEO] Could not scan work dir {self.work_dir}: {e}")
            return 0
        for entry in entries:
            if entry in self._active_work_dirs:
                continue
            try:
                if entry.stat().st_mtime > cutoff:
                    continue
                if entry.is_dir():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
                removed += 1
            except OSError as e:
                logger.warning(f"[VIDEO] Could not remove stale work entry {entry.name}: {e}")
        for directory in (self.videos_dir, self.thumbnails_dir):
            removed += _remove_stale_partials(directory, cutoff)
        if removed:
            logger.info(f"[VIDEO] Removed {removed} stale work entries")
        return removed

    # Internals

    async def _produce(self, session: Session, output: Path, label: str, build: BuildStep) -> RenderResult:
        session_id = session.sessionId
        self._set_state(label, session_id, RenderState.REQUESTED)

        if not session.events:
            self._set_state(label, session_id, RenderState.FAILED)
            raise InvalidSessionData("no events to render")

        if self.is_cached(output):
            return self._cached(session, output, label)

        async with self._requests.hold(f"{label}:{session_id}"):
            # Another request may have finished while we waited
            if self.is_cached(output):
                return self._cached(session, output, label)
            async with self._slot():
                return await self._with_retries(session, output, label, build)

    def _cached(self, session: Session, output: Path, label: str) -> RenderResult:
        logger.info(f"[VIDEO] Using existing {label} for session {session.sessionId}: {output}")
        self._set_state(label, session.sessionId, RenderState.CACHED_HIT)
        return RenderResult(
            session_id=session.sessionId,
            path=output,
            state=RenderState.CACHED_HIT,
            cached=True,
            duration_ms=_duration_ms(session),
            size_bytes=output.stat().st_size,
        )

    @asynccontextmanager
    async def _slot(self) -> AsyncIterator[None]:
        timeout = self.settings.render_queue_timeout_seconds
        try:
            await asyncio.wait_for(self._slots.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            raise RendererBusy(
                f"All {self.settings.max_concurrent_renders} render slots busy",
                retry_after=self.settings.render_retry_after_seconds,
            )
        try:
            yield
        finally:
            self._slots.release()

    async def _with_retries(self, session: Session, output: Path, label: str, build: BuildStep) -> RenderResult:
        attempts = max(1, self.settings.render_max_attempts)
        last_error: Optional[RendererUnavailable] = None

        for attempt in range(1, attempts + 1):
            try:
                return await self._render_once(session, output, label, build)
            except RendererUnavailable as e:
                last_error = e
                logger.warning(
                    f"[VIDEO] Renderer unavailable for session {session.sessionId} "
                    f"(attempt {attempt}/{attempts}): {e}"
                )

        if attempts == 1:
            raise last_error
        raise RetryBudgetExhausted(
            f"Renderer failed {attempts} times for session {session.sessionId}: {last_error}"
        ) from last_error

    async def _render_once(self, session: Session, output: Path, label: str, build: BuildStep) -> RenderResult:
        session_id = session.sessionId
        work = self._claim_work_dir(session_id)
        partial: Optional[Path] = None
        started = time.monotonic()

        try:
            partial = self._claim_partial(output)
            self._set_state(label, session_id, RenderState.BROWSER_LAUNCHING)
            await build(work, partial, lambda state: self._set_state(label, session_id, state))

            if not self.is_cached(partial):
                raise EncodeFailed(f"Encoder produced no {label} output")
            try:
                os.replace(partial, output)
            except OSError as e:
                raise EncodeFailed(f"Could not publish {label} to {output}: {e}") from e
        except Exception as e:
            self._set_state(label, session_id, RenderState.FAILED)
            logger.error(f"[VIDEO] {label.capitalize()} generation failed for session {session_id}: {e}")
            if partial is not None:
                _remove_quietly(partial)
            raise
        finally:
            self._release_work_dir(work)

        self._set_state(label, session_id, RenderState.DONE)
        size = output.stat().st_size
        logger.info(
            f"[VIDEO] {label.capitalize()} generated for session {session_id}: "
            f"{output} ({size} bytes, {time.monotonic() - started:.1f}s)"
        )
        return RenderResult(
            session_id=session_id,
            path=output,
            state=RenderState.DONE,
            duration_ms=_duration_ms(session),
            size_bytes=size,
        )

    def _viewport_for(self, session: Session) -> Viewport:
        return session.metadata.viewport or self.default_viewport

    def _set_state(self, label: str, session_id: str, state: RenderState) -> None:
        key = f"{label}:{session_id}"
        previous = self.states.pop(key, None)
        self.states[key] = state
        while len(self.states) > MAX_TRACKED_STATES:
            self.states.popitem(last=False)
        logger.debug(f"[VIDEO] {label.capitalize()} {session_id}: {previous.value if previous else '-'} -> {state.value}")

    @staticmethod
    def _claim_partial(output: Path) -> Path:
        """Hidden file next to ``output`` that only this attempt writes to."""
        fd, name = tempfile.mkstemp(
            dir=output.parent, prefix=f"{PARTIAL_PREFIX}{output.name}.", suffix=PARTIAL_SUFFIX
        )
        os.close(fd)
        os.chmod(name, 0o644)
        return Path(name)

    def _claim_work_dir(self, session_id: str) -> Path:
        self.cleanup_work_dir()
        self.work_dir.mkdir(parents=True, exist_ok=True)
        work = Path(tempfile.mkdtemp(prefix=f"{session_id}-", dir=self.work_dir))
        self._active_work_dirs.add(work)
        return work

    def _release_work_dir(self, work: Path) -> None:
        self._active_work_dirs.discard(work)
        shutil.rmtree(work, ignore_errors=True)


def _duration_ms(session: Session) -> int:
    timestamps = [e.get("timestamp") for e in session.events if isinstance(e.get("timestamp"), (int, float))]
    if not timestamps:
        return 0
    return int(max(timestamps) - min(timestamps))


def _remove_stale_partials(directory: Path, cutoff: float) -> int:
    removed = 0
    for entry in directory.glob(f"{PARTIAL_PREFIX}*{PARTIAL_SUFFIX}"):
        try:
            if entry.stat().st_mtime > cutoff:
                continue
            entry.unlink()
            removed += 1
        except OSError as e:
            logger.warning(f"[VIDEO] Could not remove stale partial {entry.name}: {e}")
    return removed


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"[VIDEO] Could not remove partial output {path.name}: {e}")

from pathlib import Path

import pytest

from sessionreplay.config import Settings
from sessionreplay.container import build_services
from sessionreplay.services.session_store import SessionStore
from sessionreplay.services.video import VideoRenderPipeline
from sessionreplay.utils.exceptions import EncodeFailed, RendererUnavailable


class FakeRenderer:
    """Stands in for headless Chromium; writes a fake capture file."""

    def __init__(self):
        self.calls = []
        self.viewports = []
        self.fail_times = 0
        self.gate = None

    async def render(self, events, output_dir, viewport, on_replay=None):
        self.calls.append(list(events))
        self.viewports.append(viewport)
        if len(self.calls) <= self.fail_times:
            raise RendererUnavailable("browser crashed", retry_after=3)
        if on_replay:
            on_replay()
        if self.gate is not None:
            await self.gate.wait()
        raw = Path(output_dir) / "capture.webm"
        raw.write_bytes(b"webm-frames")
        return raw


class FakeEncoder:
    """Stands in for ffmpeg."""

    def __init__(self):
        self.encoded = []
        self.frames = []
        self.fail = False

    async def encode(self, source, output):
        if self.fail:
            output.write_bytes(b"half-written")
            raise EncodeFailed("ffmpeg exited with 1")
        output.write_bytes(b"mp4:" + Path(source).read_bytes())
        self.encoded.append(output)
        return output

    async def extract_frame(self, video, frame_index, output):
        output.write_bytes(b"png")
        self.frames.append((video, frame_index))
        return output


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        data_dir=tmp_path / "data",
        replay_event_delay_ms=0,
        render_queue_timeout_seconds=0.2,
        render_max_attempts=2,
        render_retry_after_seconds=7,
    )


@pytest.fixture
def store(settings):
    return SessionStore(settings).open()


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def encoder():
    return FakeEncoder()


@pytest.fixture
def pipeline(settings, renderer, encoder):
    return VideoRenderPipeline(settings, renderer, encoder).open()


@pytest.fixture
def services(settings, renderer, encoder):
    return build_services(settings, renderer=renderer, encoder=encoder)


@pytest.fixture
def click_event():
    return {"type": "mouse_click", "timestamp": 10, "data": {"x": 5, "y": 5}}


@pytest.fixture
def scroll_event():
    return {"type": "scroll", "timestamp": 20, "data": {"scrollX": 0, "scrollY": 100}}

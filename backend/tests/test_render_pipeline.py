import asyncio
import os
import time
from pathlib import Path

import pytest

from sessionreplay.config import Settings
from sessionreplay.models.session import Session
from sessionreplay.services import video as video_module
from sessionreplay.services.video import RenderState, VideoRenderPipeline
from sessionreplay.utils.exceptions import (
    EncodeFailed,
    InvalidSessionData,
    RendererBusy,
    RendererUnavailable,
    RetryBudgetExhausted,
)


def make_session(session_id="s1", events=None, **metadata):
    if events is None:
        events = [
            {"type": "snapshot", "timestamp": 0, "data": {"html": "<body>hi</body>"}},
            {"type": "mouse_click", "timestamp": 120, "data": {"x": 5, "y": 5}},
        ]
    metadata.setdefault("recordedAt", 1700000000000)
    return Session(sessionId=session_id, metadata=metadata, events=events)


def _partials(pipeline):
    return [p.name for p in pipeline.videos_dir.iterdir() if p.name.endswith(".part")]


async def test_render_produces_video(pipeline, renderer, encoder):
    result = await pipeline.render_video(make_session())

    assert result.path == pipeline.videos_dir / "s1.mp4"
    assert result.path.read_bytes() == b"mp4:webm-frames"
    assert result.state is RenderState.DONE
    assert not result.cached
    assert result.duration_ms == 120
    assert pipeline.state_of("s1") is RenderState.DONE
    assert len(renderer.calls) == 1
    assert list(pipeline.work_dir.iterdir()) == []


async def test_second_request_is_a_cache_hit(pipeline, renderer):
    first = await pipeline.render_video(make_session())
    second = await pipeline.render_video(make_session())

    assert second.cached
    assert second.path == first.path
    assert second.state is RenderState.CACHED_HIT
    assert len(renderer.calls) == 1


async def test_concurrent_requests_render_once(pipeline, renderer):
    results = await asyncio.gather(*(pipeline.render_video(make_session()) for _ in range(4)))

    assert len(renderer.calls) == 1
    assert {r.path for r in results} == {pipeline.videos_dir / "s1.mp4"}
    assert sum(not r.cached for r in results) == 1


async def test_empty_session_is_rejected(pipeline, renderer):
    with pytest.raises(InvalidSessionData, match="no events to render"):
        await pipeline.render_video(make_session(events=[]))

    assert renderer.calls == []
    assert list(pipeline.videos_dir.iterdir()) == []


async def test_encode_failure_leaves_no_artifact(pipeline, renderer, encoder):
    encoder.fail = True
    with pytest.raises(EncodeFailed):
        await pipeline.render_video(make_session())

    assert list(pipeline.videos_dir.iterdir()) == []
    assert pipeline.state_of("s1") is RenderState.FAILED
    assert len(renderer.calls) == 1

    encoder.fail = False
    result = await pipeline.render_video(make_session())
    assert not result.cached
    assert result.path.exists()


async def test_zero_byte_encode_is_not_published(pipeline, encoder):
    async def empty_encode(source, output):
        output.write_bytes(b"")
        return output

    encoder.encode = empty_encode
    with pytest.raises(EncodeFailed):
        await pipeline.render_video(make_session())
    assert list(pipeline.videos_dir.iterdir()) == []


async def test_transient_renderer_failure_is_retried(pipeline, renderer):
    renderer.fail_times = 1
    result = await pipeline.render_video(make_session())

    assert result.state is RenderState.DONE
    assert len(renderer.calls) == 2


async def test_retry_budget_exhausted(pipeline, renderer):
    renderer.fail_times = 5
    with pytest.raises(RetryBudgetExhausted) as exc:
        await pipeline.render_video(make_session())

    assert isinstance(exc.value.__cause__, RendererUnavailable)
    assert len(renderer.calls) == 2
    assert list(pipeline.videos_dir.iterdir()) == []
    assert _partials(pipeline) == []


async def test_single_attempt_surfaces_renderer_unavailable(tmp_path, renderer, encoder):
    settings = Settings(_env_file=None, data_dir=tmp_path, render_max_attempts=1)
    pipeline = VideoRenderPipeline(settings, renderer, encoder).open()
    renderer.fail_times = 1

    with pytest.raises(RendererUnavailable) as exc:
        await pipeline.render_video(make_session())
    assert exc.value.retryable
    assert exc.value.retry_after == 3


async def test_over_capacity_request_gets_busy_signal(tmp_path, renderer, encoder):
    settings = Settings(
        _env_file=None,
        data_dir=tmp_path,
        max_concurrent_renders=1,
        render_queue_timeout_seconds=0.05,
        render_retry_after_seconds=4,
    )
    pipeline = VideoRenderPipeline(settings, renderer, encoder).open()
    renderer.gate = asyncio.Event()

    first = asyncio.create_task(pipeline.render_video(make_session("one")))
    while not renderer.calls:
        await asyncio.sleep(0.01)

    with pytest.raises(RendererBusy) as exc:
        await pipeline.render_video(make_session("two"))
    assert exc.value.retry_after == 4

    renderer.gate.set()
    assert (await first).state is RenderState.DONE


async def test_session_viewport_is_used(pipeline, renderer):
    await pipeline.render_video(make_session(viewport={"width": 800, "height": 600}))
    await pipeline.render_video(make_session("other"))

    assert (renderer.viewports[0].width, renderer.viewports[0].height) == (800, 600)
    assert (renderer.viewports[1].width, renderer.viewports[1].height) == (1920, 1080)


async def test_thumbnail_uses_first_event_only(pipeline, renderer, encoder):
    session = make_session()
    result = await pipeline.render_thumbnail(session)

    assert result.path == pipeline.thumbnails_dir / "1700000000000-s1.png"
    assert result.path.read_bytes() == b"png"
    assert renderer.calls == [session.events[:1]]
    assert encoder.frames[0][1] == 0

    again = await pipeline.render_thumbnail(session)
    assert again.cached
    assert len(renderer.calls) == 1


async def test_stale_work_dirs_are_swept_before_render(pipeline):
    stale = pipeline.work_dir / "abandoned-123"
    stale.mkdir()
    (stale / "capture.webm").write_bytes(b"x")
    old = time.time() - 7200
    os.utime(stale, (old, old))
    fresh = pipeline.work_dir / "other-process"
    fresh.mkdir()

    await pipeline.render_video(make_session())

    assert not stale.exists()
    assert fresh.exists()


def test_cleanup_work_dir_without_age_limit(pipeline):
    (pipeline.work_dir / "a").mkdir()
    (pipeline.work_dir / "b.tmp").write_text("x")
    assert pipeline.cleanup_work_dir(min_age_seconds=0) == 2
    assert list(pipeline.work_dir.iterdir()) == []


def test_discard_video(pipeline):
    path = pipeline.video_path_for("gone")
    path.write_bytes(b"old")
    pipeline.discard_video("gone")
    pipeline.discard_video("gone")
    assert not path.exists()


class InterleavingEncoder:
    """Yields to the event loop halfway through writing its output."""

    def __init__(self):
        self.outputs = []

    async def encode(self, source, output):
        self.outputs.append(output)
        with open(output, "wb") as f:
            f.write(b"mp4:")
            await asyncio.sleep(0.01)
            f.write(Path(source).read_bytes())
        return output

    async def extract_frame(self, video, frame_index, output):
        output.write_bytes(b"png")
        return output


async def test_two_pipelines_rendering_one_session_do_not_share_partials(settings, renderer):
    encoder = InterleavingEncoder()
    api_side = VideoRenderPipeline(settings, renderer, encoder).open()
    worker_side = VideoRenderPipeline(settings, renderer, encoder).open()
    session = make_session()

    results = await asyncio.gather(api_side.render_video(session), worker_side.render_video(session))

    assert [r.state for r in results] == [RenderState.DONE, RenderState.DONE]
    assert len(renderer.calls) == 2
    assert len(set(encoder.outputs)) == 2
    assert api_side.video_path_for("s1").read_bytes() == b"mp4:webm-frames"
    assert _partials(api_side) == []


async def test_video_and_thumbnail_states_are_separate(pipeline, encoder):
    encoder.fail = True
    with pytest.raises(EncodeFailed):
        await pipeline.render_video(make_session())
    await pipeline.render_thumbnail(make_session())

    assert pipeline.state_of("s1") is RenderState.FAILED
    assert pipeline.state_of("s1", "thumbnail") is RenderState.DONE


async def test_state_tracking_is_bounded(pipeline, monkeypatch):
    monkeypatch.setattr(video_module, "MAX_TRACKED_STATES", 3)
    for i in range(5):
        await pipeline.render_video(make_session(f"s{i}"))

    assert len(pipeline.states) == 3
    assert pipeline.state_of("s0") is None
    assert pipeline.state_of("s4") is RenderState.DONE


def test_sweep_removes_abandoned_partials(pipeline):
    abandoned = pipeline.videos_dir / ".s1.mp4.k2j3h4.part"
    abandoned.write_bytes(b"half")
    old = time.time() - 7200
    os.utime(abandoned, (old, old))
    in_progress = pipeline.thumbnails_dir / ".0-s2.png.x9y8z7.part"
    in_progress.write_bytes(b"half")

    assert pipeline.cleanup_work_dir() == 1
    assert not abandoned.exists()
    assert in_progress.exists()

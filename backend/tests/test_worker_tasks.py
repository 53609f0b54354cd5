import pytest
from arq import Retry

from sessionreplay.config import Settings
from sessionreplay.container import build_services
from sessionreplay.workers.tasks import cleanup_render_workdir, render_session_video


@pytest.fixture
def ctx(services):
    return {"services": services.open()}


async def test_renders_completed_session(ctx, click_event):
    ctx["services"].store.create_or_append("w1", [click_event], {"isComplete": True})

    result = await render_session_video(ctx, "w1")

    assert result["success"] is True
    assert result["cached"] is False
    assert result["video_path"].endswith("w1.mp4")


async def test_skips_session_still_recording(ctx, click_event, renderer):
    ctx["services"].store.create_or_append("w2", [click_event], {})

    result = await render_session_video(ctx, "w2")

    assert result["success"] is False
    assert renderer.calls == []


async def test_missing_session(ctx):
    result = await render_session_video(ctx, "ghost")
    assert result == {"success": False, "error": "Session not found: ghost", "kind": "SessionNotFound"}


async def test_exhausted_renderer_reports_failure(ctx, click_event, renderer):
    renderer.fail_times = 10
    ctx["services"].store.create_or_append("w3", [click_event], {"isComplete": True})

    result = await render_session_video(ctx, "w3")

    assert result["success"] is False
    assert result["kind"] == "RetryBudgetExhausted"


async def test_single_attempt_failure_defers_job(tmp_path, renderer, encoder, click_event):
    settings = Settings(_env_file=None, data_dir=tmp_path, render_max_attempts=1)
    ctx = {"services": build_services(settings, renderer=renderer, encoder=encoder).open()}
    renderer.fail_times = 1
    ctx["services"].store.create_or_append("w4", [click_event], {"isComplete": True})

    with pytest.raises(Retry):
        await render_session_video(ctx, "w4")


async def test_cleanup_task(ctx):
    assert await cleanup_render_workdir(ctx) == {"success": True, "removed": 0}

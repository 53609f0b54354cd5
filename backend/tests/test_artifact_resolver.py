import os
import time

import pytest

from sessionreplay.config import Settings
from sessionreplay.container import build_services
from sessionreplay.utils.exceptions import InvalidSessionData, SessionNotFound


@pytest.fixture
def opened(services, click_event):
    services.open()
    services.store.create_or_append("s1", [click_event], {"url": "http://x", "userAgent": "UA"})
    return services


def test_raw_replay_reports_recording(opened):
    raw = opened.artifacts.get_raw_replay("s1")
    assert raw["sessionId"] == "s1"
    assert len(raw["events"]) == 1
    assert raw["hasRecording"] is False

    opened.artifacts.save_recording("s1", b"\x1a\x45\xdf\xa3webm")
    assert opened.artifacts.get_raw_replay("s1")["hasRecording"] is True


def test_raw_replay_of_missing_session(opened):
    with pytest.raises(SessionNotFound):
        opened.artifacts.get_raw_replay("missing")


async def test_video_url_renders_once(opened, renderer):
    first = await opened.artifacts.get_video_url("s1")
    second = await opened.artifacts.get_video_url("s1")

    assert first == second == "/videos/s1.mp4"
    assert len(renderer.calls) == 1
    assert opened.pipeline.video_path_for("s1").exists()


async def test_video_url_uses_public_base(tmp_path, renderer, encoder, click_event):
    settings = Settings(_env_file=None, data_dir=tmp_path, public_base_path="https://cdn.example.com/")
    services = build_services(settings, renderer=renderer, encoder=encoder).open()
    services.store.create_or_append("s1", [click_event], {})

    assert await services.artifacts.get_video_url("s1") == "https://cdn.example.com/videos/s1.mp4"


async def test_video_for_missing_session(opened, renderer):
    with pytest.raises(SessionNotFound):
        await opened.artifacts.get_video_url("nope")
    assert renderer.calls == []


async def test_video_for_empty_session(opened):
    opened.store.create_or_append("empty", [], {})
    with pytest.raises(InvalidSessionData):
        await opened.artifacts.get_video_url("empty")


async def test_cached_video_is_not_invalidated_by_default(opened, renderer, scroll_event):
    await opened.artifacts.get_video_url("s1")
    _age(opened.pipeline.video_path_for("s1"))
    opened.store.create_or_append("s1", [scroll_event], {})

    await opened.artifacts.get_video_url("s1")
    assert len(renderer.calls) == 1


async def test_stale_video_is_rerendered_when_enabled(tmp_path, renderer, encoder, click_event, scroll_event):
    settings = Settings(_env_file=None, data_dir=tmp_path, invalidate_stale_artifacts=True)
    services = build_services(settings, renderer=renderer, encoder=encoder).open()
    services.store.create_or_append("s1", [click_event], {})

    await services.artifacts.get_video_url("s1")
    _age(services.pipeline.video_path_for("s1"), seconds=-60)
    await services.artifacts.get_video_url("s1")
    assert len(renderer.calls) == 1

    _age(services.pipeline.video_path_for("s1"))
    services.store.create_or_append("s1", [scroll_event], {})
    await services.artifacts.get_video_url("s1")

    assert len(renderer.calls) == 2
    assert len(renderer.calls[1]) == 2


async def test_thumbnail_url(opened):
    url = await opened.artifacts.get_thumbnail_url("s1")
    recorded_at = opened.store.read("s1").metadata.recordedAt
    assert url == f"/thumbnails/{recorded_at}-s1.png"


def test_recording_url(opened):
    with pytest.raises(SessionNotFound):
        opened.artifacts.get_recording_url("s1")

    path = opened.artifacts.save_recording("s1", b"webm")
    assert path.read_bytes() == b"webm"
    assert opened.artifacts.get_recording_url("s1") == "/recordings/s1.webm"
    assert [p.name for p in path.parent.iterdir()] == ["s1.webm"]


def test_recording_rejects_unsafe_id(opened):
    with pytest.raises(InvalidSessionData):
        opened.artifacts.save_recording("../../etc/passwd", b"x")


def _age(path, seconds=3600):
    old = time.time() - seconds
    os.utime(path, (old, old))

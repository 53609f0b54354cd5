import asyncio
import json

import httpx
import pytest

from sessionreplay.capture.uploader import EventUploader
from sessionreplay.config import Settings
from sessionreplay.main import create_app


class Collector:
    """Records posted batches; can be told to fail the next N requests."""

    def __init__(self):
        self.batches = []
        self.fail_next = 0

    def __call__(self, request):
        if self.fail_next:
            self.fail_next -= 1
            return httpx.Response(503, json={"detail": "busy"})
        self.batches.append(json.loads(request.content))
        return httpx.Response(200, json={"success": True})


@pytest.fixture
def collector():
    return Collector()


@pytest.fixture
def upload_settings():
    return Settings(_env_file=None, upload_batch_size=3, upload_interval_seconds=60)


def _client(collector):
    return httpx.AsyncClient(transport=httpx.MockTransport(collector), base_url="http://replay.test")


async def _settle(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


async def test_batch_is_sent_when_full(collector, upload_settings):
    async with _client(collector) as client:
        uploader = await EventUploader({"url": "http://x"}, session_id="u1", client=client, settings=upload_settings).start()
        for i in range(4):
            uploader.record("mouse_move", {"x": i, "y": i}, timestamp=i)

        await _settle(lambda: len(collector.batches) == 1)
        assert [e["timestamp"] for e in collector.batches[0]["events"]] == [0, 1, 2]
        assert collector.batches[0]["sessionId"] == "u1"
        assert "isComplete" not in collector.batches[0]["metadata"]

        assert await uploader.stop() == 1
        assert collector.batches[1]["events"][0]["timestamp"] == 3
        assert collector.batches[1]["metadata"]["isComplete"] is True


async def test_stop_marks_session_complete_even_when_empty(collector, upload_settings):
    async with _client(collector) as client:
        uploader = await EventUploader({"url": "http://x"}, session_id="u2", client=client, settings=upload_settings).start()
        assert await uploader.stop() == 0

    assert len(collector.batches) == 1
    assert collector.batches[0]["sessionId"] == "u2"
    assert collector.batches[0]["events"] == []
    assert collector.batches[0]["metadata"]["isComplete"] is True
    assert collector.batches[0]["metadata"]["url"] == "http://x"


async def test_interval_triggers_upload(collector):
    settings = Settings(_env_file=None, upload_batch_size=100, upload_interval_seconds=0.05)
    async with _client(collector) as client:
        async with EventUploader({}, session_id="u3", client=client, settings=settings) as uploader:
            uploader.record("scroll", {"scrollY": 10})
            await _settle(lambda: len(collector.batches) == 1)
            assert collector.batches[0]["events"][0]["type"] == "scroll"


async def test_failed_batch_is_kept_and_resent(collector, upload_settings):
    collector.fail_next = 1
    async with _client(collector) as client:
        uploader = await EventUploader({}, session_id="u4", client=client, settings=upload_settings).start()
        uploader.record("mouse_click", {"x": 1, "y": 1}, timestamp=1)

        assert await uploader.flush() == 0
        uploader.record("mouse_click", {"x": 2, "y": 2}, timestamp=2)
        assert await uploader.flush() == 2

        assert [e["timestamp"] for e in collector.batches[0]["events"]] == [1, 2]
        assert uploader.batches_sent == 1
        await uploader.stop()


async def test_buffer_is_bounded_while_server_is_down(collector, upload_settings):
    collector.fail_next = 100
    async with _client(collector) as client:
        uploader = EventUploader({}, session_id="u5", client=client, settings=upload_settings, max_buffer=4)
        await uploader.start()
        for i in range(10):
            uploader.record("custom", i, timestamp=i)
        await uploader.flush()

        collector.fail_next = 0
        assert await uploader.flush() == 4
        assert [e["timestamp"] for e in collector.batches[0]["events"]] == [6, 7, 8, 9]
        await uploader.stop()


async def test_unexpected_upload_error_reaches_flush_and_stop(collector, upload_settings):
    async with _client(collector) as client:
        uploader = await EventUploader({}, session_id="u6", client=client, settings=upload_settings).start()
        uploader.record("custom", object(), timestamp=1)

        with pytest.raises(TypeError):
            await asyncio.wait_for(uploader.flush(), timeout=2)
        with pytest.raises(TypeError):
            await asyncio.wait_for(uploader.flush(), timeout=2)
        with pytest.raises(TypeError):
            await asyncio.wait_for(uploader.stop(), timeout=2)

        assert await uploader.stop() == 0
    assert collector.batches == []


async def test_session_id_is_generated():
    uploader = EventUploader({"userAgent": "UA", "timestamp": 1})
    assert len(uploader.session_id) == 32
    assert await uploader.stop() == 0


async def test_uploads_reach_the_store(settings, services):
    services.open()
    app = create_app(settings, services)
    transport = httpx.ASGITransport(app=app)
    capture_settings = Settings(_env_file=None, upload_batch_size=2, upload_interval_seconds=60)

    async with httpx.AsyncClient(transport=transport, base_url="http://replay.test") as client:
        async with EventUploader(
            {"url": "http://shop", "userAgent": "UA"}, session_id="e2e", client=client, settings=capture_settings
        ) as uploader:
            for i in range(5):
                uploader.record("mouse_move", {"x": i, "y": 0}, timestamp=i * 10)

    session = services.store.read("e2e")
    assert [e["timestamp"] for e in session.events] == [0, 10, 20, 30, 40]
    assert session.metadata.status == "complete"
    assert session.metadata.userAgent == "UA"
    assert uploader.batches_sent == 3

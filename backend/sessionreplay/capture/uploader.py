"""Batching uploader for captured events.

``EventUploader`` owns the event buffer. Producers only send it messages
(``record``, ``flush``, ``stop``); a single task drains the mailbox and posts
a batch to ``/api/sessions`` when the buffer reaches ``batch_size`` or the
upload interval elapses.
"""
import asyncio
import time
from typing import Any, Dict, List, Optional

import httpx

from sessionreplay.config import Settings, settings as default_settings
from sessionreplay.utils.hashing import generate_session_id
from sessionreplay.utils.logger import logger

_EVENT = "event"
_FLUSH = "flush"
_STOP = "stop"


def _now_ms() -> int:
    return int(time.time() * 1000)


class EventUploader:
    """Buffers events for one session and ships them in batches."""

    def __init__(
        self,
        metadata: Dict[str, Any],
        session_id: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        api_endpoint: str = "http://localhost:3100",
        settings: Optional[Settings] = None,
        max_buffer: int = 10000,
    ):
        settings = settings or default_settings
        self.metadata = dict(metadata)
        self.session_id = session_id or generate_session_id(self.metadata)
        self.interval = settings.upload_interval_seconds
        self.batch_size = settings.upload_batch_size
        self.max_buffer = max_buffer
        self.batches_sent = 0
        self._client = client
        self._owns_client = client is None
        self._api_endpoint = api_endpoint
        self._mailbox: "asyncio.Queue[tuple]" = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._failure: Optional[BaseException] = None
        self._started_ms = _now_ms()

    async def start(self) -> "EventUploader":
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self._api_endpoint, timeout=10.0)
        self._started_ms = _now_ms()
        self._task = asyncio.create_task(self._run(), name=f"uploader-{self.session_id}")
        logger.info(f"[UPLOADER] Recording session {self.session_id}")
        return self

    def record(self, event_type: str, data: Any = None, timestamp: Optional[int] = None) -> None:
        """Queue one event; ``timestamp`` defaults to ms since ``start``."""
        if timestamp is None:
            timestamp = _now_ms() - self._started_ms
        self._mailbox.put_nowait((_EVENT, {"type": event_type, "timestamp": timestamp, "data": data}))

    async def flush(self) -> int:
        """
        Send whatever is buffered now. Returns the number of events sent.

        Re-raises the error that stopped the upload loop, if any.
        """
        if self._task is None:
            return 0
        self._raise_if_failed()
        done = asyncio.get_running_loop().create_future()
        self._mailbox.put_nowait((_FLUSH, done))
        return await done

    async def stop(self) -> int:
        """Send the remaining events marked ``isComplete`` and shut down."""
        if self._task is None:
            return 0
        done = asyncio.get_running_loop().create_future()
        try:
            self._raise_if_failed()
            self._mailbox.put_nowait((_STOP, done))
            return await done
        finally:
            await self._task
            self._task = None
            if self._owns_client and self._client is not None:
                await self._client.aclose()
                self._client = None
            logger.info(f"[UPLOADER] Stopped session {self.session_id} after {self.batches_sent} batches")

    async def __aenter__(self) -> "EventUploader":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def _raise_if_failed(self) -> None:
        if self._failure is not None:
            raise self._failure

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        buffer: List[Dict[str, Any]] = []
        deadline = loop.time() + self.interval
        waiter: Optional[asyncio.Future] = None

        try:
            while True:
                try:
                    kind, payload = await asyncio.wait_for(
                        self._mailbox.get(), timeout=max(deadline - loop.time(), 0)
                    )
                except asyncio.TimeoutError:
                    await self._send(buffer)
                    deadline = loop.time() + self.interval
                    continue

                if kind == _EVENT:
                    buffer.append(payload)
                    if len(buffer) >= self.batch_size:
                        await self._send(buffer)
                        deadline = loop.time() + self.interval
                elif kind == _FLUSH:
                    waiter = payload
                    waiter.set_result(await self._send(buffer))
                    waiter = None
                    deadline = loop.time() + self.interval
                elif kind == _STOP:
                    waiter = payload
                    waiter.set_result(await self._send(buffer, complete=True))
                    return
        except Exception as e:
            logger.error(f"[UPLOADER] Upload loop for {self.session_id} stopped: {e}", exc_info=True)
            self._failure = e
            if waiter is not None and not waiter.done():
                waiter.set_exception(e)
            self._fail_waiting(e)

    def _fail_waiting(self, error: Exception) -> None:
        """Resolve flush/stop requests still in the mailbox with ``error``."""
        while not self._mailbox.empty():
            kind, payload = self._mailbox.get_nowait()
            if kind != _EVENT and not payload.done():
                payload.set_exception(error)

    async def _send(self, buffer: List[Dict[str, Any]], complete: bool = False) -> int:
        if not buffer and not complete:
            return 0

        batch = list(buffer)
        buffer.clear()
        metadata = {**self.metadata, "timestamp": _now_ms()}
        if complete:
            metadata["isComplete"] = True

        try:
            response = await self._client.post(
                "/api/sessions",
                json={"sessionId": self.session_id, "events": batch, "metadata": metadata},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"[UPLOADER] Failed to upload {len(batch)} events for {self.session_id}: {e}")
            # Keep the batch for the next attempt, oldest events first
            buffer[:0] = batch
            if len(buffer) > self.max_buffer:
                dropped = len(buffer) - self.max_buffer
                del buffer[:dropped]
                logger.warning(f"[UPLOADER] Buffer full, dropped {dropped} oldest events")
            return 0

        self.batches_sent += 1
        logger.debug(f"[UPLOADER] Uploaded {len(batch)} events for {self.session_id}")
        return len(batch)

"""Replays stored events against a headless Chromium page and records it."""
import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, async_playwright

from sessionreplay.config import Settings
from sessionreplay.models.event import EventType, parse_event
from sessionreplay.models.session import Viewport
from sessionreplay.utils.exceptions import RendererUnavailable
from sessionreplay.utils.logger import logger


BLANK_DOCUMENT = """<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"><title>Session Replay</title></head>
<body></body>
</html>
"""

REPLACE_DOCUMENT_JS = "html => { document.documentElement.innerHTML = html; }"

PATCH_DOCUMENT_JS = """
({target, added, removed}) => {
    const parent = (target && document.querySelector(target)) || document.body;
    for (const selector of removed) {
        const node = document.querySelector(selector);
        if (node) node.remove();
    }
    for (const html of added) {
        parent.insertAdjacentHTML('beforeend', html);
    }
}
"""

SCROLL_JS = "([x, y]) => window.scrollTo(x, y)"

SET_INPUT_JS = """
({selector, id, value}) => {
    const el = selector ? document.querySelector(selector) : document.getElementById(id);
    if (!el) return false;
    el.value = value;
    el.dispatchEvent(new Event('input', {bubbles: true}));
    return true;
}
"""


class SessionRenderer(Protocol):
    """Anything that can replay events and hand back a captured video file."""

    async def render(
        self,
        events: Sequence[Mapping[str, Any]],
        output_dir: Path,
        viewport: Viewport,
        on_replay: Optional[Callable[[], None]] = None,
    ) -> Path:
        ...


# Replay handlers, one per event kind

async def _replace_document(page: Page, record) -> None:
    await page.evaluate(REPLACE_DOCUMENT_JS, record.data.html)


async def _apply_dom_mutation(page: Page, record) -> None:
    data = record.data
    if data.html is not None:
        await page.evaluate(REPLACE_DOCUMENT_JS, data.html)
        return

    # The recorder SDK sends bare node names ("DIV", "#text"); only markup and
    # explicit selectors can be replayed
    added = [html for html in (_node_markup(node) for node in data.addedNodes) if html]
    removed = [selector for selector in (_node_selector(node) for node in data.removedNodes) if selector]

    if not added and not removed:
        logger.debug(f"[REPLAY] Mutation at {record.timestamp}ms carries no replayable nodes")
        return
    await page.evaluate(
        PATCH_DOCUMENT_JS,
        {"target": _target_selector(data.target), "added": added, "removed": removed},
    )


def _node_markup(node: Any) -> Optional[str]:
    if isinstance(node, dict):
        node = node.get("html")
    if isinstance(node, str) and node.lstrip().startswith("<"):
        return node
    return None


def _node_selector(node: Any) -> Optional[str]:
    if not isinstance(node, dict):
        return None
    if node.get("selector"):
        return node["selector"]
    if node.get("id"):
        return f"#{node['id']}"
    return None


def _target_selector(target: Optional[str]) -> Optional[str]:
    # A bare upper-case node name such as "BODY" is not a usable selector
    if not target or (target.isupper() and target.isalpha()):
        return None
    return target


async def _move_pointer(page: Page, record) -> None:
    await page.mouse.move(record.data.x, record.data.y)


async def _click(page: Page, record) -> None:
    await page.mouse.move(record.data.x, record.data.y)
    await page.mouse.click(record.data.x, record.data.y)


async def _scroll(page: Page, record) -> None:
    await page.evaluate(SCROLL_JS, [record.data.scrollX, record.data.scrollY])


async def _set_input(page: Page, record) -> None:
    data = record.data
    found = await page.evaluate(
        SET_INPUT_JS,
        {"selector": data.selector, "id": data.id, "value": data.value},
    )
    if not found:
        logger.debug(f"[REPLAY] Input target not found: {data.selector or data.id}")


async def _skip(page: Page, record) -> None:
    logger.debug(f"[REPLAY] Nothing to draw for {record.type} event at {record.timestamp}ms")


REPLAY_HANDLERS: Dict[EventType, Callable[[Page, Any], Awaitable[None]]] = {
    EventType.SNAPSHOT: _replace_document,
    EventType.DOM_MUTATION: _apply_dom_mutation,
    EventType.MOUSE_MOVE: _move_pointer,
    EventType.MOUSE_CLICK: _click,
    EventType.SCROLL: _scroll,
    EventType.INPUT: _set_input,
    EventType.VIEWPORT_RESIZE: _skip,
    EventType.NETWORK: _skip,
    EventType.CONSOLE: _skip,
    EventType.ERROR: _skip,
    EventType.CUSTOM: _skip,
}

_unhandled = set(EventType) - set(REPLAY_HANDLERS)
if _unhandled:
    raise RuntimeError(f"No replay handler for event types: {sorted(t.value for t in _unhandled)}")


@dataclass
class ReplayStats:
    """Outcome counters for one replay."""
    replayed: int = 0
    skipped: int = 0
    failed: int = 0


class ReplayDispatcher:
    """Dispatches events onto a page in stored order."""

    def __init__(self, delay_ms: int = 50, timing: str = "fixed", max_gap_ms: int = 2000):
        self.delay_ms = delay_ms
        self.timing = timing
        self.max_gap_ms = max_gap_ms

    def pause_before(self, previous_ts: Optional[int], timestamp: int) -> float:
        """Seconds to wait before dispatching the next event."""
        if self.timing != "recorded":
            return self.delay_ms / 1000
        if previous_ts is None:
            return 0.0
        gap = min(max(timestamp - previous_ts, 0), self.max_gap_ms)
        return gap / 1000

    async def replay(self, page: Page, events: Sequence[Mapping[str, Any]]) -> ReplayStats:
        stats = ReplayStats()
        previous_ts = None

        for raw in events:
            record = parse_event(raw)
            if record is None:
                stats.skipped += 1
                continue

            await asyncio.sleep(self.pause_before(previous_ts, record.timestamp))
            previous_ts = record.timestamp

            try:
                await REPLAY_HANDLERS[record.kind](page, record)
                stats.replayed += 1
            except Exception as e:
                if not _surface_alive(page):
                    raise RendererUnavailable(f"Browser went away during replay: {e}") from e
                stats.failed += 1
                logger.warning(f"[REPLAY] Failed to replay {record.type} event at {record.timestamp}ms: {e}")

        return stats


def _surface_alive(page: Page) -> bool:
    if page.is_closed():
        return False
    browser = page.context.browser
    return browser is None or browser.is_connected()


class PlaywrightRenderer:
    """Replays a session in headless Chromium with native video recording."""

    def __init__(self, settings: Settings, dispatcher: Optional[ReplayDispatcher] = None):
        self.settings = settings
        self.dispatcher = dispatcher or ReplayDispatcher(
            delay_ms=settings.replay_event_delay_ms,
            timing=settings.replay_timing,
            max_gap_ms=settings.replay_max_gap_ms,
        )

    async def render(
        self,
        events: Sequence[Mapping[str, Any]],
        output_dir: Path,
        viewport: Viewport,
        on_replay: Optional[Callable[[], None]] = None,
    ) -> Path:
        """
        Replay events and return the path of the captured WebM.

        Args:
            events: Stored events, replayed in order
            output_dir: Scratch directory for captured frames
            viewport: Browser viewport and video size
            on_replay: Called once the browser is up and replay begins

        Returns:
            Path to the recorded video

        Raises:
            RendererUnavailable: Browser failed to launch or died
        """
        size = {"width": viewport.width, "height": viewport.height}
        frames_dir = output_dir / "frames"
        frames_dir.mkdir(parents=True, exist_ok=True)
        retry_after = self.settings.render_retry_after_seconds

        try:
            async with async_playwright() as p:
                try:
                    browser = await p.chromium.launch(
                        headless=True,
                        args=[
                            "--disable-web-security",
                            "--disable-features=IsolateOrigins,site-per-process",
                        ],
                    )
                except PlaywrightError as e:
                    raise RendererUnavailable(f"Browser failed to launch: {e}", retry_after=retry_after) from e

                try:
                    context = await browser.new_context(
                        record_video_dir=str(frames_dir),
                        record_video_size=size,
                        viewport=size,
                    )
                    page = await context.new_page()
                    page.set_default_timeout(self.settings.render_page_timeout_ms)

                    # Forward browser console output for debugging
                    page.on("console", lambda msg: logger.debug(f"[REPLAY] Browser console [{msg.type}]: {msg.text}"))
                    page.on("pageerror", lambda err: logger.error(f"[REPLAY] Browser page error: {err}"))

                    await page.set_content(BLANK_DOCUMENT)
                    if on_replay:
                        on_replay()

                    logger.info(f"[REPLAY] Replaying {len(events)} events at {viewport.width}x{viewport.height}")
                    stats = await self.dispatcher.replay(page, events)
                    logger.info(
                        f"[REPLAY] Replay finished: {stats.replayed} replayed, "
                        f"{stats.skipped} skipped, {stats.failed} failed"
                    )

                    video = page.video
                    # Closing the context flushes the recording to disk
                    await context.close()
                    recorded = Path(await video.path()) if video else None
                finally:
                    await browser.close()
        except PlaywrightError as e:
            raise RendererUnavailable(f"Browser error during replay: {e}", retry_after=retry_after) from e

        if recorded is None or not recorded.exists():
            raise RendererUnavailable("Browser produced no video frames", retry_after=retry_after)
        return recorded

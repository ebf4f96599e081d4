"""
Player backend adapters.

Both backends expose the same control surface (load, play, pause, seek,
position, duration, destroy) and the same lifecycle events:

    ready        source loaded, controls are live
    error        source or backend failed, adapter stays unloaded
    time_update  current playback position changed

Each adapter instance owns its subscribers and background tasks, and
``destroy()`` releases all of them at once.
"""
import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set

import httpx

from watchparty.services.media import (
    MediaKind,
    PlayerError,
    WidgetApi,
    WidgetUnavailableError,
    detect_media_kind,
    extract_widget_video_id,
    fetch_manifest,
)

logger = logging.getLogger(__name__)

EventCallback = Callable[[str, Dict[str, Any]], Any]

WIDGET_POLL_INTERVAL = 0.5
MANIFEST_TIMEOUT = 10.0


class ClockMediaElement:
    """
    Headless playback surface. Position advances with the injected
    monotonic clock while playing and is clamped to the known duration.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.source: Optional[str] = None
        self.duration: Optional[float] = None
        self._position = 0.0
        self._started_at: Optional[float] = None

    @property
    def paused(self) -> bool:
        return self._started_at is None

    @property
    def current_time(self) -> float:
        position = self._position
        if self._started_at is not None:
            position += self._clock() - self._started_at
        if self.duration is not None:
            position = min(position, self.duration)
        return position

    def load(self, source: str, duration: Optional[float] = None):
        self.source = source
        self.duration = duration
        self._position = 0.0
        self._started_at = None

    def unload(self):
        self.source = None
        self.duration = None
        self._position = 0.0
        self._started_at = None

    async def play(self):
        if self.source is None:
            raise PlayerError("No source loaded")
        if self._started_at is None:
            self._started_at = self._clock()

    def pause(self):
        if self._started_at is not None:
            self._position = self.current_time
            self._started_at = None

    def seek(self, seconds: float):
        seconds = max(0.0, seconds)
        if self.duration is not None:
            seconds = min(seconds, self.duration)
        self._position = seconds
        if self._started_at is not None:
            self._started_at = self._clock()


class PlayerAdapter:
    kind: MediaKind

    def __init__(self, element=None):
        self.element = element if element is not None else ClockMediaElement()
        self.url: Optional[str] = None
        self.ready = False
        self.failed = False
        self.destroyed = False
        self._subscribers: Dict[str, List[EventCallback]] = {}
        self._pending: List[Callable[[], Any]] = []
        self._tasks: Set[asyncio.Task] = set()
        self._load_task: Optional[asyncio.Task] = None

    # Events

    def subscribe(self, event_name: str, callback: EventCallback):
        callbacks = self._subscribers.setdefault(event_name, [])
        if callback not in callbacks:
            callbacks.append(callback)

    def unsubscribe(self, event_name: str, callback: EventCallback):
        callbacks = self._subscribers.get(event_name, [])
        if callback in callbacks:
            callbacks.remove(callback)

    async def _emit(self, event_name: str, data: Optional[Dict[str, Any]] = None):
        data = data or {}
        for callback in list(self._subscribers.get(event_name, [])):
            if self.destroyed:
                return
            try:
                result = callback(event_name, data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"{event_name} subscriber failed on {self.kind.value} adapter")

    # Lifecycle

    def spawn(self, coro) -> asyncio.Task:
        """Runs a coroutine as a task owned by this adapter."""
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def start_loading(self, url: str) -> asyncio.Task:
        self._load_task = self.spawn(self.load_source(url))
        return self._load_task

    async def wait_loaded(self) -> bool:
        if self._load_task is None:
            return self.ready
        return await self._load_task

    async def load_source(self, url: str) -> bool:
        """
        Loads ``url`` and reports the outcome through ``ready`` or
        ``error``. Never raises for load failures.
        """
        if self.destroyed:
            return False
        self.url = url
        self.ready = False
        self.failed = False
        try:
            info = await self._load(url)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Failed to load {url} on {self.kind.value} adapter: {e}")
            self.failed = True
            self._pending.clear()
            self.element.unload()
            await self._emit("error", {"url": url, "message": str(e)})
            return False

        if self.destroyed:
            return False
        self.ready = True
        pending, self._pending = self._pending, []
        for call in pending:
            await call()
        await self._emit("ready", {"url": url, "duration": self.get_duration(), **(info or {})})
        return True

    async def _load(self, url: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def destroy(self):
        if self.destroyed:
            return
        self.destroyed = True
        self.ready = False
        self._subscribers.clear()
        self._pending.clear()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self.element.unload()
        logger.debug(f"Destroyed {self.kind.value} adapter for {self.url}")

    # Controls

    async def _control(self, call: Callable[[], Any]):
        if self.destroyed or self.failed:
            return
        if not self.ready:
            self._pending.append(call)
            return
        await call()

    async def play(self):
        await self._control(self._play)

    async def pause(self):
        await self._control(self._pause)

    async def seek(self, seconds: float):
        seconds = max(0.0, seconds)
        await self._control(lambda: self._seek(seconds))

    async def _play(self):
        try:
            await self.element.play()
        except Exception as e:
            logger.warning(f"Play rejected for {self.url}: {e}")
        await self._after_control()

    async def _pause(self):
        self.element.pause()
        await self._after_control()

    async def _seek(self, seconds: float):
        self.element.seek(seconds)
        await self._after_control()

    async def _after_control(self):
        pass

    @property
    def paused(self) -> bool:
        return not self.ready or self.element.paused

    def get_current_time(self) -> float:
        if not self.ready:
            return 0.0
        return self.element.current_time

    def get_duration(self) -> Optional[float]:
        if not self.ready:
            return None
        return self.element.duration


class AdaptiveStreamAdapter(PlayerAdapter):
    """
    Segmented-stream backend. Seek and play are held back until the
    manifest has been fetched and parsed.
    """

    kind = MediaKind.ADAPTIVE_STREAM

    def __init__(self, element=None, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__(element)
        self._http_client = http_client
        self.manifest = None

    async def _load(self, url: str):
        if self._http_client is not None:
            self.manifest = await fetch_manifest(url, self._http_client)
        else:
            async with httpx.AsyncClient(timeout=MANIFEST_TIMEOUT) as client:
                self.manifest = await fetch_manifest(url, client)

        self.element.load(url, self.manifest.duration)
        logger.info(f"Manifest parsed for {url}: {self.manifest.segment_count} segments, duration={self.manifest.duration}")
        return {"live": self.manifest.duration is None}

    async def _after_control(self):
        # Stream engines report position changes as events
        await self._emit("time_update", {"current_time": self.element.current_time})


class EmbeddedWidgetAdapter(PlayerAdapter):
    """
    Third-party widget backend. Controls wait for the shared widget API;
    the widget has no time events, so position is polled, and only when
    ``poll_time`` is set (the owner needs it, viewers don't).
    """

    kind = MediaKind.EMBEDDED_WIDGET

    def __init__(self, element=None, api: Optional[WidgetApi] = None,
                 poll_time: bool = False, poll_interval: float = WIDGET_POLL_INTERVAL):
        super().__init__(element)
        self._api = api
        self.poll_time = poll_time
        self.poll_interval = poll_interval
        self.video_id: Optional[str] = None
        self.title: Optional[str] = None

    @property
    def api(self) -> WidgetApi:
        return self._api or WidgetApi.shared()

    async def _load(self, url: str):
        self.video_id = extract_widget_video_id(url)
        if not self.video_id:
            raise PlayerError(f"Not a recognized widget URL: {url}")

        if not await self.api.wait_ready():
            raise WidgetUnavailableError(f"Widget API unavailable: {self.api.error}")
        try:
            info = await self.api.resolve(url)
        except PlayerError:
            raise
        except Exception as e:
            raise WidgetUnavailableError(f"Could not resolve widget video {self.video_id}: {e}") from e

        self.title = info.get("title")
        self.element.load(url, info.get("duration"))
        if self.poll_time:
            self.spawn(self._poll())
        return {"video_id": self.video_id, "title": self.title}

    async def _poll(self):
        last = None
        while True:
            await asyncio.sleep(self.poll_interval)
            current = self.element.current_time
            if current != last:
                last = current
                await self._emit("time_update", {"current_time": current})


def create_adapter(url: str, element=None, poll_time: bool = False, **options) -> PlayerAdapter:
    """Picks the backend once per source from the URL shape."""
    kind = detect_media_kind(url)
    if kind == MediaKind.EMBEDDED_WIDGET:
        return EmbeddedWidgetAdapter(element=element, api=options.get("api"), poll_time=poll_time,
                                     poll_interval=options.get("poll_interval", WIDGET_POLL_INTERVAL))
    return AdaptiveStreamAdapter(element=element, http_client=options.get("http_client"))

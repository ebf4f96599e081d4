import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional

from watchparty.models.room import PlaybackState, PlaybackUpdate, utcnow
from watchparty.sync.clock import INITIAL_SYNC_CAP, SyncMode, compute_target_position
from watchparty.sync.session import PlayerSession

logger = logging.getLogger(__name__)

# Periodic position samples bound viewer drift between explicit actions
SAMPLE_INTERVAL = 4.0

Publish = Callable[[PlaybackUpdate], Awaitable[None]]


class OwnerState(str, Enum):
    IDLE = 'idle'
    LOADED = 'loaded'
    PLAYING = 'playing'
    PAUSED = 'paused'


class OwnerController:
    """
    Authoritative side of a room. Turns local player actions into
    playback updates; every update carries a fresh ``updated_at``.
    """

    def __init__(self, room_id: str, publish: Publish, session: Optional[PlayerSession] = None,
                 clock: Callable[[], datetime] = utcnow, sample_interval: float = SAMPLE_INTERVAL,
                 cap: float = INITIAL_SYNC_CAP):
        self.room_id = room_id
        self.publish = publish
        self.session = session or PlayerSession()
        self.clock = clock
        self.sample_interval = sample_interval
        self.cap = cap
        self.state = OwnerState.IDLE
        self.is_playing = False
        self.last_update: Optional[PlaybackUpdate] = None
        self._sampler: Optional[asyncio.Task] = None
        self._acted_since_tick = False

    async def start(self, state: Optional[PlaybackState]):
        """Restores a stored room state, e.g. when the owner rejoins."""
        if state is None or not state.video_url:
            return
        self.is_playing = state.is_playing
        self.state = OwnerState.LOADED

        async def restore(event_name, data):
            adapter = self.session.adapter
            await adapter.seek(compute_target_position(state, self.clock(), SyncMode.INITIAL_SYNC, self.cap))
            if state.is_playing:
                await adapter.play()
                self._set_playing(True)
            else:
                self._set_playing(False)

        self.session.load(state.video_url, poll_time=True, on_ready=restore, on_error=self._on_load_error)

    async def set_source(self, url: str):
        url = url.strip()
        if not url:
            return
        self._stop_sampler()
        self.session.load(url, poll_time=True, on_error=self._on_load_error)
        self.state = OwnerState.LOADED
        self.is_playing = False
        await self._publish(PlaybackUpdate(
            room_id=self.room_id,
            video_url=url,
            is_playing=False,
            playback_time=0.0,
            updated_at=self.clock(),
        ))

    async def toggle_play_pause(self):
        adapter = self._ready_adapter()
        if adapter is None:
            return

        is_playing = adapter.paused
        if is_playing:
            await adapter.play()
        else:
            await adapter.pause()
        self._set_playing(is_playing)

        await self._publish(PlaybackUpdate(
            room_id=self.room_id,
            is_playing=is_playing,
            playback_time=adapter.get_current_time(),
            updated_at=self.clock(),
        ))

    async def seek(self, seconds: float):
        adapter = self._ready_adapter()
        if adapter is None:
            return

        target = max(0.0, seconds)
        duration = adapter.get_duration()
        if duration is not None:
            target = min(target, duration)
        await adapter.seek(target)

        await self._publish(PlaybackUpdate(
            room_id=self.room_id,
            playback_time=target,
            updated_at=self.clock(),
        ))

    async def seek_relative(self, delta_seconds: float):
        adapter = self._ready_adapter()
        if adapter is None:
            return
        await self.seek(adapter.get_current_time() + delta_seconds)

    def close(self):
        self._stop_sampler()
        self.session.close()
        self.state = OwnerState.IDLE
        self.is_playing = False

    async def _on_load_error(self, event_name, data):
        # Controls stay disabled until a new source is set
        logger.warning(f"Source failed to load in room {self.room_id}: {data.get('message')}")
        self._stop_sampler()
        self.state = OwnerState.IDLE
        self.is_playing = False

    def _ready_adapter(self):
        adapter = self.session.adapter
        if adapter is None or not adapter.ready:
            return None
        return adapter

    def _set_playing(self, is_playing: bool):
        self.is_playing = is_playing
        self.state = OwnerState.PLAYING if is_playing else OwnerState.PAUSED
        if is_playing:
            self._start_sampler()
        else:
            self._stop_sampler()

    def _start_sampler(self):
        if self._sampler is None or self._sampler.done():
            self._sampler = asyncio.create_task(self._sample_loop())

    def _stop_sampler(self):
        if self._sampler is not None:
            self._sampler.cancel()
            self._sampler = None

    async def _sample_loop(self):
        while True:
            await asyncio.sleep(self.sample_interval)
            adapter = self._ready_adapter()
            if not self.is_playing or adapter is None or adapter.paused:
                continue
            # An explicit action since the last tick already carried a fresh position
            if self._acted_since_tick:
                self._acted_since_tick = False
                continue
            await self._publish(PlaybackUpdate(
                room_id=self.room_id,
                playback_time=adapter.get_current_time(),
                updated_at=self.clock(),
            ), explicit=False)

    async def _publish(self, update: PlaybackUpdate, explicit: bool = True):
        self.last_update = update
        self._acted_since_tick = explicit
        try:
            await self.publish(update)
        except Exception as e:
            # Next action or sample re-asserts the state
            logger.error(f"Failed to publish playback update for room {self.room_id}: {e}")

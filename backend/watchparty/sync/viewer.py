import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from watchparty.models.room import PlaybackState, utcnow
from watchparty.sync.clock import INITIAL_SYNC_CAP, SyncMode, compute_target_position
from watchparty.sync.session import PlayerSession

logger = logging.getLogger(__name__)

# Smaller corrections would stutter more than the drift they fix
DRIFT_THRESHOLD = 1.5
PIP_RESUME_ATTEMPTS = 3
PIP_RESUME_DELAY = 0.3


class SyncStatus(str, Enum):
    UNSYNCED = 'unsynced'
    SYNCING = 'syncing'
    SYNCED = 'synced'


class ViewerSynchronizer:
    """
    Subordinate side of a room. Reconciles the local player against the
    owner's state on first load, on every new owner update, on returning
    to the foreground and on leaving picture-in-picture.
    """

    def __init__(self, session: Optional[PlayerSession] = None, clock: Callable[[], datetime] = utcnow,
                 drift_threshold: float = DRIFT_THRESHOLD, cap: float = INITIAL_SYNC_CAP,
                 pip_resume_attempts: int = PIP_RESUME_ATTEMPTS, pip_resume_delay: float = PIP_RESUME_DELAY):
        self.session = session or PlayerSession()
        self.clock = clock
        self.drift_threshold = drift_threshold
        self.cap = cap
        self.pip_resume_attempts = pip_resume_attempts
        self.pip_resume_delay = pip_resume_delay
        self.state: Optional[PlaybackState] = None
        self.status = SyncStatus.UNSYNCED
        self.visible = True
        self.in_pip = False
        self._pip_was_playing = False

    async def apply(self, state: PlaybackState):
        """Handles a state delivered by the feed (or the initial fetch)."""
        self.state = state

        adapter = self.session.adapter
        # A resubmitted source after a failed load gets a fresh adapter
        retry = (state.video_url and adapter is not None and adapter.failed
                 and state.updated_at != self.session.last_applied_updated_at)
        if state.video_url != self.session.source_url or retry:
            self.session.last_applied_updated_at = state.updated_at
            if not state.video_url:
                self.session.teardown()
                self.status = SyncStatus.UNSYNCED
                return
            # Initial sync happens once the new adapter reports ready
            self.status = SyncStatus.SYNCING
            self.session.load(state.video_url, on_ready=self._on_ready, on_error=self._on_error)
            return

        if state.updated_at == self.session.last_applied_updated_at:
            return
        self.session.last_applied_updated_at = state.updated_at
        await self.reconcile(SyncMode.INITIAL_SYNC)

    async def reconcile(self, mode: SyncMode) -> bool:
        """
        Seeks only when drift exceeds the threshold; play state is always
        forced to match. Returns True when a seek was issued.
        """
        adapter = self.session.adapter
        state = self.state
        if state is None or adapter is None or not adapter.ready:
            return False

        self.status = SyncStatus.SYNCING
        target = compute_target_position(state, self.clock(), mode, self.cap)
        duration = adapter.get_duration()
        if duration is not None:
            target = min(target, duration)

        drift = adapter.get_current_time() - target
        seeked = False
        if abs(drift) > self.drift_threshold:
            logger.debug(f"Drift {drift:+.2f}s, seeking to {target:.2f}s ({mode.value})")
            await adapter.seek(target)
            seeked = True

        if state.is_playing and adapter.paused:
            await adapter.play()
        elif not state.is_playing and not adapter.paused:
            await adapter.pause()

        self.status = SyncStatus.SYNCED
        return seeked

    async def _on_ready(self, event_name, data):
        await self.reconcile(SyncMode.INITIAL_SYNC)

    async def _on_error(self, event_name, data):
        self.status = SyncStatus.UNSYNCED

    async def on_visibility_change(self, visible: bool):
        self.visible = visible
        if visible:
            # OS media sessions may have suspended playback in the background
            await self.reconcile(SyncMode.BACKGROUND_RESUME)

    def on_enter_pip(self):
        adapter = self.session.adapter
        self.in_pip = True
        self._pip_was_playing = adapter is not None and adapter.ready and not adapter.paused

    async def on_exit_pip(self) -> bool:
        """
        Resyncs after leaving picture-in-picture and, if playback was
        running before, retries play while the platform leaves the element
        paused. Gives up silently after the last attempt.
        """
        self.in_pip = False
        was_playing, self._pip_was_playing = self._pip_was_playing, False
        await self.reconcile(SyncMode.BACKGROUND_RESUME)

        adapter = self.session.adapter
        if not was_playing or adapter is None:
            return False
        if self.state is not None and not self.state.is_playing:
            return False

        for attempt in range(self.pip_resume_attempts):
            if adapter.destroyed:
                return False
            if adapter.paused:
                await adapter.play()
            await asyncio.sleep(self.pip_resume_delay * (2 ** attempt))
            if not adapter.paused:
                return True

        logger.debug(f"Playback still paused after {self.pip_resume_attempts} resume attempts")
        return False

    def close(self):
        self.session.close()
        self.state = None
        self.status = SyncStatus.UNSYNCED

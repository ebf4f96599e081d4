"""
Playback clock model.

Derives where the owner's playback should be right now from the last
authoritative snapshot. Pure functions only; callers pass ``now``.
"""
from datetime import datetime
from enum import Enum

from watchparty.models.room import PlaybackState

# Late joiners never skip further ahead than this
INITIAL_SYNC_CAP = 10.0


class SyncMode(str, Enum):
    INITIAL_SYNC = 'initial-sync'
    BACKGROUND_RESUME = 'background-resume'


def elapsed_since(state: PlaybackState, now: datetime) -> float:
    """Seconds between the snapshot and ``now``, never negative."""
    return max(0.0, (now - state.updated_at).total_seconds())


def compute_target_position(
    state: PlaybackState,
    now: datetime,
    mode: SyncMode = SyncMode.INITIAL_SYNC,
    cap: float = INITIAL_SYNC_CAP,
) -> float:
    if not state.is_playing:
        return max(0.0, state.playback_time)

    elapsed = elapsed_since(state, now)
    if mode == SyncMode.INITIAL_SYNC:
        elapsed = min(elapsed, cap)
    return max(0.0, state.playback_time + elapsed)

from __future__ import annotations

from datetime import timedelta

import pytest

from watchparty.models.room import PlaybackState
from watchparty.sync.clock import INITIAL_SYNC_CAP, SyncMode, compute_target_position

from helpers import T0


def make_state(position: float, playing: bool) -> PlaybackState:
    return PlaybackState(room_id="r1", video_url="https://x/y.m3u8", is_playing=playing,
                         playback_time=position, updated_at=T0)


@pytest.mark.parametrize("elapsed", [0, 0.5, 3, 9.99, 10, 11, 600])
def test_initial_sync_stays_within_cap(elapsed):
    state = make_state(100.0, playing=True)
    target = compute_target_position(state, T0 + timedelta(seconds=elapsed), SyncMode.INITIAL_SYNC)
    assert state.playback_time <= target <= state.playback_time + INITIAL_SYNC_CAP


@pytest.mark.parametrize("mode", list(SyncMode))
@pytest.mark.parametrize("elapsed", [0, 5, 3600])
def test_paused_state_ignores_elapsed_time(mode, elapsed):
    state = make_state(42.0, playing=False)
    assert compute_target_position(state, T0 + timedelta(seconds=elapsed), mode) == 42.0


def test_late_joiner_catches_up_by_elapsed_time():
    state = make_state(100.0, playing=True)
    assert compute_target_position(state, T0 + timedelta(seconds=7)) == pytest.approx(107.0)


def test_long_delayed_join_is_capped():
    state = make_state(100.0, playing=True)
    assert compute_target_position(state, T0 + timedelta(seconds=45)) == pytest.approx(110.0)


def test_background_resume_is_uncapped():
    state = make_state(50.0, playing=True)
    target = compute_target_position(state, T0 + timedelta(seconds=30), SyncMode.BACKGROUND_RESUME)
    assert target == pytest.approx(80.0)


def test_freshly_loaded_paused_source_targets_zero():
    state = make_state(0.0, playing=False)
    assert compute_target_position(state, T0 + timedelta(seconds=5)) == 0.0


def test_clock_skew_never_moves_position_backwards():
    state = make_state(0.5, playing=True)
    for mode in SyncMode:
        assert compute_target_position(state, T0 - timedelta(seconds=20), mode) == 0.5


def test_custom_cap():
    state = make_state(10.0, playing=True)
    assert compute_target_position(state, T0 + timedelta(seconds=8), cap=2.0) == pytest.approx(12.0)

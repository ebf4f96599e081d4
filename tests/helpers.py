"""Shared test doubles and sample data."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from watchparty.sync.players import ClockMediaElement

T0 = datetime(2026, 3, 1, 20, 0, 0, tzinfo=timezone.utc)
STREAM_URL = "https://cdn.example.com/live/movie/index.m3u8"
WIDGET_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


def media_playlist(segments: int = 30, seconds: float = 10.0, ended: bool = True) -> str:
    lines = ["#EXTM3U", "#EXT-X-VERSION:3", f"#EXT-X-TARGETDURATION:{int(seconds)}"]
    for i in range(segments):
        lines += [f"#EXTINF:{seconds:.3f},", f"seg{i}.ts"]
    if ended:
        lines.append("#EXT-X-ENDLIST")
    return "\n".join(lines) + "\n"


class WallClock:
    """Settable stand-in for utcnow()."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class MonotonicClock:
    def __init__(self) -> None:
        self.value = 0.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class RecordingElement(ClockMediaElement):
    """Playback surface that records seeks and can swallow play() calls."""

    def __init__(self, clock, suspended_plays: int = 0) -> None:
        super().__init__(clock=clock)
        self.seeks: list[float] = []
        self.play_calls = 0
        self.suspended_plays = suspended_plays

    def seek(self, seconds: float) -> None:
        self.seeks.append(seconds)
        super().seek(seconds)

    async def play(self) -> None:
        self.play_calls += 1
        if self.suspended_plays > 0:
            self.suspended_plays -= 1
            return
        await super().play()


class FakeYoutubeDL:
    def __init__(self, duration: float = 212.0) -> None:
        self.duration = duration
        self.calls: list[str] = []

    def extract_info(self, url: str, download: bool = True) -> dict:
        self.calls.append(url)
        return {"id": "dQw4w9WgXcQ", "title": "Test Video", "duration": self.duration}

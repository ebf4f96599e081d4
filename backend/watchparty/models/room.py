from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    OWNER = 'owner'
    VIEWER = 'viewer'


class Room(BaseModel):
    id: str
    code: str
    owner_id: str
    created_at: datetime


class PlaybackState(BaseModel):
    room_id: str
    video_url: Optional[str] = None # None means nothing loaded
    is_playing: bool = False
    playback_time: float = Field(default=0.0, ge=0) # Position at updated_at
    updated_at: datetime = Field(default_factory=utcnow)


class PlaybackUpdate(BaseModel):
    """
    Partial state written by the owner. Fields left as None keep their
    stored value. Setting a source resets the play state and position.
    """
    room_id: str
    video_url: Optional[str] = None
    is_playing: Optional[bool] = None
    playback_time: Optional[float] = Field(default=None, ge=0)
    updated_at: datetime = Field(default_factory=utcnow)

    def apply_to(self, state: PlaybackState) -> PlaybackState:
        changes = {"updated_at": self.updated_at}
        if self.video_url is not None:
            changes.update(video_url=self.video_url, is_playing=False, playback_time=0.0)
        if self.is_playing is not None:
            changes["is_playing"] = self.is_playing
        if self.playback_time is not None:
            changes["playback_time"] = self.playback_time
        return state.model_copy(update=changes)


def role_for(room: Room, user_id: Optional[str]) -> Role:
    if user_id is not None and room.owner_id == user_id:
        return Role.OWNER
    return Role.VIEWER

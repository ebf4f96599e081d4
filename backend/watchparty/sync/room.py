import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from watchparty.models.room import PlaybackState, Role, Room, role_for, utcnow
from watchparty.sync.owner import OwnerController, Publish
from watchparty.sync.session import PlayerSession
from watchparty.sync.viewer import ViewerSynchronizer

logger = logging.getLogger(__name__)


class RoomSession:
    """
    One client's presence in a room: exactly one of an owner controller
    or a viewer synchronizer, chosen from the room's owner id.
    """

    def __init__(self, room: Room, user_id: Optional[str], publish: Publish,
                 element_factory: Optional[Callable[[], Any]] = None,
                 adapter_options: Optional[Dict[str, Any]] = None,
                 clock: Callable[[], datetime] = utcnow,
                 owner_options: Optional[Dict[str, Any]] = None,
                 viewer_options: Optional[Dict[str, Any]] = None):
        self.room = room
        self.user_id = user_id
        self.role = role_for(room, user_id)
        self.player = PlayerSession(element_factory=element_factory, adapter_options=adapter_options)
        self.owner: Optional[OwnerController] = None
        self.viewer: Optional[ViewerSynchronizer] = None

        if self.role == Role.OWNER:
            self.owner = OwnerController(room.id, publish, self.player, clock=clock, **(owner_options or {}))
        else:
            self.viewer = ViewerSynchronizer(self.player, clock=clock, **(viewer_options or {}))
        logger.info(f"Joined room {room.code} as {self.role.value}")

    @property
    def is_owner(self) -> bool:
        return self.role == Role.OWNER

    async def start(self, state: Optional[PlaybackState]):
        if self.owner:
            await self.owner.start(state)
        elif state is not None:
            await self.viewer.apply(state)

    async def on_playback_state(self, state: PlaybackState):
        if state.room_id != self.room.id:
            logger.warning(f"Ignoring playback state for room {state.room_id} in room {self.room.id}")
            return
        # The owner's own writes come back on the feed; it is already there
        if self.viewer:
            await self.viewer.apply(state)

    async def on_visibility_change(self, visible: bool):
        if self.viewer:
            await self.viewer.on_visibility_change(visible)

    def on_enter_pip(self):
        if self.viewer:
            self.viewer.on_enter_pip()

    async def on_exit_pip(self) -> bool:
        if self.viewer:
            return await self.viewer.on_exit_pip()
        return False

    def close(self):
        if self.owner:
            self.owner.close()
        if self.viewer:
            self.viewer.close()

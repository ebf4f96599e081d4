import asyncio
import logging
import os
from typing import Any, Dict, Optional

import socketio

from watchparty.models.room import PlaybackState, PlaybackUpdate, Room
from watchparty.sync.room import RoomSession

logger = logging.getLogger(__name__)

SERVER_URL = os.getenv("WATCHPARTY_SERVER_URL", "http://localhost:8000")
JOIN_TIMEOUT = 10.0


class JoinError(Exception):
    pass


class RoomClient:
    """
    Connects a RoomSession to the room server: owner updates go out as
    ``state_update``, ``playback_state`` broadcasts come back in.
    """

    def __init__(self, server_url: str = SERVER_URL, sio: Optional[socketio.AsyncClient] = None,
                 join_timeout: float = JOIN_TIMEOUT, **session_options):
        self.server_url = server_url
        self.sio = sio or socketio.AsyncClient()
        self.join_timeout = join_timeout
        self.session_options: Dict[str, Any] = session_options
        self.session: Optional[RoomSession] = None
        self.code: Optional[str] = None
        self.user_id: Optional[str] = None
        self._joined: Optional[asyncio.Future] = None

        self.sio.on("connect", self._on_connect)
        self.sio.on("room_joined", self._on_room_joined)
        self.sio.on("playback_state", self._on_playback_state)
        self.sio.on("error", self._on_error)

    async def join(self, code: str, user_id: Optional[str]) -> RoomSession:
        self.code = code
        self.user_id = user_id
        self._joined = asyncio.get_running_loop().create_future()

        if not self.sio.connected:
            # The connect handler sends the join request
            await self.sio.connect(self.server_url)
        else:
            await self._send_join()
        return await asyncio.wait_for(self._joined, self.join_timeout)

    async def leave(self):
        if self.session:
            self.session.close()
            self.session = None
        self.code = None
        if self.sio.connected:
            await self.sio.disconnect()

    async def publish(self, update: PlaybackUpdate):
        await self.sio.emit("state_update", update.model_dump(mode="json", exclude_none=True))

    async def _send_join(self):
        await self.sio.emit("join_room", {"code": self.code, "user_id": self.user_id})

    async def _on_connect(self):
        logger.info(f"Connected to {self.server_url}")
        # Reconnects need a fresh join, the server forgets sockets on disconnect
        if self.code:
            await self._send_join()

    async def _on_room_joined(self, data):
        room = Room.model_validate(data["room"])
        state = PlaybackState.model_validate(data["state"]) if data.get("state") else None

        if self.session is not None and self.session.room.id == room.id:
            # Rejoin after reconnect keeps the running session
            if state is not None:
                await self.session.on_playback_state(state)
        else:
            if self.session is not None:
                self.session.close()
            self.session = RoomSession(room, self.user_id, self.publish, **self.session_options)
            await self.session.start(state)

        if self._joined is not None and not self._joined.done():
            self._joined.set_result(self.session)

    async def _on_playback_state(self, data):
        if self.session is None:
            return
        try:
            state = PlaybackState.model_validate(data["state"])
        except (KeyError, ValueError) as e:
            logger.warning(f"Ignoring malformed playback state: {e}")
            return
        await self.session.on_playback_state(state)

    async def _on_error(self, data):
        message = (data or {}).get("message", "Unknown error")
        logger.warning(f"Server error: {message}")
        if self._joined is not None and not self._joined.done():
            self._joined.set_exception(JoinError(message))

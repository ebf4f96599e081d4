from __future__ import annotations

import asyncio

import pytest

from watchparty.client import JoinError, RoomClient
from watchparty.models.room import PlaybackState, PlaybackUpdate, Role, Room
from watchparty.sync.room import RoomSession
from watchparty.sync.viewer import SyncStatus

from helpers import STREAM_URL, T0, RecordingElement


class FakeSocket:
    """Stands in for socketio.AsyncClient; handlers are triggered by hand."""

    def __init__(self) -> None:
        self.handlers: dict = {}
        self.emitted: list[tuple[str, dict]] = []
        self.connected = False

    def on(self, event, handler=None):
        self.handlers[event] = handler

    async def connect(self, url):
        self.connected = True
        await self.handlers["connect"]()

    async def disconnect(self):
        self.connected = False

    async def emit(self, event, data=None):
        self.emitted.append((event, data))

    async def deliver(self, event, data):
        await self.handlers[event](data)


ROOM = Room(id="room-1", code="ABC123", owner_id="owner-1", created_at=T0)


def joined_payload(state: PlaybackState | None = None, role: str = "viewer") -> dict:
    return {
        "room": ROOM.model_dump(mode="json"),
        "state": state.model_dump(mode="json") if state else None,
        "role": role,
        "server_time": 0,
    }


@pytest.fixture
def socket() -> FakeSocket:
    return FakeSocket()


@pytest.fixture
def client(socket, wall_clock, mono, adapter_options):
    room_client = RoomClient("http://test", sio=socket, join_timeout=1.0,
                             element_factory=lambda: RecordingElement(clock=mono),
                             adapter_options=adapter_options, clock=wall_clock)
    yield room_client
    if room_client.session:
        room_client.session.close()


async def join(client: RoomClient, socket: FakeSocket, user_id: str, state=None) -> RoomSession:
    task = asyncio.create_task(client.join("ABC123", user_id))
    await asyncio.sleep(0)
    await socket.deliver("room_joined", joined_payload(state))
    return await task


async def test_join_sends_request_and_builds_viewer_session(client, socket):
    session = await join(client, socket, "viewer-1")

    assert socket.emitted == [("join_room", {"code": "ABC123", "user_id": "viewer-1"})]
    assert session.role == Role.VIEWER
    assert session.viewer is not None and session.owner is None


async def test_owner_session_publishes_state_updates(client, socket):
    session = await join(client, socket, "owner-1")
    assert session.is_owner

    await session.owner.set_source(STREAM_URL)
    event, data = socket.emitted[-1]
    assert event == "state_update"
    assert data["room_id"] == "room-1"
    assert data["video_url"] == STREAM_URL
    assert data["is_playing"] is False
    assert "updated_at" in data


async def test_publish_omits_unchanged_fields(client, socket):
    await client.publish(PlaybackUpdate(room_id="room-1", playback_time=12.5, updated_at=T0))
    assert socket.emitted[-1] == ("state_update", {
        "room_id": "room-1", "playback_time": 12.5, "updated_at": "2026-03-01T20:00:00Z",
    })


async def test_broadcast_states_drive_viewer(client, socket, wall_clock):
    session = await join(client, socket, "viewer-1")

    wall_clock.advance(4)
    state = PlaybackState(room_id="room-1", video_url=STREAM_URL, is_playing=True,
                          playback_time=60.0, updated_at=T0)
    await socket.deliver("playback_state", {"state": state.model_dump(mode="json")})
    await session.player.adapter.wait_loaded()

    assert session.viewer.status == SyncStatus.SYNCED
    assert session.player.adapter.get_current_time() == pytest.approx(64.0)


async def test_malformed_broadcast_is_ignored(client, socket):
    session = await join(client, socket, "viewer-1")
    await socket.deliver("playback_state", {"state": {"room_id": "room-1", "playback_time": "soon"}})
    assert session.viewer.state is None


async def test_join_error_raises(client, socket):
    task = asyncio.create_task(client.join("ABC123", "viewer-1"))
    await asyncio.sleep(0)
    await socket.deliver("error", {"message": "Room not found"})

    with pytest.raises(JoinError, match="Room not found"):
        await task


async def test_reconnect_rejoins_and_keeps_session(client, socket, wall_clock):
    session = await join(client, socket, "viewer-1")
    socket.emitted.clear()

    # Socket dropped and came back
    await socket.handlers["connect"]()
    assert socket.emitted == [("join_room", {"code": "ABC123", "user_id": "viewer-1"})]

    state = PlaybackState(room_id="room-1", video_url=STREAM_URL, updated_at=T0)
    await socket.deliver("room_joined", joined_payload(state))
    assert client.session is session
    assert session.viewer.state == state


async def test_leave_tears_down(client, socket):
    session = await join(client, socket, "viewer-1", PlaybackState(
        room_id="room-1", video_url=STREAM_URL, updated_at=T0))
    adapter = session.player.adapter

    await client.leave()
    assert adapter.destroyed
    assert client.session is None
    assert socket.connected is False


async def test_room_session_ignores_other_rooms_and_owner_echoes(wall_clock):
    async def publish(update):
        pass

    viewer = RoomSession(ROOM, "viewer-1", publish, clock=wall_clock)
    await viewer.on_playback_state(PlaybackState(room_id="other-room", video_url=STREAM_URL))
    assert viewer.viewer.state is None

    owner = RoomSession(ROOM, "owner-1", publish, clock=wall_clock)
    await owner.on_playback_state(PlaybackState(room_id="room-1", video_url=STREAM_URL))
    assert owner.player.adapter is None
    assert await owner.on_exit_pip() is False

    viewer.close()
    owner.close()

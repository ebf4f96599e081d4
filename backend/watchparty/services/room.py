import logging
import random
import string
import uuid
from typing import Optional

from watchparty.database import redis_client
from watchparty.models.room import PlaybackState, PlaybackUpdate, Room, utcnow

logger = logging.getLogger(__name__)

ROOM_TTL = 3600 * 10 # 10 hours
CODE_LENGTH = 6
CODE_ALPHABET = string.ascii_uppercase + string.digits


class OwnershipError(Exception):
    """Raised when a non-owner tries to write a room's playback state."""


def _new_code() -> str:
    return "".join(random.choices(CODE_ALPHABET, k=CODE_LENGTH))


async def create_room(owner_id: str) -> Room:
    room_id = str(uuid.uuid4())
    code = _new_code()
    # Claim the code atomically, pick another on collision
    while not await redis_client.set(f"room_code:{code}", room_id, nx=True, ex=ROOM_TTL):
        code = _new_code()

    room = Room(id=room_id, code=code, owner_id=owner_id, created_at=utcnow())
    state = PlaybackState(room_id=room_id, updated_at=room.created_at)

    await redis_client.set(f"room:{room.id}", room.model_dump_json(), ex=ROOM_TTL)
    await save_playback_state(state)
    logger.info(f"Created room {room.code} ({room.id}) for owner {owner_id}")
    return room


async def get_room(room_id: str) -> Optional[Room]:
    data = await redis_client.get(f"room:{room_id}")
    if not data:
        return None
    return Room.model_validate_json(data)


async def get_room_by_code(code: str) -> Optional[Room]:
    room_id = await redis_client.get(f"room_code:{code.upper()}")
    if not room_id:
        return None
    return await get_room(room_id)


async def get_playback_state(room_id: str) -> Optional[PlaybackState]:
    data = await redis_client.get(f"playback:{room_id}")
    if not data:
        return None
    return PlaybackState.model_validate_json(data)


async def save_playback_state(state: PlaybackState):
    await redis_client.set(f"playback:{state.room_id}", state.model_dump_json(), ex=ROOM_TTL)


async def update_playback_state(room: Room, user_id: Optional[str], update: PlaybackUpdate) -> PlaybackState:
    """
    Merges an owner update onto the stored record. Last commit wins; only
    the room owner may write.
    """
    if user_id != room.owner_id:
        raise OwnershipError(f"User {user_id} does not own room {room.code}")

    state = await get_playback_state(room.id) or PlaybackState(room_id=room.id)
    state = update.apply_to(state)
    await save_playback_state(state)
    return state

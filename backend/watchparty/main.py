import logging
import os
import time

import socketio
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError

from watchparty.models.room import PlaybackUpdate, role_for
from watchparty.services import room as room_service

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# SID -> (room_id, user_id) for the sockets that joined a room
sid_sessions = {}

app = FastAPI(title="watchparty")

# CORS Configuration
origins = os.getenv("ALLOWED_ORIGINS", "*").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

sio = socketio.AsyncServer(async_mode='asgi', cors_allowed_origins=origins if origins != ["*"] else "*")
socket_app = socketio.ASGIApp(sio, app)


class CreateRoomRequest(BaseModel):
    owner_id: str


# REST API
@app.post("/api/rooms")
async def create_room_endpoint(body: CreateRoomRequest):
    room = await room_service.create_room(body.owner_id)
    return {"room": room.model_dump(mode="json")}

@app.get("/api/rooms/{code}")
async def get_room_endpoint(code: str):
    room = await room_service.get_room_by_code(code)
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    state = await room_service.get_playback_state(room.id)
    return {
        "room": room.model_dump(mode="json"),
        "state": state.model_dump(mode="json") if state else None,
    }

# Socket Events
@sio.event
async def connect(sid, environ):
    logger.info(f"Client {sid} connected")

@sio.event
async def disconnect(sid):
    logger.info(f"Client {sid} disconnected")
    session = sid_sessions.pop(sid, None)
    if session:
        room_id, user_id = session
        logger.info(f"User {user_id} left room {room_id}")

@sio.event
async def join_room(sid, data):
    try:
        code = (data or {}).get("code")
        user_id = (data or {}).get("user_id")

        logger.info(f"Join request: sid={sid}, code={code}, user={user_id}")

        room = await room_service.get_room_by_code(code) if code else None
        if not room:
            logger.warning(f"Room {code} not found for join request")
            await sio.emit("error", {"message": "Room not found"}, to=sid)
            return

        state = await room_service.get_playback_state(room.id)
        sid_sessions[sid] = (room.id, user_id)
        await sio.enter_room(sid, room.id)

        await sio.emit("room_joined", {
            "room": room.model_dump(mode="json"),
            "state": state.model_dump(mode="json") if state else None,
            "role": role_for(room, user_id).value,
            "server_time": time.time(),
        }, to=sid)
    except Exception as e:
        logger.error(f"Error in join_room: {e}", exc_info=True)
        await sio.emit("error", {"message": "Internal server error during join"}, to=sid)

@sio.event
async def state_update(sid, data):
    """
    Owner writes playback state. The merged record is persisted and
    fanned out to everyone else in the room.
    """
    try:
        session = sid_sessions.get(sid)
        if not session:
            await sio.emit("error", {"message": "Join a room first"}, to=sid)
            return
        room_id, user_id = session

        try:
            update = PlaybackUpdate.model_validate({**(data or {}), "room_id": room_id})
        except ValidationError as e:
            logger.warning(f"Rejected malformed state update from {sid}: {e}")
            await sio.emit("error", {"message": "Invalid playback update"}, to=sid)
            return

        room = await room_service.get_room(room_id)
        if not room:
            await sio.emit("error", {"message": "Room not found"}, to=sid)
            return

        try:
            state = await room_service.update_playback_state(room, user_id, update)
        except room_service.OwnershipError as e:
            logger.warning(str(e))
            await sio.emit("error", {"message": "Only the room owner can control playback"}, to=sid)
            return

        await sio.emit("playback_state", {"state": state.model_dump(mode="json")}, room=room_id, skip_sid=sid)
    except Exception as e:
        logger.error(f"Error in state_update: {e}", exc_info=True)
        await sio.emit("error", {"message": "Internal server error during update"}, to=sid)

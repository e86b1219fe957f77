"""Room API endpoints -- drive the SOC room and stream its events.

GET  /api/room            -- current room snapshot
POST /api/room/connect    -- open a conversation (optional starting agent)
POST /api/room/disconnect -- end the conversation
POST /api/room/switch     -- manually put another agent on the line
POST /api/room/text       -- send a typed message
POST /api/room/image      -- attach a JPEG/PNG (multipart file upload)
POST /api/room/volume     -- set output volume 0-100
POST /api/room/sos        -- emergency escalation
GET  /api/room/events     -- SSE stream of room events

Orchestrator errors map to HTTP status codes in _raise_http_error.
"""

import logging

from fastapi import APIRouter, File, HTTPException, Request, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from soc_room.agents.errors import (
    AttachmentStorageError,
    ConfigurationError,
    InvalidTransitionError,
    OrchestratorError,
    SessionTransportError,
    TransitionAbortedError,
)
from soc_room.agents.registry import Role
from soc_room.agents.room import SOCRoom
from soc_room.models.conversation import RoomSnapshot, Turn
from soc_room.streaming.adapter import stream_room_events

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/room", tags=["Room"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class ConnectBody(BaseModel):
    """Request body for connect. Defaults to the Client Officer."""

    role: Role | None = None


class SwitchBody(BaseModel):
    role: Role


class TextBody(BaseModel):
    text: str = Field(min_length=1)


class VolumeBody(BaseModel):
    volume: int = Field(ge=0, le=100)


def _room(request: Request) -> SOCRoom:
    room = getattr(request.app.state, "room", None)
    if room is None:
        raise HTTPException(
            status_code=503,
            detail="Room not configured. Voice orchestration is unavailable.",
        )
    return room


def _raise_http_error(exc: OrchestratorError | ValueError) -> None:
    """Translate an orchestrator error into an HTTPException."""
    if isinstance(exc, ConfigurationError):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if isinstance(exc, (InvalidTransitionError, TransitionAbortedError)):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if isinstance(exc, (SessionTransportError, AttachmentStorageError)):
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    raise HTTPException(status_code=500, detail=str(exc)) from exc


@router.get("", response_model=RoomSnapshot)
async def get_room(request: Request) -> RoomSnapshot:
    """Return the current room snapshot."""
    return _room(request).snapshot()


@router.post("/connect", response_model=RoomSnapshot)
async def connect(request: Request, body: ConnectBody | None = None) -> RoomSnapshot:
    """Open the first voice session of a new conversation."""
    room = _room(request)
    try:
        return await room.connect(body.role if body else None)
    except OrchestratorError as exc:
        logger.warning("Connect failed: %s", exc)
        _raise_http_error(exc)


@router.post("/disconnect", response_model=RoomSnapshot)
async def disconnect(request: Request) -> RoomSnapshot:
    """End the live session and reset the room."""
    return await _room(request).disconnect()


@router.post("/switch", response_model=RoomSnapshot)
async def switch_agent(request: Request, body: SwitchBody) -> RoomSnapshot:
    """Manually put another agent on the line.

    Returns once the new session is live (after the settle delay).
    """
    room = _room(request)
    try:
        return await room.switch_agent(body.role)
    except OrchestratorError as exc:
        logger.warning("Switch to %s failed: %s", body.role.value, exc)
        _raise_http_error(exc)


@router.post("/text", response_model=RoomSnapshot)
async def send_text(request: Request, body: TextBody) -> RoomSnapshot:
    room = _room(request)
    try:
        return await room.send_text(body.text)
    except (OrchestratorError, ValueError) as exc:
        _raise_http_error(exc)


@router.post("/image", status_code=201)
async def upload_image(
    request: Request,
    file: UploadFile = File(...),  # noqa: B008
) -> Turn | None:
    """Attach an image to the conversation as a user turn.

    Returns the recorded turn, or null when it duplicated the previous one.
    """
    room = _room(request)
    data = await file.read()
    try:
        return await room.upload_image(
            filename=file.filename or "image",
            content_type=file.content_type or "",
            data=data,
        )
    except (OrchestratorError, ValueError) as exc:
        logger.warning("Image upload rejected: %s", exc)
        _raise_http_error(exc)


@router.post("/volume", response_model=RoomSnapshot)
async def set_volume(request: Request, body: VolumeBody) -> RoomSnapshot:
    room = _room(request)
    try:
        return await room.set_volume(body.volume)
    except (OrchestratorError, ValueError) as exc:
        _raise_http_error(exc)


@router.post("/sos", response_model=RoomSnapshot)
async def activate_sos(request: Request) -> RoomSnapshot:
    """Emergency: bring Security on the line immediately, then Contacts."""
    room = _room(request)
    try:
        return await room.activate_sos()
    except OrchestratorError as exc:
        logger.error("SOS activation failed: %s", exc)
        _raise_http_error(exc)


@router.get("/events")
async def room_events(request: Request) -> StreamingResponse:
    """Stream room events as SSE, starting with a STATE_CHANGED snapshot."""
    room = _room(request)
    return StreamingResponse(
        stream_room_events(room.broadcaster, room.snapshot),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )

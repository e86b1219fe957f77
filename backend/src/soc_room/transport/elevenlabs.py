"""ElevenLabs Conversational AI websocket transport.

One websocket per session: wss://.../v1/convai/conversation?agent_id=<id>.
Server messages are mapped onto transport events:

  conversation_initiation_metadata -> SessionConnected
  user_transcript                  -> TurnReceived(role="user")
  agent_response                   -> TurnReceived(role="agent") + speaking
  audio                            -> speaking (forwarded to audio_sink)
  interruption                     -> SpeakingChanged(False)
  ping                             -> answered with pong
  socket closed                    -> SessionDisconnected

The server never says when the agent stops talking, so speaking ends after
speaking_idle_seconds without a new audio chunk or agent response.
"""

from __future__ import annotations

import asyncio
import base64
import contextlib
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from soc_room.agents.errors import SessionStartError, SessionTransportError
from soc_room.transport.base import (
    EventCallback,
    SessionConnected,
    SessionDisconnected,
    SessionHandle,
    SpeakingChanged,
    TurnReceived,
)

logger = logging.getLogger(__name__)

AudioSink = Callable[[SessionHandle, bytes], Awaitable[None]]


@dataclass
class _LiveSession:
    handle: SessionHandle
    ws: websockets.ClientConnection
    on_event: EventCallback
    speaking: bool = False
    closing: bool = False
    reader: asyncio.Task | None = None
    idle_timer: asyncio.TimerHandle | None = None
    pending: set[asyncio.Task] = field(default_factory=set)


class ElevenLabsTransport:
    """SessionTransport backed by the ElevenLabs Conversational AI websocket.

    Usage:
        transport = ElevenLabsTransport(ws_url=settings.elevenlabs_ws_url,
                                        api_key=settings.elevenlabs_api_key)
        handle = await transport.start_session("agent-id", on_event)
        await transport.send_turn(handle, "Hello")
        await transport.end_session(handle)
    """

    def __init__(
        self,
        ws_url: str,
        api_key: str = "",
        speaking_idle_seconds: float = 0.8,
        connect_timeout: float = 10.0,
        audio_sink: AudioSink | None = None,
    ) -> None:
        self._ws_url = ws_url
        self._api_key = api_key
        self._speaking_idle_seconds = speaking_idle_seconds
        self._connect_timeout = connect_timeout
        self._audio_sink = audio_sink
        self._sessions: dict[str, _LiveSession] = {}

    def _session_url(self, agent_id: str) -> str:
        return f"{self._ws_url}?{urlencode({'agent_id': agent_id})}"

    async def start_session(
        self, agent_id: str, on_event: EventCallback
    ) -> SessionHandle:
        """Open the websocket and start reading server events."""
        headers = {"xi-api-key": self._api_key} if self._api_key else None
        try:
            async with asyncio.timeout(self._connect_timeout):
                ws = await websockets.connect(
                    self._session_url(agent_id), additional_headers=headers
                )
        except (OSError, TimeoutError, WebSocketException) as exc:
            logger.error("Could not open voice session for agent %s: %s", agent_id, exc)
            raise SessionStartError(
                agent_id, f"Could not open voice session: {exc}"
            ) from exc

        handle = SessionHandle(agent_id=agent_id)
        session = _LiveSession(handle=handle, ws=ws, on_event=on_event)
        self._sessions[handle.id] = session

        try:
            await ws.send(json.dumps({"type": "conversation_initiation_client_data"}))
        except WebSocketException as exc:
            self._sessions.pop(handle.id, None)
            with contextlib.suppress(WebSocketException):
                await ws.close()
            logger.error(
                "Voice session for agent %s closed during setup: %s", agent_id, exc
            )
            raise SessionStartError(
                agent_id, f"Voice session closed during setup: {exc}"
            ) from exc
        session.reader = asyncio.create_task(self._read_loop(session))
        logger.info("Voice session opened: agent=%s handle=%s", agent_id, handle.id)
        return handle

    async def end_session(self, handle: SessionHandle) -> None:
        session = self._sessions.pop(handle.id, None)
        if session is None:
            return
        session.closing = True
        self._cancel_idle_timer(session)
        try:
            await session.ws.close()
        except WebSocketException:
            logger.warning("Error closing voice session %s", handle.id, exc_info=True)
        if session.reader is not None and session.reader is not asyncio.current_task():
            session.reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await session.reader
        logger.info("Voice session closed: handle=%s", handle.id)

    async def send_turn(self, handle: SessionHandle, text: str) -> None:
        session = self._require(handle)
        try:
            await session.ws.send(json.dumps({"type": "user_message", "text": text}))
        except ConnectionClosed as exc:
            raise SessionTransportError(f"Voice session closed: {exc}") from exc

    async def set_output_volume(self, handle: SessionHandle, volume: int) -> None:
        if not 0 <= volume <= 100:
            msg = f"Volume must be between 0 and 100, got {volume}"
            raise ValueError(msg)
        self._require(handle).handle.output_volume = volume

    def _require(self, handle: SessionHandle) -> _LiveSession:
        session = self._sessions.get(handle.id)
        if session is None:
            msg = f"Voice session {handle.id} is not open"
            raise SessionTransportError(msg)
        return session

    # ------------------------------------------------------------------
    # Server events
    # ------------------------------------------------------------------

    async def _read_loop(self, session: _LiveSession) -> None:
        reason = "closed by server"
        try:
            async for raw in session.ws:
                try:
                    message = json.loads(raw)
                except (TypeError, json.JSONDecodeError):
                    logger.warning("Ignoring non-JSON voice message")
                    continue
                await self._handle_message(session, message)
        except ConnectionClosed as exc:
            reason = f"connection closed ({exc.rcvd.code if exc.rcvd else 'no code'})"
        finally:
            self._cancel_idle_timer(session)
            self._sessions.pop(session.handle.id, None)
            if not session.closing:
                logger.warning("Voice session %s ended: %s", session.handle.id, reason)
            await session.on_event(SessionDisconnected(session.handle, reason))

    async def _handle_message(self, session: _LiveSession, message: dict) -> None:
        msg_type = message.get("type")
        handle = session.handle

        if msg_type == "conversation_initiation_metadata":
            meta = message.get("conversation_initiation_metadata_event", {})
            logger.info(
                "Voice conversation started: conversation_id=%s",
                meta.get("conversation_id"),
            )
            await session.on_event(SessionConnected(handle))

        elif msg_type == "user_transcript":
            event = message.get("user_transcription_event", {})
            text = (event.get("user_transcript") or "").strip()
            if text:
                await session.on_event(
                    TurnReceived(handle, "user", text, _event_id(event))
                )

        elif msg_type == "agent_response":
            event = message.get("agent_response_event", {})
            text = (event.get("agent_response") or "").strip()
            await self._mark_speaking(session)
            if text:
                await session.on_event(
                    TurnReceived(handle, "agent", text, _event_id(event))
                )

        elif msg_type == "audio":
            event = message.get("audio_event", {})
            await self._mark_speaking(session)
            if self._audio_sink is not None and event.get("audio_base_64"):
                await self._audio_sink(handle, base64.b64decode(event["audio_base_64"]))

        elif msg_type == "interruption":
            self._cancel_idle_timer(session)
            await self._set_speaking(session, False)

        elif msg_type == "ping":
            event = message.get("ping_event", {})
            await session.ws.send(
                json.dumps({"type": "pong", "event_id": event.get("event_id")})
            )

        else:
            logger.debug("Unhandled voice message type: %s", msg_type)

    async def _mark_speaking(self, session: _LiveSession) -> None:
        await self._set_speaking(session, True)
        self._cancel_idle_timer(session)
        loop = asyncio.get_running_loop()
        session.idle_timer = loop.call_later(
            self._speaking_idle_seconds, self._on_idle, session
        )

    def _on_idle(self, session: _LiveSession) -> None:
        session.idle_timer = None
        task = asyncio.create_task(self._set_speaking(session, False))
        session.pending.add(task)
        task.add_done_callback(session.pending.discard)

    async def _set_speaking(self, session: _LiveSession, speaking: bool) -> None:
        if session.speaking == speaking or session.closing:
            return
        session.speaking = speaking
        await session.on_event(SpeakingChanged(session.handle, speaking))

    @staticmethod
    def _cancel_idle_timer(session: _LiveSession) -> None:
        if session.idle_timer is not None:
            session.idle_timer.cancel()
            session.idle_timer = None


def _event_id(event: dict) -> str | None:
    value = event.get("event_id")
    return str(value) if value is not None else None

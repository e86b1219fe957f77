"""Voice session transport contract.

The orchestrator drives exactly one live voice session at a time through a
SessionTransport. Each specialist is a separate backend agent, so switching
specialists means ending one session and starting another; the transport has
no notion of multiple agents.

Events are plain dataclasses delivered through the on_event callback given
to start_session(). Every event carries the handle of the session it came
from so the orchestrator can discard events from sessions it already ended.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Literal, Protocol
from uuid import uuid4


@dataclass
class SessionHandle:
    """Opaque reference to one live voice session."""

    agent_id: str
    id: str = field(default_factory=lambda: str(uuid4()))
    output_volume: int = 100


@dataclass(frozen=True)
class SessionConnected:
    handle: SessionHandle


@dataclass(frozen=True)
class SessionDisconnected:
    handle: SessionHandle
    reason: str = ""


@dataclass(frozen=True)
class TurnReceived:
    """A completed utterance from the user or the agent in this session."""

    handle: SessionHandle
    role: Literal["user", "agent"]
    text: str
    event_id: str | None = None


@dataclass(frozen=True)
class SpeakingChanged:
    handle: SessionHandle
    speaking: bool


TransportEvent = SessionConnected | SessionDisconnected | TurnReceived | SpeakingChanged

EventCallback = Callable[[TransportEvent], Awaitable[None]]


class SessionTransport(Protocol):
    """What the orchestrator needs from a voice backend."""

    async def start_session(
        self, agent_id: str, on_event: EventCallback
    ) -> SessionHandle:
        """Open a session for agent_id. Raises SessionStartError on failure."""
        ...

    async def end_session(self, handle: SessionHandle) -> None:
        """Close a session. Must be safe to call on an already closed handle."""
        ...

    async def send_turn(self, handle: SessionHandle, text: str) -> None:
        """Send a text turn into the session as if the user had said it."""
        ...

    async def set_output_volume(self, handle: SessionHandle, volume: int) -> None:
        """Set the session's output volume, 0-100."""
        ...

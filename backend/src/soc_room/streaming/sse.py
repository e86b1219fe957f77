"""SSE encoding helper and room event constructors.

Produces `data: {json}\\n\\n` formatted strings for the front-end EventSource
client. No `event:` field -- the client listens for the default "message"
event type and switches on the payload's "type".

Event type names:
  STATE_CHANGED, AGENT_CHANGED, TRANSCRIPT, SPEAKING, RESEARCH, ERROR
"""

import json

from soc_room.models.conversation import RoomSnapshot, Turn


def encode_sse(data: dict) -> str:
    """Format a dict as an SSE data event.

    The EventSource client listens for the default 'message' event type.
    No 'event:' field is needed.
    """
    return f"data: {json.dumps(data)}\n\n"


def state_changed_event(snapshot: RoomSnapshot) -> dict:
    """Construct a STATE_CHANGED event payload carrying the full snapshot."""
    return {"type": "STATE_CHANGED", "value": snapshot.model_dump(mode="json")}


def agent_changed_event(role: str | None, name: str | None = None) -> dict:
    """Construct an AGENT_CHANGED event payload. role is None on disconnect."""
    return {"type": "AGENT_CHANGED", "value": {"agent": role, "name": name}}


def transcript_event(turn: Turn) -> dict:
    return {"type": "TRANSCRIPT", "value": turn.model_dump(mode="json")}


def speaking_event(role: str | None, speaking: bool) -> dict:
    return {"type": "SPEAKING", "value": {"agent": role, "speaking": speaking}}


def research_event(result: str, current: bool = True) -> dict:
    """Construct a RESEARCH event payload.

    current is False when the lookup finished after the conversation it was
    started for had already ended.
    """
    return {"type": "RESEARCH", "value": {"result": result, "current": current}}


def error_event(message: str) -> dict:
    """Construct an ERROR event payload."""
    return {
        "type": "ERROR",
        "message": message,
    }

"""Tests for SSE encoding and the room event broadcaster."""

import json

from soc_room.models.conversation import ConnectionPhase, RoomSnapshot, Turn
from soc_room.streaming.adapter import RoomBroadcaster, stream_room_events
from soc_room.streaming.sse import (
    agent_changed_event,
    encode_sse,
    error_event,
    research_event,
    speaking_event,
    state_changed_event,
    transcript_event,
)


def _parse(sse: str) -> dict:
    assert sse.startswith("data: ")
    assert sse.endswith("\n\n")
    assert "event:" not in sse
    return json.loads(sse[len("data: ") :])


def test_encode_sse_format() -> None:
    assert encode_sse({"type": "ERROR", "message": "x"}) == (
        'data: {"type": "ERROR", "message": "x"}\n\n'
    )


def test_state_changed_event_serializes_snapshot() -> None:
    snapshot = RoomSnapshot(connectionPhase=ConnectionPhase.CONNECTED, currentAgent="security")

    payload = _parse(encode_sse(state_changed_event(snapshot)))

    assert payload["type"] == "STATE_CHANGED"
    assert payload["value"]["connectionPhase"] == "connected"
    assert payload["value"]["currentAgent"] == "security"


def test_transcript_event_serializes_turn() -> None:
    turn = Turn(threadId="t-1", speaker="user", text="Hello")

    payload = _parse(encode_sse(transcript_event(turn)))

    assert payload["type"] == "TRANSCRIPT"
    assert payload["value"]["text"] == "Hello"
    assert payload["value"]["threadId"] == "t-1"
    assert isinstance(payload["value"]["timestamp"], str)


def test_small_event_payloads() -> None:
    assert agent_changed_event(None) == {
        "type": "AGENT_CHANGED",
        "value": {"agent": None, "name": None},
    }
    assert speaking_event("travel", True)["value"] == {"agent": "travel", "speaking": True}
    assert research_event("intel", current=False)["value"] == {
        "result": "intel",
        "current": False,
    }
    assert error_event("boom") == {"type": "ERROR", "message": "boom"}


def test_publish_drops_oldest_for_lagging_subscriber() -> None:
    broadcaster = RoomBroadcaster(max_queue=2)
    queue = broadcaster.subscribe()

    for i in range(3):
        broadcaster.publish({"n": i})

    assert queue.get_nowait() == {"n": 1}
    assert queue.get_nowait() == {"n": 2}


async def test_stream_starts_with_snapshot_and_ends_on_close() -> None:
    broadcaster = RoomBroadcaster()
    snapshot = RoomSnapshot(connectionPhase=ConnectionPhase.DISCONNECTED)
    stream = stream_room_events(broadcaster, lambda: snapshot)

    first = _parse(await anext(stream))
    assert first["type"] == "STATE_CHANGED"
    assert broadcaster.subscriber_count == 1

    broadcaster.publish(error_event("voice backend unreachable"))
    broadcaster.close()

    rest = [_parse(chunk) async for chunk in stream]
    assert rest == [{"type": "ERROR", "message": "voice backend unreachable"}]
    assert broadcaster.subscriber_count == 0


async def test_stream_sends_keepalive_when_idle() -> None:
    broadcaster = RoomBroadcaster()
    snapshot = RoomSnapshot(connectionPhase=ConnectionPhase.DISCONNECTED)
    stream = stream_room_events(broadcaster, lambda: snapshot, keepalive_seconds=0.01)

    await anext(stream)
    assert await anext(stream) == ": keepalive\n\n"
    await stream.aclose()

    assert broadcaster.subscriber_count == 0

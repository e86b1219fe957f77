"""RoomBroadcaster -- fans room events out to every connected SSE client.

Each subscriber gets its own bounded asyncio.Queue. publish() never blocks
the orchestrator: when a slow client's queue is full its oldest event is
dropped. stream_room_events() turns one subscription into SSE strings,
starting with the current snapshot so a new client renders immediately.
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator, Callable

from opentelemetry import trace

from soc_room.models.conversation import RoomSnapshot
from soc_room.streaming.sse import encode_sse, state_changed_event

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("soc_room.streaming")

KEEPALIVE = ": keepalive\n\n"


class RoomBroadcaster:
    """In-process pub/sub for room event payloads."""

    def __init__(self, max_queue: int = 256) -> None:
        self._max_queue = max_queue
        self._subscribers: set[asyncio.Queue[dict | None]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[dict | None]:
        queue: asyncio.Queue[dict | None] = asyncio.Queue(maxsize=self._max_queue)
        self._subscribers.add(queue)
        logger.debug("SSE subscriber added (%d total)", len(self._subscribers))
        return queue

    def unsubscribe(self, queue: asyncio.Queue[dict | None]) -> None:
        self._subscribers.discard(queue)
        logger.debug("SSE subscriber removed (%d total)", len(self._subscribers))

    def publish(self, event: dict) -> None:
        for queue in list(self._subscribers):
            if queue.full():
                with contextlib.suppress(asyncio.QueueEmpty):
                    queue.get_nowait()
                logger.warning("SSE subscriber lagging, dropped oldest event")
            queue.put_nowait(event)

    def close(self) -> None:
        """Tell every open stream to finish."""
        for queue in list(self._subscribers):
            with contextlib.suppress(asyncio.QueueFull):
                queue.put_nowait(None)


async def stream_room_events(
    broadcaster: RoomBroadcaster,
    snapshot: Callable[[], RoomSnapshot],
    keepalive_seconds: float = 15.0,
) -> AsyncGenerator[str, None]:
    """Yield SSE strings for one client until the broadcaster closes.

    The OTel span is created INSIDE the async generator (not the endpoint
    handler) so span context is preserved across async generator boundaries.
    """
    with tracer.start_as_current_span("room_events_stream") as span:
        queue = broadcaster.subscribe()
        sent = 0
        try:
            yield encode_sse(state_changed_event(snapshot()))
            sent += 1
            while True:
                try:
                    async with asyncio.timeout(keepalive_seconds):
                        event = await queue.get()
                except TimeoutError:
                    yield KEEPALIVE
                    continue
                if event is None:
                    break
                yield encode_sse(event)
                sent += 1
        finally:
            broadcaster.unsubscribe(queue)
            span.set_attribute("stream.events_sent", sent)

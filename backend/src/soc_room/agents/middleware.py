"""Observability helpers for orchestrator transitions.

Produces an OTel span per transition (connect, routing decision, agent
switch, disconnect) with the orchestration state as span attributes, so a
consultation can be followed end to end in the trace backend. Debug-level
logs are kept as a secondary output channel.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from opentelemetry import trace

if TYPE_CHECKING:
    from opentelemetry.trace import Span

    from soc_room.agents.state import OrchestratorState

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("soc_room.agents")


def record_state(span: Span, state: OrchestratorState) -> None:
    """Copy the orchestration state onto a span as attributes."""
    span.set_attribute(
        "orchestrator.current_agent",
        state.current_agent.value if state.current_agent else "",
    )
    span.set_attribute("orchestrator.phase", state.connection_phase.value)
    span.set_attribute("orchestrator.is_consulting", state.is_consulting)
    span.set_attribute(
        "orchestrator.consult_queue", [role.value for role in state.consult_queue]
    )
    span.set_attribute(
        "orchestrator.pending_switch",
        state.pending_switch.value if state.pending_switch else "",
    )


@contextmanager
def transition_span(name: str, state: OrchestratorState) -> Iterator[Span]:
    """Wrap one transition in a span, recording state before and after."""
    with tracer.start_as_current_span(f"orchestrator_{name}") as span:
        span.set_attribute("transition.name", name)
        start = time.monotonic()
        try:
            yield span
        finally:
            record_state(span, state)
            elapsed_ms = (time.monotonic() - start) * 1000
            span.set_attribute("transition.duration_ms", elapsed_ms)
            logger.debug("[Transition] %s completed in %.1fms", name, elapsed_ms)

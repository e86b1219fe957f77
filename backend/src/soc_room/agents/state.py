"""Orchestrator state and the listener contract for state notifications."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING

from soc_room.agents.registry import Role
from soc_room.models.conversation import ConnectionPhase

if TYPE_CHECKING:
    from soc_room.models.conversation import Turn
    from soc_room.transport.base import SessionHandle


@dataclass
class OrchestratorState:
    """Everything the orchestrator decides with, in one explicit object.

    consult_queue holds specialists still waiting for a turn; pending_switch
    is the one target that takes over when the live agent stops speaking.
    A target always moves from the queue into pending_switch before a switch.
    """

    current_agent: Role | None = None
    consult_queue: list[Role] = field(default_factory=list)
    pending_switch: Role | None = None
    is_consulting: bool = False
    connection_phase: ConnectionPhase = ConnectionPhase.DISCONNECTED
    current_handle: SessionHandle | None = None
    is_speaking: bool = False
    panic_mode: bool = False
    consultation_start: int = 0
    awaiting_summary: bool = False

    def reset(self) -> None:
        """Restore every field to its initial value."""
        fresh = OrchestratorState()
        for f in fields(self):
            setattr(self, f.name, getattr(fresh, f.name))


class OrchestratorListener:
    """Receives orchestrator notifications. Override what you need.

    Callbacks other than on_research run inside the orchestrator's transition
    lock, so they must not call back into the orchestrator.
    """

    async def on_state_changed(self) -> None:
        return None

    async def on_agent_changed(self, role: Role | None) -> None:
        return None

    async def on_turn(self, turn: Turn) -> None:
        return None

    async def on_speaking_changed(self, role: Role | None, speaking: bool) -> None:
        return None

    async def on_research(self, result: str, *, current: bool) -> None:
        return None

    async def on_error(self, message: str) -> None:
        return None

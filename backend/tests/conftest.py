"""Shared test fixtures for the SOC room backend."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi import FastAPI

from soc_room.agents.errors import SessionStartError, SessionTransportError
from soc_room.agents.orchestrator import Orchestrator
from soc_room.agents.registry import Role, SpecialistRegistry
from soc_room.agents.room import SOCRoom
from soc_room.api.health import router as health_router
from soc_room.api.room import router as room_router
from soc_room.auth import APIKeyMiddleware
from soc_room.config import Settings
from soc_room.streaming.adapter import RoomBroadcaster
from soc_room.tools.research import ResearchGateway
from soc_room.transport.base import (
    EventCallback,
    SessionConnected,
    SessionDisconnected,
    SessionHandle,
    SpeakingChanged,
    TransportEvent,
    TurnReceived,
)

TEST_API_KEY = "test-api-key-12345"


class FakeTransport:
    """In-memory SessionTransport that records calls and emits scripted events.

    Agent IDs listed in fail_agent_ids make start_session raise
    SessionStartError, simulating a voice backend that cannot be reached.
    Agent IDs listed in crash_agent_ids raise a bare ConnectionError instead,
    like a socket dropped before the transport could wrap it.
    """

    def __init__(self) -> None:
        self.started: list[SessionHandle] = []
        self.ended: list[SessionHandle] = []
        self.sent: list[tuple[SessionHandle, str]] = []
        self.volumes: list[tuple[SessionHandle, int]] = []
        self.fail_agent_ids: set[str] = set()
        self.crash_agent_ids: set[str] = set()
        self._callbacks: dict[str, EventCallback] = {}

    async def start_session(
        self, agent_id: str, on_event: EventCallback
    ) -> SessionHandle:
        if agent_id in self.fail_agent_ids:
            raise SessionStartError(agent_id, f"Could not open voice session for {agent_id}")
        if agent_id in self.crash_agent_ids:
            raise ConnectionError(f"Connection to {agent_id} dropped")
        handle = SessionHandle(agent_id=agent_id)
        self.started.append(handle)
        self._callbacks[handle.id] = on_event
        return handle

    async def end_session(self, handle: SessionHandle) -> None:
        self.ended.append(handle)

    async def send_turn(self, handle: SessionHandle, text: str) -> None:
        if handle in self.ended:
            msg = f"Voice session {handle.id} is not open"
            raise SessionTransportError(msg)
        self.sent.append((handle, text))

    async def set_output_volume(self, handle: SessionHandle, volume: int) -> None:
        handle.output_volume = volume
        self.volumes.append((handle, volume))

    @property
    def live(self) -> SessionHandle:
        """Most recently started session."""
        return self.started[-1]

    def sent_to(self, handle: SessionHandle) -> list[str]:
        return [text for h, text in self.sent if h.id == handle.id]

    async def emit(self, event: TransportEvent) -> None:
        await self._callbacks[event.handle.id](event)


async def deliver(
    orchestrator: Orchestrator, transport: FakeTransport, *events: TransportEvent
) -> None:
    """Emit events through the transport and wait until they are handled."""
    for event in events:
        await transport.emit(event)
    await orchestrator.wait_idle()


async def agent_turn(
    orchestrator: Orchestrator, transport: FakeTransport, text: str
) -> None:
    """The live agent speaks a line and then falls silent."""
    handle = transport.live
    await deliver(
        orchestrator,
        transport,
        SpeakingChanged(handle, True),
        TurnReceived(handle, "agent", text),
        SpeakingChanged(handle, False),
    )
    await orchestrator.wait_for_switch()


async def user_turn(
    orchestrator: Orchestrator, transport: FakeTransport, text: str
) -> None:
    await deliver(orchestrator, transport, TurnReceived(transport.live, "user", text))


async def session_connected(orchestrator: Orchestrator, transport: FakeTransport) -> None:
    await deliver(orchestrator, transport, SessionConnected(transport.live))


async def hang_up(
    orchestrator: Orchestrator, transport: FakeTransport, reason: str = "closed by server"
) -> None:
    await deliver(orchestrator, transport, SessionDisconnected(transport.live, reason))


def agent_ids(*missing: Role) -> dict[Role, str | None]:
    return {role: None if role in missing else f"agent-{role.value}" for role in Role}


@pytest.fixture
def settings() -> Settings:
    """Provide test-safe settings with placeholder values."""
    return Settings(
        client_officer_agent_id="agent-clientOfficer",
        security_agent_id="agent-security",
        travel_agent_id="agent-travel",
        researcher_agent_id="agent-researcher",
        contacts_agent_id="agent-contacts",
        medical_agent_id="",
        key_vault_url="",
        api_key=TEST_API_KEY,
        _env_file=None,
    )


@pytest.fixture
def registry() -> SpecialistRegistry:
    """Every role configured."""
    return SpecialistRegistry.with_agent_ids(agent_ids())


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def mock_research() -> MagicMock:
    """ResearchGateway double that answers every query with fixed prose."""
    research = MagicMock(spec=ResearchGateway)
    research.is_configured = True
    research.query = AsyncMock(return_value="Local reports indicate protests downtown.")
    return research


@pytest.fixture
async def orchestrator(registry: SpecialistRegistry, transport: FakeTransport):
    """Orchestrator with no settle delay and no research gateway."""
    orch = Orchestrator(registry, transport, settle_delay=0)
    yield orch
    await orch.close()


@pytest.fixture
async def room(orchestrator: Orchestrator) -> SOCRoom:
    return SOCRoom(orchestrator, RoomBroadcaster())


@pytest.fixture
def room_app(room: SOCRoom) -> FastAPI:
    """FastAPI app with the real routers, auth middleware and a fake-backed room."""
    app = FastAPI()
    app.state.api_key = TEST_API_KEY
    app.state.room = room
    app.include_router(health_router)
    app.include_router(room_router)
    app.add_middleware(APIKeyMiddleware)
    return app


@pytest.fixture
def async_client(room_app: FastAPI) -> httpx.AsyncClient:
    """Create an httpx.AsyncClient bound to room_app, authenticated."""
    transport = httpx.ASGITransport(app=room_app)
    return httpx.AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": f"Bearer {TEST_API_KEY}"},
    )

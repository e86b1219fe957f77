"""SOCRoom: the boundary between the orchestrator and the presentation layer.

The room owns one Orchestrator, turns its notifications into SSE payloads
for every connected client, and exposes the operations the front end offers:
connect, disconnect, manual agent switch, typed text, image upload, volume
and the SOS button. snapshot() is the single read model for the UI.
"""

from __future__ import annotations

import logging

from azure.core.exceptions import AzureError

from soc_room.agents.errors import AttachmentStorageError, InvalidTransitionError
from soc_room.agents.orchestrator import Orchestrator
from soc_room.agents.registry import Role, Specialist
from soc_room.agents.state import OrchestratorListener
from soc_room.db.blob_storage import BlobStorageManager
from soc_room.models.conversation import (
    Attachment,
    ConnectionPhase,
    RoomSnapshot,
    TeamMember,
    TeamMemberStatus,
    Turn,
)
from soc_room.streaming.adapter import RoomBroadcaster
from soc_room.streaming.sse import (
    agent_changed_event,
    error_event,
    research_event,
    speaking_event,
    state_changed_event,
    transcript_event,
)

logger = logging.getLogger(__name__)

IMAGE_TYPES = ("image/jpeg", "image/png")
MAX_IMAGE_BYTES = 10 * 1024 * 1024


class SOCRoom(OrchestratorListener):
    """Front-end facing room wrapping a single orchestrator.

    Usage:
        room = SOCRoom(orchestrator, RoomBroadcaster(), blob_manager=None)
        await room.connect()
        await room.send_text("I think I'm being followed near the station")
        snapshot = room.snapshot()
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        broadcaster: RoomBroadcaster | None = None,
        blob_manager: BlobStorageManager | None = None,
        max_image_bytes: int = MAX_IMAGE_BYTES,
    ) -> None:
        self.orchestrator = orchestrator
        self.broadcaster = broadcaster or RoomBroadcaster()
        self.blob_manager = blob_manager
        self.max_image_bytes = max_image_bytes
        self.latest_research: str | None = None
        orchestrator.set_listener(self)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def connect(self, role: Role | str | None = None) -> RoomSnapshot:
        self.latest_research = None
        await self.orchestrator.connect(role)
        return self.snapshot()

    async def disconnect(self) -> RoomSnapshot:
        self.latest_research = None
        await self.orchestrator.disconnect()
        return self.snapshot()

    async def switch_agent(self, role: Role | str) -> RoomSnapshot:
        await self.orchestrator.switch_agent(role)
        return self.snapshot()

    async def send_text(self, text: str) -> RoomSnapshot:
        text = text.strip()
        if not text:
            msg = "Message text must not be empty"
            raise ValueError(msg)
        await self.orchestrator.send_text(text)
        return self.snapshot()

    async def upload_image(
        self, filename: str, content_type: str, data: bytes
    ) -> Turn | None:
        """Attach an image to the conversation as a user turn.

        Raises:
            ValueError: Not a JPEG/PNG, empty, or larger than max_image_bytes.
            InvalidTransitionError: No conversation is connected.
            AttachmentStorageError: The blob upload failed.
        """
        if content_type not in IMAGE_TYPES:
            msg = f"Unsupported image type '{content_type}', expected JPEG or PNG"
            raise ValueError(msg)
        if not data:
            msg = "Image is empty"
            raise ValueError(msg)
        if len(data) > self.max_image_bytes:
            msg = f"Image exceeds {self.max_image_bytes} bytes"
            raise ValueError(msg)
        if self.orchestrator.state.connection_phase != ConnectionPhase.CONNECTED:
            msg = "Cannot attach files while not connected"
            raise InvalidTransitionError(msg)

        url = None
        if self.blob_manager is not None:
            try:
                url = await self.blob_manager.upload_image(
                    data, filename, content_type, self.orchestrator.thread.id
                )
            except AzureError as exc:
                logger.error("Image upload failed for %s: %s", filename, exc)
                msg = f"Could not store image: {exc}"
                raise AttachmentStorageError(msg) from exc

        attachment = Attachment(
            filename=filename,
            mimeType=content_type,
            url=url,
            sizeBytes=len(data),
        )
        notice = f"The user shared an image: {filename}"
        if url:
            notice = f"{notice} ({url})"

        try:
            return await self.orchestrator.add_attachment_turn(
                f"[Image: {filename}]", [attachment], notice=notice
            )
        except InvalidTransitionError:
            if url and self.blob_manager is not None:
                await self.blob_manager.delete_image(url)
            raise

    async def set_volume(self, volume: int) -> RoomSnapshot:
        await self.orchestrator.set_volume(volume)
        return self.snapshot()

    async def activate_sos(self) -> RoomSnapshot:
        await self.orchestrator.activate_sos()
        return self.snapshot()

    async def close(self) -> None:
        await self.orchestrator.close()
        self.broadcaster.close()

    # ------------------------------------------------------------------
    # Read model
    # ------------------------------------------------------------------

    def member_status(self, specialist: Specialist) -> TeamMemberStatus:
        state = self.orchestrator.state
        role = specialist.role
        if role == state.current_agent and state.current_handle is not None:
            return TeamMemberStatus.SPEAKING if state.is_speaking else TeamMemberStatus.ACTIVE
        if role == state.pending_switch or role in state.consult_queue:
            return TeamMemberStatus.TASKED
        if role == Role.RESEARCHER and self.orchestrator.research_in_flight:
            return TeamMemberStatus.TASKED
        return TeamMemberStatus.IDLE

    def snapshot(self) -> RoomSnapshot:
        orchestrator = self.orchestrator
        state = orchestrator.state
        current = state.current_agent.value if state.current_agent else None
        return RoomSnapshot(
            connectionPhase=state.connection_phase,
            currentAgent=current,
            activeSpeaker=current if state.is_speaking else None,
            isConsulting=state.is_consulting,
            consultQueue=[role.value for role in state.consult_queue],
            pendingSwitch=state.pending_switch.value if state.pending_switch else None,
            isPanicMode=state.panic_mode,
            volume=orchestrator.volume,
            threadId=orchestrator.thread.id,
            teamMembers=[
                TeamMember(
                    id=specialist.role.value,
                    name=specialist.name,
                    role=specialist.title,
                    status=self.member_status(specialist),
                    configured=specialist.is_configured,
                )
                for specialist in orchestrator.registry
            ],
            turns=list(orchestrator.thread.turns),
            latestResearch=self.latest_research,
        )

    # ------------------------------------------------------------------
    # OrchestratorListener
    # ------------------------------------------------------------------

    async def on_state_changed(self) -> None:
        self.broadcaster.publish(state_changed_event(self.snapshot()))

    async def on_agent_changed(self, role: Role | None) -> None:
        name = self.orchestrator.registry.get(role).name if role else None
        self.broadcaster.publish(
            agent_changed_event(role.value if role else None, name)
        )

    async def on_turn(self, turn: Turn) -> None:
        self.broadcaster.publish(transcript_event(turn))

    async def on_speaking_changed(self, role: Role | None, speaking: bool) -> None:
        self.broadcaster.publish(
            speaking_event(role.value if role else None, speaking)
        )

    async def on_research(self, result: str, *, current: bool) -> None:
        if current:
            self.latest_research = result
        self.broadcaster.publish(research_event(result, current))

    async def on_error(self, message: str) -> None:
        self.broadcaster.publish(error_event(message))

"""Pydantic schemas for conversation turns and room snapshots.

Field names use camelCase to match the front-end wire format; these models
are serialized as-is into SSE events and API responses.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class ConnectionPhase(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class TeamMemberStatus(StrEnum):
    IDLE = "idle"
    TASKED = "tasked"
    ACTIVE = "active"
    SPEAKING = "speaking"


class Attachment(BaseModel):
    """Image attached to a user turn.

    url is None when no attachment storage is configured; the turn still
    records the filename and size so specialists can be told about it.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    type: Literal["image"] = "image"
    filename: str
    mimeType: Literal["image/jpeg", "image/png"]  # noqa: N815
    url: str | None = None
    sizeBytes: int = 0  # noqa: N815


class Turn(BaseModel):
    """One attributed utterance. Immutable once appended to a thread."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    threadId: str  # noqa: N815
    speaker: str
    text: str
    liveRole: str | None = None  # noqa: N815
    kind: Literal["utterance", "research"] = "utterance"
    eventId: str | None = None  # noqa: N815
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    attachments: list[Attachment] = Field(default_factory=list)


class TeamMember(BaseModel):
    """Per-specialist view shown in the team panel."""

    id: str
    name: str
    role: str
    status: TeamMemberStatus = TeamMemberStatus.IDLE
    configured: bool = True


class RoomSnapshot(BaseModel):
    """Everything the presentation layer needs to render the room."""

    connectionPhase: ConnectionPhase  # noqa: N815
    currentAgent: str | None = None  # noqa: N815
    activeSpeaker: str | None = None  # noqa: N815
    isConsulting: bool = False  # noqa: N815
    consultQueue: list[str] = Field(default_factory=list)  # noqa: N815
    pendingSwitch: str | None = None  # noqa: N815
    isPanicMode: bool = False  # noqa: N815
    volume: int = 80
    threadId: str | None = None  # noqa: N815
    teamMembers: list[TeamMember] = Field(default_factory=list)  # noqa: N815
    turns: list[Turn] = Field(default_factory=list)
    latestResearch: str | None = None  # noqa: N815

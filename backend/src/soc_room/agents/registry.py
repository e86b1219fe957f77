"""Specialist registry: role -> voice backend agent ID and routing keywords.

The registry is built once at startup from Settings and injected into the
orchestrator. Declaration order matters: it is the tie-break order used by
the intent classifier and the order specialists appear in room snapshots.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Literal

from soc_room.agents.errors import ConfigurationError

if TYPE_CHECKING:
    from soc_room.config import Settings

logger = logging.getLogger(__name__)


class Role(StrEnum):
    """Fixed set of agent roles. Values are the wire names used by clients."""

    CLIENT_OFFICER = "clientOfficer"
    SECURITY = "security"
    TRAVEL = "travel"
    RESEARCHER = "researcher"
    CONTACTS = "contacts"
    MEDICAL = "medical"


PRIMARY_ROLE = Role.CLIENT_OFFICER

USER = "user"
Speaker = Role | Literal["user"]


@dataclass(frozen=True)
class Specialist:
    """One agent role and the voice backend agent that plays it."""

    role: Role
    name: str
    title: str
    agent_id: str | None
    topic_keywords: tuple[str, ...] = ()
    trigger_keywords: tuple[str, ...] = ()

    @property
    def is_primary(self) -> bool:
        return self.role == PRIMARY_ROLE

    @property
    def is_configured(self) -> bool:
        return bool(self.agent_id)


# Topic keywords: two or more hits in one line make a specialist relevant.
# Trigger keywords: one hit after a handoff phrase names the handoff target.
_DEFAULTS: tuple[tuple[Role, str, str, tuple[str, ...], tuple[str, ...]], ...] = (
    (Role.CLIENT_OFFICER, "Client Officer", "Primary Contact", (), ()),
    (
        Role.SECURITY,
        "Security",
        "Threat Assessment",
        (
            "security", "threat", "threats", "danger", "dangerous", "unsafe",
            "safety", "attack", "suspicious", "crime", "theft", "robbery",
            "kidnapping", "violence", "weapon", "protest", "unrest", "followed",
        ),
        ("security", "threat", "safety", "protection"),
    ),
    (
        Role.TRAVEL,
        "Travel Expert",
        "Location Intel",
        (
            "travel", "trip", "flight", "airport", "hotel", "route", "routes",
            "destination", "visa", "border", "transport", "taxi", "train",
            "itinerary", "evacuation", "journey", "location",
        ),
        ("travel", "route", "flight", "logistics", "itinerary"),
    ),
    (
        Role.RESEARCHER,
        "Researcher",
        "Real-time Info",
        (
            "research", "news", "latest", "current", "information", "report",
            "reports", "update", "updates", "intel", "intelligence", "data",
            "look up", "find out",
        ),
        ("research", "researcher", "intel", "intelligence", "look up"),
    ),
    (
        Role.CONTACTS,
        "Contact Agent",
        "Local Resources",
        (
            "contact", "contacts", "embassy", "consulate", "police", "lawyer",
            "phone", "number", "local", "authorities", "emergency services",
            "call",
        ),
        ("contacts", "contact", "embassy", "consulate", "local resources"),
    ),
    (
        Role.MEDICAL,
        "Medical",
        "Health & First Aid",
        (
            "medical", "doctor", "hospital", "clinic", "injury", "injured",
            "sick", "illness", "medicine", "medication", "pain", "bleeding",
            "ambulance", "health", "symptoms", "allergy",
        ),
        ("medical", "doctor", "health", "hospital"),
    ),
)


class SpecialistRegistry:
    """Ordered, immutable collection of Specialists.

    Usage:
        registry = SpecialistRegistry.from_settings(get_settings())
        security = registry.get(Role.SECURITY)
        for specialist in registry.non_primary():
            ...
    """

    def __init__(self, specialists: list[Specialist]) -> None:
        roles = [s.role for s in specialists]
        if len(set(roles)) != len(roles):
            msg = f"Duplicate roles in registry: {roles}"
            raise ValueError(msg)
        if PRIMARY_ROLE not in roles:
            msg = "Registry must declare the primary role"
            raise ValueError(msg)
        self._specialists: tuple[Specialist, ...] = tuple(specialists)
        self._by_role: dict[Role, Specialist] = {s.role: s for s in specialists}

    @classmethod
    def from_settings(cls, settings: Settings) -> SpecialistRegistry:
        """Build the default registry with agent IDs taken from settings."""
        specialists = [
            Specialist(
                role=role,
                name=name,
                title=title,
                agent_id=settings.agent_id_for(role.value),
                topic_keywords=topics,
                trigger_keywords=triggers,
            )
            for role, name, title, topics, triggers in _DEFAULTS
        ]
        registry = cls(specialists)
        missing = [s.role.value for s in specialists if not s.is_configured]
        if missing:
            logger.warning("Agents without a voice backend ID: %s", missing)
        return registry

    @classmethod
    def with_agent_ids(cls, agent_ids: dict[Role, str | None]) -> SpecialistRegistry:
        """Build the default registry from an explicit role -> agent ID map."""
        return cls(
            [
                Specialist(
                    role=role,
                    name=name,
                    title=title,
                    agent_id=agent_ids.get(role),
                    topic_keywords=topics,
                    trigger_keywords=triggers,
                )
                for role, name, title, topics, triggers in _DEFAULTS
            ]
        )

    def __iter__(self) -> Iterator[Specialist]:
        return iter(self._specialists)

    def __len__(self) -> int:
        return len(self._specialists)

    def __contains__(self, role: object) -> bool:
        return role in self._by_role

    @property
    def primary(self) -> Specialist:
        return self._by_role[PRIMARY_ROLE]

    def get(self, role: Role | str) -> Specialist:
        """Return the Specialist for a role.

        Raises:
            ConfigurationError: If the role is not declared in this registry.
        """
        try:
            return self._by_role[Role(role)]
        except (ValueError, KeyError):
            raise ConfigurationError(
                str(role), f"Unknown agent role '{role}'"
            ) from None

    def require_configured(self, role: Role | str) -> Specialist:
        """Return the Specialist for a role, failing if it has no agent ID."""
        specialist = self.get(role)
        if not specialist.is_configured:
            raise ConfigurationError(specialist.role.value)
        return specialist

    def non_primary(self) -> tuple[Specialist, ...]:
        """Specialists other than the primary, in declaration order."""
        return tuple(s for s in self._specialists if not s.is_primary)

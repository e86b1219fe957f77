"""Unit tests for the specialist registry and its Settings wiring."""

import logging

import pytest

from soc_room.agents.errors import ConfigurationError
from soc_room.agents.registry import PRIMARY_ROLE, Role, Specialist, SpecialistRegistry
from soc_room.config import Settings


def test_from_settings_maps_agent_ids(settings: Settings) -> None:
    registry = SpecialistRegistry.from_settings(settings)

    assert registry.get(Role.SECURITY).agent_id == "agent-security"
    assert registry.primary.agent_id == "agent-clientOfficer"
    assert not registry.get(Role.MEDICAL).is_configured


def test_from_settings_warns_about_unconfigured_roles(
    settings: Settings, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.WARNING):
        SpecialistRegistry.from_settings(settings)

    assert "medical" in caplog.text


def test_declaration_order_is_stable(registry: SpecialistRegistry) -> None:
    assert [s.role for s in registry] == list(Role)
    assert [s.role for s in registry.non_primary()] == list(Role)[1:]


def test_get_accepts_wire_names(registry: SpecialistRegistry) -> None:
    assert registry.get("travel").name == "Travel Expert"
    assert "travel" in registry


def test_get_unknown_role_raises(registry: SpecialistRegistry) -> None:
    with pytest.raises(ConfigurationError, match="Unknown agent role"):
        registry.get("pilot")


def test_require_configured_rejects_missing_agent_id() -> None:
    registry = SpecialistRegistry.with_agent_ids({PRIMARY_ROLE: "agent-primary"})

    with pytest.raises(ConfigurationError) as exc_info:
        registry.require_configured(Role.MEDICAL)

    assert exc_info.value.role == "medical"


def test_registry_requires_primary() -> None:
    with pytest.raises(ValueError, match="primary"):
        SpecialistRegistry([Specialist(Role.SECURITY, "Security", "Threat", "a")])


def test_registry_rejects_duplicate_roles() -> None:
    primary = Specialist(PRIMARY_ROLE, "Client Officer", "Primary Contact", "a")

    with pytest.raises(ValueError, match="Duplicate"):
        SpecialistRegistry([primary, primary])


def test_settings_agent_id_for_unknown_role(settings: Settings) -> None:
    assert settings.agent_id_for("pilot") is None
    assert settings.agent_id_for("medical") is None
    assert settings.agent_id_for("travel") == "agent-travel"

"""Unit tests for the intent classifier predicates."""

import pytest

from soc_room.agents.classifier import (
    is_handoff_signal,
    is_uncertain,
    keyword_matches,
    relevant_specialists,
)
from soc_room.agents.registry import Role, SpecialistRegistry


def _roles(specialists) -> list[Role]:
    return [s.role for s in specialists]


# ---------------------------------------------------------------------------
# relevant_specialists
# ---------------------------------------------------------------------------


def test_two_keyword_hits_make_a_specialist_relevant(registry: SpecialistRegistry) -> None:
    text = "There is a security threat near the hotel and my flight is delayed"

    assert _roles(relevant_specialists(text, registry)) == [Role.SECURITY, Role.TRAVEL]


def test_single_keyword_hit_is_not_enough(registry: SpecialistRegistry) -> None:
    """'security' and 'threat' hit, but 'travel' alone does not."""
    text = "I think there's a security threat and I need to travel"

    assert _roles(relevant_specialists(text, registry)) == [Role.SECURITY]


def test_result_follows_registry_order_not_text_order(registry: SpecialistRegistry) -> None:
    text = "The hospital doctor said the airport route is dangerous and a threat"

    assert _roles(relevant_specialists(text, registry)) == [
        Role.SECURITY,
        Role.TRAVEL,
        Role.MEDICAL,
    ]


def test_repeated_keyword_counts_once(registry: SpecialistRegistry) -> None:
    text = "threat threat threat"

    assert relevant_specialists(text, registry) == []


def test_primary_is_never_relevant(registry: SpecialistRegistry) -> None:
    text = "client officer primary contact security threat"

    assert Role.CLIENT_OFFICER not in _roles(relevant_specialists(text, registry))


def test_keywords_match_whole_words_only() -> None:
    assert keyword_matches("Threatening weather", ("threat",)) == []
    assert keyword_matches("A THREAT was reported", ("threat",)) == ["threat"]


def test_keyword_matches_multiword_phrase() -> None:
    assert keyword_matches("Can you look up the news?", ("news", "look up")) == [
        "news",
        "look up",
    ]


# ---------------------------------------------------------------------------
# is_handoff_signal
# ---------------------------------------------------------------------------


def test_handoff_from_primary_names_specialist(registry: SpecialistRegistry) -> None:
    text = "Let me check with our security team about this threat"

    specialist = is_handoff_signal(text, Role.CLIENT_OFFICER, registry)

    assert specialist is not None
    assert specialist.role == Role.SECURITY


@pytest.mark.parametrize(
    "from_agent", [Role.SECURITY, Role.TRAVEL, Role.MEDICAL, "user", None]
)
def test_handoff_ignored_unless_primary_speaks(
    registry: SpecialistRegistry, from_agent
) -> None:
    text = "Let me check with our security team about this threat"

    assert is_handoff_signal(text, from_agent, registry) is None


def test_handoff_phrase_without_trigger_keyword(registry: SpecialistRegistry) -> None:
    text = "Let me check with someone and get back to you"

    assert is_handoff_signal(text, Role.CLIENT_OFFICER, registry) is None


def test_trigger_keyword_without_handoff_phrase(registry: SpecialistRegistry) -> None:
    text = "Your security is our priority"

    assert is_handoff_signal(text, Role.CLIENT_OFFICER, registry) is None


def test_handoff_tie_breaks_by_registry_order(registry: SpecialistRegistry) -> None:
    text = "I'll bring in medical and travel colleagues"

    specialist = is_handoff_signal(text, Role.CLIENT_OFFICER, registry)

    assert specialist is not None
    assert specialist.role == Role.TRAVEL


def test_handoff_phrase_is_case_insensitive(registry: SpecialistRegistry) -> None:
    text = "I WILL CONNECT YOU WITH OUR EMBASSY LIAISON"

    specialist = is_handoff_signal(text, Role.CLIENT_OFFICER, registry)

    assert specialist is not None
    assert specialist.role == Role.CONTACTS


# ---------------------------------------------------------------------------
# is_uncertain
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "text",
    [
        "I'm not sure about that area",
        "The situation is unclear right now",
        "Let me consult the team",
        "Honestly, I don't know",
    ],
)
def test_uncertainty_phrases(text: str) -> None:
    assert is_uncertain(text)


def test_confident_statement_is_not_uncertain() -> None:
    assert not is_uncertain("The route is safe during daylight hours.")

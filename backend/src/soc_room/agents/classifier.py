"""Intent classifier: pure, deterministic routing predicates.

Routing decisions are made from a single line of dialogue with fixed phrase
and keyword lists, no model calls. Given the same lists and registry order,
the same text always routes the same way, which keeps handoffs auditable.

- is_handoff_signal(): the primary announced a handoff to a named specialist
- relevant_specialists(): specialists whose topics the line covers (>= 2 hits)
- is_uncertain(): the speaker signalled it needs to consult someone
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache

from soc_room.agents.registry import Role, Specialist, SpecialistRegistry

logger = logging.getLogger(__name__)

# Matched as case-insensitive substrings.
HANDOFF_PHRASES: tuple[str, ...] = (
    "let me check with",
    "consult",
    "transfer you to",
    "bring in",
    "defer to",
    "connect you with",
    "hand you over to",
    "loop in",
    "pass you to",
    "involve our",
)

UNCERTAINTY_PHRASES: tuple[str, ...] = (
    "i'm not sure",
    "i am not sure",
    "not certain",
    "unclear",
    "let me consult",
    "i don't know",
    "i do not know",
    "hard to say",
    "need to verify",
    "need more information",
)

RELEVANCE_THRESHOLD = 2


@lru_cache(maxsize=512)
def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    """Whole-word (or whole-phrase) pattern for a keyword."""
    return re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE)


def keyword_matches(text: str, keywords: tuple[str, ...]) -> list[str]:
    """Return the keywords found in text, in declaration order."""
    return [kw for kw in keywords if _keyword_pattern(kw).search(text)]


def _contains_phrase(text: str, phrases: tuple[str, ...]) -> str | None:
    lowered = text.lower()
    for phrase in phrases:
        if phrase in lowered:
            return phrase
    return None


def is_handoff_signal(
    text: str,
    from_agent: Role | str | None,
    registry: SpecialistRegistry,
) -> Specialist | None:
    """Return the specialist the primary is handing off to, if any.

    Only the primary can hand off. The handoff phrase must be present, then
    the first non-primary specialist (registry order) with a trigger keyword
    in the text wins.
    """
    if from_agent != registry.primary.role:
        return None

    phrase = _contains_phrase(text, HANDOFF_PHRASES)
    if phrase is None:
        return None

    for specialist in registry.non_primary():
        hits = keyword_matches(text, specialist.trigger_keywords)
        if hits:
            logger.debug(
                "Handoff signal %r -> %s (keywords=%s)",
                phrase,
                specialist.role.value,
                hits,
            )
            return specialist
    return None


def relevant_specialists(
    text: str, registry: SpecialistRegistry
) -> list[Specialist]:
    """Return non-primary specialists with >= 2 topic keyword matches."""
    relevant: list[Specialist] = []
    for specialist in registry.non_primary():
        hits = keyword_matches(text, specialist.topic_keywords)
        if len(hits) >= RELEVANCE_THRESHOLD and specialist not in relevant:
            relevant.append(specialist)
    return relevant


def is_uncertain(text: str) -> bool:
    """True if the text contains an uncertainty phrase."""
    return _contains_phrase(text, UNCERTAINTY_PHRASES) is not None

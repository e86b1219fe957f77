"""Conversation thread store shared by every agent in the room.

Each specialist runs in its own voice session with no memory of the others,
so the thread is the only place the whole multi-agent conversation lives.
It is rendered into a context payload whenever a specialist joins late.
"""

from __future__ import annotations

import logging
from uuid import uuid4

from soc_room.agents.errors import ConfigurationError
from soc_room.agents.registry import USER, Role, Specialist, SpecialistRegistry
from soc_room.models.conversation import Attachment, Turn

logger = logging.getLogger(__name__)


class ConversationThread:
    """Ordered, deduplicated log of every turn in the current conversation.

    A turn is dropped as a duplicate when it carries a transport event ID
    that was already seen, or when it repeats the speaker and text of the
    immediately preceding turn (the voice backend echoes typed messages).
    """

    def __init__(self, registry: SpecialistRegistry) -> None:
        self._registry = registry
        self.id = str(uuid4())
        self._turns: list[Turn] = []
        self._event_ids: set[str] = set()
        self.original_query: str | None = None

    def __len__(self) -> int:
        return len(self._turns)

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    @property
    def is_empty(self) -> bool:
        return not self._turns

    def append(
        self,
        speaker: Role | str,
        text: str,
        *,
        live_role: Role | None = None,
        event_id: str | None = None,
        kind: str = "utterance",
        attachments: list[Attachment] | None = None,
    ) -> Turn | None:
        """Append a turn, returning it, or None if it is a duplicate."""
        speaker_value = str(speaker)
        if event_id is not None and event_id in self._event_ids:
            logger.debug("Dropping duplicate turn event_id=%s", event_id)
            return None
        if self._turns:
            last = self._turns[-1]
            if last.speaker == speaker_value and last.text == text and not attachments:
                logger.debug("Dropping repeated turn from %s", speaker_value)
                return None

        turn = Turn(
            threadId=self.id,
            speaker=speaker_value,
            text=text,
            liveRole=str(live_role) if live_role is not None else None,
            kind=kind,
            eventId=event_id,
            attachments=attachments or [],
        )
        self._turns.append(turn)
        if event_id is not None:
            self._event_ids.add(event_id)
        return turn

    def record_original_query(self, text: str) -> bool:
        """Keep the first user query of the conversation. Returns True if set."""
        if self.original_query is not None:
            return False
        self.original_query = text
        return True

    def clear(self) -> None:
        """Drop every turn and start a new thread ID."""
        self.id = str(uuid4())
        self._turns.clear()
        self._event_ids.clear()
        self.original_query = None

    def _label(self, turn: Turn) -> str:
        if turn.kind == "research":
            return "RESEARCH"
        if turn.speaker == USER:
            return "USER"
        try:
            return self._registry.get(turn.speaker).name.upper()
        except ConfigurationError:
            return turn.speaker.upper()

    def render_lines(self, turns: tuple[Turn, ...] | None = None) -> list[str]:
        """Render turns as '[SPEAKER]: text' lines, in arrival order."""
        source = self._turns if turns is None else turns
        return [f"[{self._label(turn)}]: {turn.text}" for turn in source]

    def render_transcript(self) -> str:
        return "\n".join(self.render_lines())

    def render_context(self, specialist: Specialist) -> str:
        """Build the payload that briefs a specialist joining the conversation."""
        query = self.original_query or "(not yet stated)"
        lines = [
            "CONVERSATION CONTEXT",
            (
                "You are joining an ongoing security operations conversation "
                f"as the {specialist.name} specialist ({specialist.title})."
            ),
            "",
            f"Original user query: {query}",
            "",
            "Conversation so far:",
            *self.render_lines(),
            "",
            (
                f"Give your specialist assessment of the situation from a "
                f"{specialist.name} perspective. Be concise and actionable."
            ),
        ]
        return "\n".join(lines)

    def render_summary_request(self, since: int) -> str:
        """Build the payload that asks the primary to wrap up a consultation.

        Args:
            since: Thread length when the consultation started; only turns
                after that point are listed as specialist input.
        """
        query = self.original_query or "(not yet stated)"
        consulted = tuple(
            t for t in self._turns[since:] if t.speaker != USER
        )
        lines = [
            "CONSULTATION COMPLETE",
            f"Original user query: {query}",
            "",
            "Specialist input:",
            *(self.render_lines(consulted) or ["(no specialist input recorded)"]),
            "",
            "Summarize the key recommendations for the user and confirm next steps.",
        ]
        return "\n".join(lines)

"""Unit tests for ConversationThread: ordering, dedup and payload rendering."""

from soc_room.agents.registry import Role, SpecialistRegistry
from soc_room.agents.thread import ConversationThread
from soc_room.models.conversation import Attachment


def _thread(registry: SpecialistRegistry) -> ConversationThread:
    thread = ConversationThread(registry)
    thread.append("user", "My passport was stolen", live_role=Role.CLIENT_OFFICER)
    thread.record_original_query("My passport was stolen")
    thread.append(Role.CLIENT_OFFICER, "Let me bring in our contacts team.")
    thread.append(Role.CONTACTS, "The embassy opens at 9am.")
    return thread


def test_append_preserves_order_and_attribution(registry: SpecialistRegistry) -> None:
    thread = _thread(registry)

    assert [(t.speaker, t.text) for t in thread.turns] == [
        ("user", "My passport was stolen"),
        ("clientOfficer", "Let me bring in our contacts team."),
        ("contacts", "The embassy opens at 9am."),
    ]
    assert {t.threadId for t in thread.turns} == {thread.id}
    assert thread.turns[0].liveRole == "clientOfficer"


def test_duplicate_event_id_is_dropped(registry: SpecialistRegistry) -> None:
    thread = ConversationThread(registry)

    first = thread.append("user", "Hello", event_id="42")
    second = thread.append("user", "Hello again", event_id="42")

    assert first is not None
    assert second is None
    assert len(thread) == 1


def test_echoed_turn_is_dropped(registry: SpecialistRegistry) -> None:
    thread = ConversationThread(registry)

    thread.append("user", "Where is the hospital?")
    echoed = thread.append("user", "Where is the hospital?")

    assert echoed is None
    assert len(thread) == 1


def test_same_text_from_another_speaker_is_kept(registry: SpecialistRegistry) -> None:
    thread = ConversationThread(registry)

    thread.append("user", "Okay")
    assert thread.append(Role.SECURITY, "Okay") is not None


def test_repeated_image_turn_is_kept(registry: SpecialistRegistry) -> None:
    thread = ConversationThread(registry)
    attachment = Attachment(filename="street.jpg", mimeType="image/jpeg", sizeBytes=10)

    thread.append("user", "[Image: street.jpg]", attachments=[attachment])
    again = thread.append("user", "[Image: street.jpg]", attachments=[attachment])

    assert again is not None
    assert again.attachments[0].filename == "street.jpg"


def test_original_query_is_first_only(registry: SpecialistRegistry) -> None:
    thread = ConversationThread(registry)

    assert thread.record_original_query("first")
    assert not thread.record_original_query("second")
    assert thread.original_query == "first"


def test_context_payload_contains_every_turn_once(registry: SpecialistRegistry) -> None:
    thread = _thread(registry)

    payload = thread.render_context(registry.get(Role.SECURITY))

    assert payload.splitlines()[0] == "CONVERSATION CONTEXT"
    assert "Original user query: My passport was stolen" in payload
    for line in thread.render_lines():
        assert payload.count(line) == 1
    assert "[CONTACT AGENT]: The embassy opens at 9am." in payload
    assert "as the Security specialist (Threat Assessment)" in payload


def test_research_turns_are_labelled(registry: SpecialistRegistry) -> None:
    thread = ConversationThread(registry)
    thread.append(Role.RESEARCHER, "Protests reported downtown.", kind="research")

    assert thread.render_lines() == ["[RESEARCH]: Protests reported downtown."]


def test_summary_request_lists_specialist_turns_since_start(
    registry: SpecialistRegistry,
) -> None:
    thread = _thread(registry)
    start = len(thread)
    thread.append(Role.SECURITY, "Keep a copy of your documents.")
    thread.append("user", "Thanks")
    thread.append(Role.TRAVEL, "Rebook your flight for Friday.")

    payload = thread.render_summary_request(start)

    assert payload.startswith("CONSULTATION COMPLETE")
    assert "[SECURITY]: Keep a copy of your documents." in payload
    assert "[TRAVEL EXPERT]: Rebook your flight for Friday." in payload
    assert "Thanks" not in payload
    assert "The embassy opens at 9am." not in payload


def test_clear_starts_a_new_thread(registry: SpecialistRegistry) -> None:
    thread = _thread(registry)
    old_id = thread.id

    thread.clear()

    assert thread.is_empty
    assert thread.original_query is None
    assert thread.id != old_id
    # Event IDs from the old thread no longer count as duplicates.
    assert thread.append("user", "Hi", event_id="1") is not None

"""Agent orchestrator: decides which specialist holds the single live session.

The orchestrator listens to the transcript of the live voice session and
runs consultations: the Client Officer (primary) triages, specialists are
queued and brought onto the line one at a time, and control returns to the
primary to summarize. Only one voice session exists at any moment, so every
switch is end-old-session, settle, start-new-session, and the new session is
briefed with the whole conversation thread.

Concurrency model:
- Transport callbacks only enqueue events; a single pump task feeds them to
  dispatch(), and every transition holds one asyncio.Lock.
- The settle delay before a new session is a scheduled task that
  disconnect() cancels.
- Research lookups are fire-and-forget tasks that report through the
  listener and never block a transition.
- Events from a session that is no longer current are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from soc_room.agents.classifier import (
    is_handoff_signal,
    is_uncertain,
    relevant_specialists,
)
from soc_room.agents.errors import (
    ConfigurationError,
    InvalidTransitionError,
    SessionTransportError,
    TransitionAbortedError,
)
from soc_room.agents.middleware import transition_span
from soc_room.agents.registry import (
    PRIMARY_ROLE,
    USER,
    Role,
    Specialist,
    SpecialistRegistry,
)
from soc_room.agents.state import OrchestratorListener, OrchestratorState
from soc_room.agents.thread import ConversationThread
from soc_room.models.conversation import Attachment, ConnectionPhase, Turn
from soc_room.tools.research import RESEARCH_UNAVAILABLE, ResearchGateway
from soc_room.transport.base import (
    SessionConnected,
    SessionDisconnected,
    SessionHandle,
    SessionTransport,
    SpeakingChanged,
    TransportEvent,
    TurnReceived,
)

logger = logging.getLogger(__name__)

DEFAULT_CONSULT: tuple[Role, ...] = (Role.RESEARCHER, Role.SECURITY)
SOS_CONSULT: tuple[Role, ...] = (Role.SECURITY, Role.CONTACTS)
SOS_MESSAGE = "[SOS] Emergency assistance requested."


class Orchestrator:
    """State machine tying registry, classifier, thread, transport and research.

    Usage:
        orchestrator = Orchestrator(registry, transport, research=gateway,
                                    listener=room)
        await orchestrator.connect()
        await orchestrator.send_text("Something feels off at my hotel")
        ...
        await orchestrator.disconnect()
    """

    def __init__(
        self,
        registry: SpecialistRegistry,
        transport: SessionTransport,
        research: ResearchGateway | None = None,
        listener: OrchestratorListener | None = None,
        settle_delay: float = 0.5,
        default_consult: Sequence[Role] = DEFAULT_CONSULT,
        volume: int = 100,
    ) -> None:
        self.registry = registry
        self.transport = transport
        self.research = research
        self.state = OrchestratorState()
        self.thread = ConversationThread(registry)
        self._listener = listener or OrchestratorListener()
        self._settle_delay = settle_delay
        self._default_consult = tuple(default_consult)
        self._volume = volume

        self._lock = asyncio.Lock()
        self._events: asyncio.Queue[TransportEvent] = asyncio.Queue()
        self._pump_task: asyncio.Task | None = None
        self._switch_task: asyncio.Task | None = None
        self._research_tasks: set[asyncio.Task] = set()
        # Bumped on every connect/disconnect so late research results can
        # tell whether their conversation is still the current one.
        self._generation = 0

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def volume(self) -> int:
        return self._volume

    @property
    def research_in_flight(self) -> bool:
        return any(not task.done() for task in self._research_tasks)

    @property
    def switch_in_flight(self) -> bool:
        return self._switch_task is not None and not self._switch_task.done()

    def set_listener(self, listener: OrchestratorListener) -> None:
        self._listener = listener

    # ------------------------------------------------------------------
    # External API
    # ------------------------------------------------------------------

    async def connect(self, role: Role | str | None = None) -> Role:
        """Open the first session of a new conversation.

        Raises:
            ConfigurationError: The role is unknown or has no agent ID.
            InvalidTransitionError: Already connected or connecting.
            SessionStartError: The transport could not open the session.
        """
        specialist = self.registry.require_configured(role or PRIMARY_ROLE)

        async with self._lock:
            if self.state.connection_phase != ConnectionPhase.DISCONNECTED:
                msg = f"Cannot connect while {self.state.connection_phase.value}"
                raise InvalidTransitionError(msg)

            with transition_span("connect", self.state) as span:
                span.set_attribute("orchestrator.target_agent", specialist.role.value)
                self.thread.clear()
                self._generation += 1
                self.state.connection_phase = ConnectionPhase.CONNECTING
                await self._listener.on_state_changed()
                self._ensure_pump()

                try:
                    handle = await self.transport.start_session(
                        specialist.agent_id, self._on_transport_event
                    )
                except Exception as exc:
                    logger.error(
                        "Failed to connect to %s: %s", specialist.role.value, exc
                    )
                    self.state.connection_phase = ConnectionPhase.DISCONNECTED
                    span.set_attribute("transition.outcome", "failed")
                    await self._listener.on_error(f"Connection failed: {exc}")
                    await self._listener.on_state_changed()
                    raise

                self.state.current_handle = handle
                self.state.current_agent = specialist.role
                self.state.connection_phase = ConnectionPhase.CONNECTED
                await self._apply_volume(handle)
                span.set_attribute("transition.outcome", "connected")

            logger.info("Connected: agent=%s", specialist.role.value)
            await self._listener.on_agent_changed(specialist.role)
            await self._listener.on_state_changed()
            return specialist.role

    async def disconnect(self) -> None:
        """End the live session and reset to the initial state."""
        task = self._switch_task
        if task is not None and not task.done():
            task.cancel()

        async with self._lock:
            with transition_span("disconnect", self.state):
                await self._reset_conversation()
            logger.info("Disconnected")
            await self._listener.on_agent_changed(None)
            await self._listener.on_state_changed()

    async def switch_agent(self, role: Role | str) -> Role:
        """Manually move the live session to another agent.

        The consultation queue and consulting flag are left untouched.

        Raises:
            ConfigurationError: The role is unknown or has no agent ID.
            InvalidTransitionError: Not connected, already on that agent, or
                another switch is in progress.
            SessionStartError: The transport could not open the session.
            TransitionAbortedError: disconnect() cancelled the switch.
        """
        async with self._lock:
            specialist = self.registry.require_configured(role)
            if self.state.connection_phase != ConnectionPhase.CONNECTED:
                msg = "Cannot switch agents while not connected"
                raise InvalidTransitionError(msg)
            if specialist.role == self.state.current_agent:
                msg = f"{specialist.role.value} is already on the line"
                raise InvalidTransitionError(msg)
            if self.switch_in_flight:
                msg = "Another agent switch is in progress"
                raise InvalidTransitionError(msg)

            logger.info(
                "Manual switch: %s -> %s",
                self.state.current_agent,
                specialist.role.value,
            )
            task = await self._schedule_switch(specialist.role, manual=True)

        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                msg = f"Switch to {specialist.role.value} was cancelled"
                raise TransitionAbortedError(msg) from None
            raise
        return specialist.role

    async def send_text(self, text: str) -> Turn | None:
        """Send a typed user message into the live session."""
        async with self._lock:
            handle = self._require_live_session()
            turn = self._append_user_turn(text)
            if turn is not None:
                await self._listener.on_turn(turn)
            await self.transport.send_turn(handle, text)
            await self._listener.on_state_changed()
            return turn

    async def add_attachment_turn(
        self, text: str, attachments: list[Attachment], notice: str | None = None
    ) -> Turn | None:
        """Record a user turn carrying attachments.

        Orchestration state is not touched. When a session is live, notice
        is forwarded so the agent knows an image was shared.
        """
        async with self._lock:
            if self.state.connection_phase != ConnectionPhase.CONNECTED:
                msg = "Cannot attach files while not connected"
                raise InvalidTransitionError(msg)
            turn = self.thread.append(
                USER,
                text,
                live_role=self.state.current_agent,
                attachments=attachments,
            )
            if turn is not None:
                await self._listener.on_turn(turn)
            handle = self.state.current_handle
            if notice and handle is not None:
                await self._send_to_session(handle, notice)
            await self._listener.on_state_changed()
            return turn

    async def set_volume(self, volume: int) -> None:
        """Set output volume (0-100). Applied to the live session only."""
        if not 0 <= volume <= 100:
            msg = f"Volume must be between 0 and 100, got {volume}"
            raise ValueError(msg)
        async with self._lock:
            self._volume = volume
            if self.state.current_handle is not None:
                await self.transport.set_output_volume(
                    self.state.current_handle, volume
                )
            await self._listener.on_state_changed()

    async def activate_sos(self) -> None:
        """Emergency: bring Security on the line now, then Contacts."""
        if self.state.connection_phase == ConnectionPhase.DISCONNECTED:
            await self.connect(PRIMARY_ROLE)

        async with self._lock:
            with transition_span("sos", self.state) as span:
                if self.state.connection_phase != ConnectionPhase.CONNECTED:
                    msg = "Not connected"
                    raise InvalidTransitionError(msg)
                if self.switch_in_flight:
                    # SOS preempts whatever switch was already scheduled.
                    self._switch_task.cancel()
                    self._switch_task = None
                self.state.panic_mode = True
                turn = self._append_user_turn(SOS_MESSAGE)
                if turn is not None:
                    await self._listener.on_turn(turn)

                targets = [
                    s.role
                    for s in self._eligible(SOS_CONSULT)
                    if s.role != self.state.current_agent
                ]
                span.set_attribute("sos.targets", [r.value for r in targets])
                if not targets:
                    await self._listener.on_error(
                        "No emergency specialists are configured"
                    )
                    await self._listener.on_state_changed()
                    return

                if not self.state.is_consulting:
                    self.state.consultation_start = len(self.thread)
                self.state.is_consulting = True
                self.state.consult_queue = targets[1:] + [
                    r for r in self.state.consult_queue if r not in targets
                ]
                self.state.pending_switch = None
                logger.warning("SOS activated: queue=%s", [r.value for r in targets])
                await self._schedule_switch(targets[0])
            await self._listener.on_state_changed()

    async def perform_research(self, query: str, context: str | None = None) -> str:
        """Run a research lookup. Never raises."""
        if self.research is None:
            return RESEARCH_UNAVAILABLE
        try:
            return await self.research.query(query, context)
        except Exception:
            logger.exception("Research gateway raised")
            return RESEARCH_UNAVAILABLE

    async def close(self) -> None:
        """Shut down: disconnect and stop background tasks."""
        await self.disconnect()
        for task in list(self._research_tasks):
            task.cancel()
        if self._pump_task is not None:
            self._pump_task.cancel()
            self._pump_task = None

    # ------------------------------------------------------------------
    # Transport events
    # ------------------------------------------------------------------

    async def _on_transport_event(self, event: TransportEvent) -> None:
        self._events.put_nowait(event)

    def _ensure_pump(self) -> None:
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = asyncio.create_task(self._pump())

    async def _pump(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self.dispatch(event)
            except Exception:
                logger.exception("Error handling %s", type(event).__name__)
            finally:
                self._events.task_done()

    async def wait_idle(self) -> None:
        """Wait until every queued transport event has been handled."""
        await self._events.join()

    async def wait_for_switch(self) -> None:
        """Wait until a scheduled agent switch has finished, whatever its outcome."""
        task = self._switch_task
        if task is not None:
            await asyncio.wait({task})

    async def dispatch(self, event: TransportEvent) -> None:
        """Apply one transport event. Events from stale sessions are dropped."""
        async with self._lock:
            current = self.state.current_handle
            if current is None or event.handle.id != current.id:
                logger.debug(
                    "Ignoring %s from stale session %s",
                    type(event).__name__,
                    event.handle.id,
                )
                return

            if isinstance(event, SessionConnected):
                await self._on_session_connected(current)
            elif isinstance(event, TurnReceived):
                await self._on_turn_received(event)
            elif isinstance(event, SpeakingChanged):
                await self._on_speaking_changed(event.speaking)
            elif isinstance(event, SessionDisconnected):
                await self._on_remote_disconnect(event.reason)

    async def _on_session_connected(self, handle: SessionHandle) -> None:
        current = self.state.current_agent
        if current is None:
            return
        if current != PRIMARY_ROLE and not self.thread.is_empty:
            payload = self.thread.render_context(self.registry.get(current))
            logger.info(
                "Briefing %s with %d turns of context", current.value, len(self.thread)
            )
            await self._send_to_session(handle, payload)
        elif current == PRIMARY_ROLE and self.state.awaiting_summary:
            self.state.awaiting_summary = False
            payload = self.thread.render_summary_request(self.state.consultation_start)
            logger.info("Asking %s to summarize the consultation", current.value)
            await self._send_to_session(handle, payload)

    async def _on_turn_received(self, event: TurnReceived) -> None:
        current = self.state.current_agent
        if event.role == "user":
            turn = self._append_user_turn(event.text, event.event_id)
            if turn is not None:
                await self._listener.on_turn(turn)
                await self._listener.on_state_changed()
            return

        turn = self.thread.append(
            current, event.text, live_role=current, event_id=event.event_id
        )
        if turn is None:
            return
        await self._listener.on_turn(turn)

        if current == PRIMARY_ROLE:
            if not self.state.is_consulting:
                await self._route_from_primary(event.text)
        else:
            self._queue_chime_ins(event.text)
            self._promote_next()
        await self._listener.on_state_changed()

    async def _on_speaking_changed(self, speaking: bool) -> None:
        was_speaking = self.state.is_speaking
        self.state.is_speaking = speaking
        await self._listener.on_speaking_changed(self.state.current_agent, speaking)
        if was_speaking and not speaking:
            await self._on_speaking_ended()
        await self._listener.on_state_changed()

    async def _on_speaking_ended(self) -> None:
        target = self.state.pending_switch
        if target is None:
            return
        self.state.pending_switch = None
        logger.info("Speaking ended, switching %s -> %s", self.state.current_agent, target)
        await self._schedule_switch(target)

    async def _on_remote_disconnect(self, reason: str) -> None:
        logger.warning("Live session dropped by transport: %s", reason)
        self.state.current_handle = None
        await self._reset_conversation()
        await self._listener.on_error(f"Voice session ended: {reason or 'disconnected'}")
        await self._listener.on_agent_changed(None)
        await self._listener.on_state_changed()

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def _route_from_primary(self, text: str) -> None:
        with transition_span("route", self.state) as span:
            handoff = is_handoff_signal(text, PRIMARY_ROLE, self.registry)
            if handoff is not None and not handoff.is_configured:
                logger.warning("Handoff to unconfigured agent %s ignored", handoff.role)
                handoff = None

            if handoff is not None:
                span.set_attribute("route.decision", "handoff")
                self._begin_consultation()
                self.state.pending_switch = handoff.role
                logger.info("Handoff detected -> %s", handoff.role.value)
                return

            relevant = [s for s in relevant_specialists(text, self.registry) if s.is_configured]
            if relevant:
                span.set_attribute("route.decision", "relevant")
                self._begin_consultation()
                self._enqueue_consultation(relevant)
                self._start_research()
                return

            # Default pair only when the primary sounds unsure, else it keeps the line.
            if is_uncertain(text):
                defaults = self._eligible(self._default_consult)
                if defaults:
                    span.set_attribute("route.decision", "default")
                    self._begin_consultation()
                    self._enqueue_consultation(defaults)
                    self._start_research()
                    return

            span.set_attribute("route.decision", "stay")

    def _begin_consultation(self) -> None:
        self.state.is_consulting = True
        self.state.consultation_start = len(self.thread)

    def _enqueue_consultation(self, specialists: list[Specialist]) -> None:
        self.state.consult_queue.extend(
            s.role for s in specialists if s.role not in self.state.consult_queue
        )
        self.state.pending_switch = self.state.consult_queue.pop(0)
        logger.info(
            "Consultation queued: pending=%s queue=%s",
            self.state.pending_switch.value,
            [r.value for r in self.state.consult_queue],
        )

    def _queue_chime_ins(self, text: str) -> None:
        for specialist in relevant_specialists(text, self.registry):
            role = specialist.role
            if (
                not specialist.is_configured
                or role == self.state.current_agent
                or role == self.state.pending_switch
                or role in self.state.consult_queue
            ):
                continue
            self.state.consult_queue.append(role)
            logger.info("%s chimes in after %s", role.value, self.state.current_agent)

    def _promote_next(self) -> None:
        pending = self.state.pending_switch
        if pending is not None and pending != PRIMARY_ROLE:
            return
        if self.state.consult_queue:
            self.state.pending_switch = self.state.consult_queue.pop(0)
        else:
            self.state.pending_switch = PRIMARY_ROLE

    def _eligible(self, roles: Sequence[Role]) -> list[Specialist]:
        eligible = []
        for role in roles:
            if role not in self.registry:
                continue
            specialist = self.registry.get(role)
            if specialist.is_configured:
                eligible.append(specialist)
        return eligible

    # ------------------------------------------------------------------
    # Switching
    # ------------------------------------------------------------------

    async def _schedule_switch(self, target: Role, *, manual: bool = False) -> asyncio.Task:
        """End the live session and schedule the new one after the settle delay.

        Must be called with the lock held.
        """
        old = self.state.current_handle
        previous = self.state.current_agent
        self.state.current_handle = None
        self.state.is_speaking = False
        if old is not None:
            try:
                await self.transport.end_session(old)
            except SessionTransportError as exc:
                logger.warning("Error ending session %s: %s", old.id, exc)

        task = asyncio.create_task(self._complete_switch(target, previous, manual))
        task.add_done_callback(_log_switch_outcome)
        self._switch_task = task
        return task

    async def _complete_switch(
        self, target: Role, previous: Role | None, manual: bool
    ) -> None:
        await asyncio.sleep(self._settle_delay)
        async with self._lock:
            if self._switch_task is not asyncio.current_task():
                return
            with transition_span("switch", self.state) as span:
                span.set_attribute("orchestrator.target_agent", target.value)
                span.set_attribute("switch.manual", manual)
                specialist = self.registry.get(target)
                try:
                    if not specialist.is_configured:
                        raise ConfigurationError(target.value)
                    handle = await self.transport.start_session(
                        specialist.agent_id, self._on_transport_event
                    )
                except Exception as exc:
                    span.set_attribute("transition.outcome", "failed")
                    self._switch_task = None
                    await self._recover_failed_switch(target, previous, exc)
                    raise

                self._switch_task = None
                self.state.current_handle = handle
                self.state.current_agent = target
                self.state.is_speaking = False
                if target == PRIMARY_ROLE and not manual and self.state.is_consulting:
                    self.state.is_consulting = False
                    self.state.awaiting_summary = True
                await self._apply_volume(handle)
                span.set_attribute("transition.outcome", "switched")

            logger.info("Agent switched: %s -> %s", previous, target.value)
            await self._listener.on_agent_changed(target)
            await self._listener.on_state_changed()

    async def _recover_failed_switch(
        self, target: Role, previous: Role | None, exc: Exception
    ) -> None:
        """Put the previous agent back on the line after a failed switch."""
        logger.error("Switch to %s failed: %s", target.value, exc)
        await self._listener.on_error(f"Could not switch to {target.value}: {exc}")

        if previous is not None:
            specialist = self.registry.get(previous)
            if specialist.is_configured:
                try:
                    handle = await self.transport.start_session(
                        specialist.agent_id, self._on_transport_event
                    )
                except Exception as restore_exc:
                    logger.error(
                        "Could not restore %s session: %s", previous.value, restore_exc
                    )
                else:
                    self.state.current_handle = handle
                    self.state.current_agent = previous
                    await self._apply_volume(handle)
                    await self._listener.on_state_changed()
                    return

        await self._reset_conversation()
        await self._listener.on_agent_changed(None)
        await self._listener.on_state_changed()

    async def _reset_conversation(self) -> None:
        """End any live session and return to the initial state. Lock held."""
        handle = self.state.current_handle
        self._switch_task = None
        self.state.reset()
        self.thread.clear()
        self._generation += 1
        if handle is not None:
            try:
                await self.transport.end_session(handle)
            except SessionTransportError as exc:
                logger.warning("Error ending session %s: %s", handle.id, exc)

    # ------------------------------------------------------------------
    # Research
    # ------------------------------------------------------------------

    def _start_research(self) -> None:
        query = self.thread.original_query
        if self.research is None or not query:
            return
        context = self.thread.render_transcript()
        task = asyncio.create_task(self._run_research(query, context, self._generation))
        self._research_tasks.add(task)
        task.add_done_callback(self._research_tasks.discard)

    async def _run_research(self, query: str, context: str, generation: int) -> None:
        result = await self.perform_research(query, context)
        is_current = generation == self._generation
        if is_current:
            async with self._lock:
                is_current = generation == self._generation
                if is_current:
                    turn = self.thread.append(
                        Role.RESEARCHER,
                        result,
                        live_role=self.state.current_agent,
                        kind="research",
                    )
                    if turn is not None:
                        await self._listener.on_turn(turn)
        await self._listener.on_research(result, current=is_current)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _append_user_turn(self, text: str, event_id: str | None = None) -> Turn | None:
        current = self.state.current_agent
        turn = self.thread.append(USER, text, live_role=current, event_id=event_id)
        if turn is not None and current == PRIMARY_ROLE:
            self.thread.record_original_query(text)
        return turn

    def _require_live_session(self) -> SessionHandle:
        if self.state.connection_phase != ConnectionPhase.CONNECTED:
            msg = "Not connected"
            raise InvalidTransitionError(msg)
        if self.state.current_handle is None:
            msg = "An agent switch is in progress"
            raise InvalidTransitionError(msg)
        return self.state.current_handle

    async def _send_to_session(self, handle: SessionHandle, text: str) -> None:
        try:
            await self.transport.send_turn(handle, text)
        except SessionTransportError as exc:
            logger.error("Could not send to session %s: %s", handle.id, exc)
            await self._listener.on_error(f"Could not reach the live agent: {exc}")

    async def _apply_volume(self, handle: SessionHandle) -> None:
        try:
            await self.transport.set_output_volume(handle, self._volume)
        except SessionTransportError as exc:
            logger.warning("Could not set volume on %s: %s", handle.id, exc)


def _log_switch_outcome(task: asyncio.Task) -> None:
    if task.cancelled():
        logger.info("Scheduled agent switch cancelled")
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Scheduled agent switch failed: %s", exc)

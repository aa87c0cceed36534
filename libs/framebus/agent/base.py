"""PeerAgent: reacts to bus traffic on behalf of one hosting context."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable

from framebus.agent.ports import QuestionSource, SettingsStore
from framebus.agent.state import PeerState
from framebus.client.bus import MessageBus, SendOptions
from framebus.models.actions import Action
from framebus.models.envelope import Envelope

logger = logging.getLogger(__name__)

Handler = Callable[[Envelope], Awaitable[None] | None]

DISCOVERY_PAYLOAD = {"discoveryPing": True}


class PeerAgent:
    """Glue between the bus and the question/settings collaborators.

    Every Action has an entry in the handler map; unknown tags go to
    `_on_unknown`. Subclasses extend `build_handlers()` and must keep it
    exhaustive, which is checked when the agent is created.
    """

    def __init__(
        self,
        bus: MessageBus,
        questions: QuestionSource,
        settings: SettingsStore,
    ) -> None:
        self._bus = bus
        self._questions = questions
        self._settings = settings
        self._state = PeerState(peer_id=bus.peer_id)
        # ping id -> responders collected by discover_all
        self._collectors: dict[str, dict[str, bool]] = {}
        self._handlers = self.build_handlers()

        missing = sorted(set(Action) - set(self._handlers))
        if missing:
            raise TypeError(f"{type(self).__name__} has no handler for: {', '.join(missing)}")

    @property
    def state(self) -> PeerState:
        return self._state

    @property
    def bus(self) -> MessageBus:
        return self._bus

    def build_handlers(self) -> dict[Action, Handler]:
        return {
            Action.ANALYZE_QUESTION: self._on_analyze_question,
            Action.UPDATE_STATUS: self._on_update_status,
            Action.SOLVER_STATUS_CHANGED: self._on_update_status,
            Action.REQUEST_QUESTION_CHECK: self._on_request_question_check,
            Action.QUESTION_ANALYZED: self._on_question_analyzed,
            Action.PING: self._on_ping,
            Action.PONG: self._on_pong,
        }

    async def start(self) -> None:
        """Start the bus, wire up collaborators and schedule initial discovery."""
        self._state.enabled = self._settings.get_solver_enabled()
        self._bus.on_receive(self._on_envelope)
        self._bus.set_pong_payload(self._pong_payload)
        self._questions.on_question_ready(self._on_question_ready)
        await self._bus.start()

        self._bus.scheduler.call_later(
            "initial-discovery",
            self._bus.config.initial_ping_delay,
            self._initial_ping,
        )
        logger.info(
            "Peer %s started (solver %s)",
            self._state.peer_id,
            "enabled" if self._state.enabled else "disabled",
        )

    async def stop(self) -> None:
        self._bus.remove_handler(self._on_envelope)
        await self._bus.close()
        logger.info("Peer %s stopped", self._state.peer_id)

    # --- Local operations ---

    def set_enabled(self, enabled: bool) -> str | None:
        """Switch the solver on or off here and tell every other peer."""
        self._state.enabled = enabled
        self._settings.set_solver_enabled(enabled)
        message_id = self._bus.send(Action.UPDATE_STATUS, {"enabled": enabled})
        if enabled:
            self._analyze_if_idle()
        return message_id

    def manual_analyze(self) -> str | None:
        """Analyze here and ask every other peer to analyze too."""
        if self._state.analyzing:
            logger.debug("Ignoring manual analyze because already analyzing")
            return None
        self._analyze_if_idle()
        return self._bus.send(
            Action.ANALYZE_QUESTION,
            {},
            SendOptions(retry=True, retry_count=2),
        )

    def request_question_check(self) -> str | None:
        """Ask peers that show a question to analyze it."""
        return self._bus.send(Action.REQUEST_QUESTION_CHECK, {})

    async def discover(self, timeout: float | None = None) -> Envelope | None:
        """Ping peers and wait for the first pong."""
        return await self._bus.request(DISCOVERY_PAYLOAD, timeout=timeout)

    async def discover_all(self, window: float | None = None) -> dict[str, bool]:
        """Ping peers and collect every pong that arrives within `window` seconds.

        Returns the responding peer ids mapped to whether they show questions.
        Responders are also recorded in `state.known_peers`.
        """
        window = self._bus.config.discovery_window if window is None else window
        ping_id = self._bus.ping(DISCOVERY_PAYLOAD)
        responders = self._collectors[ping_id] = {}
        try:
            await asyncio.sleep(window)
        finally:
            self._collectors.pop(ping_id, None)
        return responders

    # --- Dispatch ---

    def _on_envelope(self, envelope: Envelope) -> Awaitable[None] | None:
        action = Action.parse(envelope.action)
        handler = self._handlers.get(action) if action is not None else None
        if handler is None:
            return self._on_unknown(envelope)
        return handler(envelope)

    def _on_analyze_question(self, envelope: Envelope) -> Awaitable[None] | None:
        logger.info("Received analyzeQuestion request from %s", envelope.from_peer)
        if self._state.analyzing:
            logger.debug("Ignoring analyzeQuestion because already analyzing")
            return None
        return self._analyze()

    def _on_update_status(self, envelope: Envelope) -> None:
        payload = envelope.payload if isinstance(envelope.payload, dict) else {}
        enabled = payload.get("enabled")
        if not isinstance(enabled, bool):
            logger.debug("Ignoring %s without an 'enabled' flag", envelope.action)
            return
        if self._state.enabled == enabled:
            logger.debug("Ignoring %s because state unchanged", envelope.action)
            return

        self._state.enabled = enabled
        self._settings.set_solver_enabled(enabled)
        logger.info("Solver %s by %s", "enabled" if enabled else "disabled", envelope.from_peer)

        # Relay with the received path so propagation depth stays bounded
        if (
            envelope.from_peer != self._state.peer_id
            and envelope.hops < self._bus.config.relay_max_path
        ):
            self._bus.send(Action.UPDATE_STATUS, {"enabled": enabled}, path=envelope.path)

    def _on_request_question_check(self, envelope: Envelope) -> None:
        if not (self._state.enabled and self._questions.has_questions()):
            logger.debug("No questions found in this context")
            return
        # Random delay so several peers with questions do not all react at once
        delay = random.uniform(0, self._bus.config.reaction_jitter)
        self._bus.scheduler.call_later(
            f"question-check:{envelope.message_id}", delay, self._analyze_if_idle
        )

    def _on_question_analyzed(self, envelope: Envelope) -> None:
        if self._state.cancel_analysis():
            logger.info("Canceling our analysis since %s handled it", envelope.from_peer)

    def _on_ping(self, envelope: Envelope) -> None:
        # Answered by the bus
        return None

    def _on_pong(self, envelope: Envelope) -> None:
        payload = envelope.payload if isinstance(envelope.payload, dict) else {}
        has_questions = bool(payload.get("hasQuestions", False))
        self._state.record_peer(envelope.from_peer, has_questions)
        if envelope.reply_to in self._collectors:
            self._collectors[envelope.reply_to][envelope.from_peer] = has_questions

    def _on_unknown(self, envelope: Envelope) -> None:
        logger.debug("Unknown message action: %s", envelope.action)

    # --- Analysis ---

    def _analyze_if_idle(self) -> None:
        if self._state.analyzing:
            return
        self._bus.scheduler.spawn(self._analyze(), name=f"analyze:{self._state.peer_id}")

    async def _analyze(self) -> None:
        if not self._state.start_analysis():
            return
        try:
            await self._questions.analyze()
        except asyncio.CancelledError:
            self._state.cancel_analysis()
            raise
        except Exception:
            logger.exception("Question analysis failed")
            self._state.cancel_analysis()
            return
        if self._state.finish_analysis():
            self._bus.send(Action.QUESTION_ANALYZED, {"peer": self._state.peer_id})

    def _on_question_ready(self) -> None:
        if not self._state.enabled:
            return
        self._bus.send(Action.ANALYZE_QUESTION, {})
        self._analyze_if_idle()

    def _pong_payload(self) -> dict[str, bool]:
        return {"hasQuestions": self._questions.has_questions()}

    def _initial_ping(self) -> None:
        if not self._bus.is_running:
            return
        self._bus.send(
            Action.PING,
            DISCOVERY_PAYLOAD,
            SendOptions(
                retry=True,
                callback=lambda reply: logger.debug("Peer discovered: %s", reply.from_peer),
            ),
            broadcast=True,
        )

"""MessageBus: deduplicating, loop-safe message bus over two transports."""

import asyncio
import inspect
import logging
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any

from framebus.client.requests import ReplyCallback, RequestReplyManager
from framebus.client.scheduler import TaskScheduler
from framebus.config import BusConfig
from framebus.errors import DropReason, ForeignMessage, MalformedPayload
from framebus.helpers.codec import create_envelope, decode_envelope, encode_envelope
from framebus.helpers.dedup import DedupGuard, content_fingerprint, detect_loop
from framebus.helpers.diagnostics import DiagnosticsCollector
from framebus.helpers.origin import OriginValidator, classify_origin
from framebus.helpers.throttle import RateLimiter
from framebus.models.actions import CONTROL_ACTIONS, Action, Channel
from framebus.models.envelope import Envelope
from framebus.models.report import DiagnosticsReport, FlowAnalysis, StatCategory
from framebus.transport.base import Transport
from framebus.transport.multi import MultiTransport

logger = logging.getLogger(__name__)

ReceiveHandler = Callable[[Envelope], Any]

_RECEIVED_CATEGORY = {
    Channel.PRIMARY: StatCategory.RECEIVED,
    Channel.FALLBACK: StatCategory.FALLBACK_RECEIVED,
}


@dataclass(frozen=True)
class SendOptions:
    """Per-send controls.

    `retry_delay` of None uses the configured default. `callback` is only
    meaningful for pings: it receives the first matching pong.
    """

    retry: bool = False
    retry_count: int = 1
    retry_delay: float | None = None
    skip_duplicate_check: bool = False
    skip_rate_limiting: bool = False
    callback: ReplyCallback | None = None


class MessageBus:
    """One bus per hosting context.

    Usage:
        bus = MessageBus(config, DirectTransport(origin), SharedStoreTransport(store, origin))
        await bus.start()
        bus.on_receive(handler)
        bus.send(Action.ANALYZE_QUESTION, {"questionId": "q1"})
        await bus.close()

    Outgoing sends pass the rate limiter and content-duplicate check, then go
    out on both channels. Inbound data from either channel is origin-checked,
    decoded, deduplicated by message id and loop-checked before being handed
    to every registered handler exactly once.
    """

    def __init__(
        self,
        config: BusConfig,
        primary: Transport,
        fallback: Transport | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._peer_id = config.peer_id or classify_origin(config.origin, config.peer_rules)
        self._validator = OriginValidator(config.origin, config.trusted_domains)
        self._limiter = RateLimiter(
            {
                Channel.PRIMARY: config.primary_min_interval,
                Channel.FALLBACK: config.fallback_min_interval,
            },
            clock=clock,
        )
        self._dedup = DedupGuard(
            capacity=config.dedup_capacity,
            duplicate_window=config.duplicate_window,
            fingerprint_ttl=config.fingerprint_ttl,
            clock=clock,
        )
        self._diagnostics = DiagnosticsCollector(
            window=config.diagnostics_window,
            max_timestamps=config.max_timestamps,
            max_samples=config.max_samples,
            circular_history=config.circular_history,
            clock=clock,
        )
        self._scheduler = TaskScheduler()
        self._requests = RequestReplyManager(self._scheduler, default_timeout=config.ping_timeout)
        self._transport = MultiTransport(
            primary,
            fallback,
            limiter=self._limiter,
            fallback_actions=config.fallback_actions,
        )
        self._handlers: list[ReceiveHandler] = []
        self._pong_payload: Callable[[], Any] = dict
        self._drops: Counter[DropReason] = Counter()
        self._running = False

    # --- Properties ---

    @property
    def peer_id(self) -> str:
        return self._peer_id

    @property
    def config(self) -> BusConfig:
        return self._config

    @property
    def scheduler(self) -> TaskScheduler:
        return self._scheduler

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending_requests(self) -> int:
        return len(self._requests)

    @property
    def drop_counts(self) -> dict[DropReason, int]:
        """How many envelopes were refused or dropped, by reason."""
        return dict(self._drops)

    # --- Lifecycle ---

    async def start(self) -> None:
        """Start listening on every transport."""
        if self._running:
            return
        await self._transport.start(self._on_raw)
        self._running = True
        logger.info("Bus listening at %s as peer '%s'", self._config.origin, self._peer_id)

    async def close(self) -> None:
        """Stop listening, drop timers and pending requests, release transports."""
        self._running = False
        self._requests.clear()
        self._scheduler.cancel_all()
        self._scheduler.cancel_tasks()
        await self._transport.close()
        await self._scheduler.drain()
        logger.info("Bus for peer '%s' closed", self._peer_id)

    def reset(self) -> None:
        """Forget all dedup, throttle, request and diagnostics state."""
        self._dedup.reset()
        self._limiter.reset()
        self._requests.clear()
        self._diagnostics.reset()
        self._drops.clear()

    # --- Handlers ---

    def on_receive(self, handler: ReceiveHandler) -> None:
        """Register a handler for every delivered envelope (sync or async)."""
        self._handlers.append(handler)

    def remove_handler(self, handler: ReceiveHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def set_pong_payload(self, provider: Callable[[], Any]) -> None:
        """Set the function that builds the payload of automatic pongs."""
        self._pong_payload = provider

    # --- Sending ---

    def send(
        self,
        action: str,
        payload: Any = None,
        options: SendOptions | None = None,
        *,
        path: tuple[str, ...] | list[str] = (),
        reply_to: str | None = None,
        broadcast: bool = False,
    ) -> str | None:
        """Send an envelope to every reachable peer.

        Args:
            action: The action tag.
            payload: Any JSON-serializable payload.
            options: Retry and suppression controls.
            path: Hop path of a message being relayed; our peer id is appended.
            reply_to: Message id being answered.
            broadcast: Mark as always answerable by receivers.

        Returns:
            The new message id, or None if the send was throttled or suppressed
            as a duplicate.
        """
        return self._send(
            action,
            payload,
            options or SendOptions(),
            path=tuple(path),
            reply_to=reply_to,
            broadcast=broadcast,
        )

    def ping(
        self,
        payload: Any = None,
        *,
        timeout: float | None = None,
        on_reply: ReplyCallback | None = None,
    ) -> str:
        """Send a discovery ping; `on_reply` gets the first matching pong.

        If no pong arrives within `timeout` seconds the request is dropped
        silently and `on_reply` is never called.
        """
        message_id = self._send(
            Action.PING,
            payload,
            SendOptions(callback=on_reply),
            path=(),
            reply_to=None,
            broadcast=True,
            reply_timeout=timeout,
        )
        # Control traffic bypasses throttling and content suppression, so an id is always returned
        return message_id  # type: ignore[return-value]

    async def request(self, payload: Any = None, *, timeout: float | None = None) -> Envelope | None:
        """Ping and wait for the first pong. Returns None on timeout."""
        timeout = self._config.ping_timeout if timeout is None else timeout
        future: asyncio.Future[Envelope] = asyncio.get_running_loop().create_future()

        def _on_reply(reply: Envelope) -> None:
            if not future.done():
                future.set_result(reply)

        self.ping(payload, timeout=timeout, on_reply=_on_reply)
        try:
            return await asyncio.wait_for(future, timeout)
        except TimeoutError:
            return None

    def _send(
        self,
        action: str,
        payload: Any,
        options: SendOptions,
        *,
        path: tuple[str, ...],
        reply_to: str | None,
        broadcast: bool,
        reply_timeout: float | None = None,
    ) -> str | None:
        if not self._running:
            raise RuntimeError("Bus not started. Call start() first.")

        action_key = str(action) or "unknown"
        is_control = action_key in CONTROL_ACTIONS
        bypass_throttle = options.skip_rate_limiting or is_control
        # pings are always broadcast so every context answers them
        broadcast = broadcast or action_key == Action.PING
        if options.callback is not None and action_key != Action.PING:
            logger.debug("Ignoring reply callback for non-ping message %s", action_key)

        # 1. Throttling
        if not self._limiter.allow(action_key, Channel.PRIMARY, bypass=bypass_throttle):
            logger.warning("Rate limiting message '%s', too many sent recently", action_key)
            self._diagnostics.record(StatCategory.THROTTLED, action_key)
            self._drops[DropReason.RATE_LIMITED] += 1
            return None

        # 2. Content duplicate suppression
        fingerprint = content_fingerprint(action_key, payload, self._config.fingerprint_keys)
        if not self._dedup.admit_outgoing(
            fingerprint,
            skip_duplicate_check=options.skip_duplicate_check or is_control,
        ):
            logger.debug("Skipping duplicate message: %s", action_key)
            self._drops[DropReason.DUPLICATE] += 1
            return None

        # 3. Envelope
        envelope = create_envelope(
            action=action_key,
            payload=payload,
            peer_id=self._peer_id,
            path=path,
            reply_to=reply_to,
            broadcast=broadcast,
            source=self._config.protocol_tag,
        )
        self._dedup.record_sent(envelope.message_id)

        if action_key == Action.PING and options.callback is not None:
            self._requests.register(envelope.message_id, options.callback, reply_timeout)

        # 4. Fan out
        wire = encode_envelope(envelope)
        channels = self._transport.send(envelope, wire, bypass_throttle=bypass_throttle)
        sample = {"messageId": envelope.message_id, "path": list(envelope.path)}
        if Channel.PRIMARY in channels:
            self._diagnostics.record(StatCategory.SENT, action_key, sample)
        if Channel.FALLBACK in channels:
            self._diagnostics.record(StatCategory.FALLBACK_SENT, action_key, sample)
        logger.debug(
            "Sending message %s (%s) via %s",
            envelope.message_id,
            action_key,
            ", ".join(channels) or "no channel",
        )

        # 5. Retry
        if options.retry and options.retry_count > 0:
            delay = self._config.retry_delay if options.retry_delay is None else options.retry_delay
            self._scheduler.call_later(
                f"retry:{envelope.message_id}",
                delay,
                self._retry,
                action_key,
                payload,
                options,
                path,
                reply_to,
                broadcast,
                reply_timeout,
            )

        return envelope.message_id

    def _retry(
        self,
        action: str,
        payload: Any,
        options: SendOptions,
        path: tuple[str, ...],
        reply_to: str | None,
        broadcast: bool,
        reply_timeout: float | None,
    ) -> None:
        if not self._running:
            return
        logger.debug("Retrying message %s, %d attempts left", action, options.retry_count)
        self._send(
            action,
            payload,
            replace(
                options,
                retry_count=options.retry_count - 1,
                skip_duplicate_check=True,
                skip_rate_limiting=True,
            ),
            path=path,
            reply_to=reply_to,
            broadcast=broadcast,
            reply_timeout=reply_timeout,
        )

    # --- Receiving ---

    def _on_raw(self, raw: str, origin: str, channel: Channel) -> None:
        try:
            self.receive(raw, origin, channel)
        except Exception:
            logger.exception("Error processing cross-context message")

    def receive(self, raw: str | bytes, origin: str, channel: Channel = Channel.PRIMARY) -> Envelope | None:
        """Run inbound data through the receive pipeline.

        Returns the envelope if it was dispatched to handlers, None if dropped.
        """
        if not self._validator.is_trusted(origin):
            if self._config.debug_mode:
                logger.debug("Ignoring message from untrusted origin: %s", origin)
            self._drops[DropReason.UNTRUSTED_ORIGIN] += 1
            return None

        try:
            envelope = decode_envelope(raw, source=self._config.protocol_tag)
        except ForeignMessage:
            self._drops[DropReason.FOREIGN] += 1
            return None
        except MalformedPayload as e:
            if self._config.debug_mode:
                logger.debug("Dropping malformed message from %s: %s", origin, e)
            self._drops[DropReason.MALFORMED_PAYLOAD] += 1
            return None

        self._diagnostics.record(
            _RECEIVED_CATEGORY[channel],
            envelope.action,
            {"from": envelope.from_peer, "messageId": envelope.message_id},
        )
        logger.debug(
            "Received message %s (%s) from %s via %s",
            envelope.message_id,
            envelope.action,
            envelope.from_peer,
            channel,
        )

        if self._dedup.is_own(envelope.message_id):
            logger.debug("Ignoring echo of our own message %s", envelope.message_id)
            self._drops[DropReason.ECHO] += 1
            return None

        if not self._dedup.admit_incoming(
            envelope.message_id, always_answer=envelope.broadcast, channel=channel
        ):
            logger.debug("Ignoring already processed message: %s", envelope.message_id)
            self._drops[DropReason.DUPLICATE] += 1
            return None

        if envelope.hops > self._config.suspect_path_length:
            logger.warning(
                "Possible message loop detected! Path length: %d %s",
                envelope.hops,
                list(envelope.path),
            )
        counts = detect_loop(envelope.path, self._config.loop_threshold)
        if counts is not None:
            logger.error(
                "Message loop detected and blocked: %s %s",
                envelope.action,
                list(envelope.path),
            )
            self._diagnostics.record_loop(envelope.path, counts)
            self._drops[DropReason.LOOP_DETECTED] += 1
            return None

        if envelope.action == Action.PING:
            self._answer_ping(envelope)
        elif envelope.action == Action.PONG:
            self._requests.resolve(envelope)

        self._dispatch(envelope)
        return envelope

    def _answer_ping(self, ping: Envelope) -> None:
        try:
            payload = self._pong_payload()
        except Exception:
            logger.exception("Pong payload provider failed")
            payload = {}
        # Pongs are terminal: sent once, never relayed and never answered
        self._send(
            Action.PONG,
            payload,
            SendOptions(skip_duplicate_check=True, skip_rate_limiting=True),
            path=(),
            reply_to=ping.message_id,
            broadcast=False,
        )

    def _dispatch(self, envelope: Envelope) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(envelope)
            except Exception:
                logger.exception("Error handling message %s", envelope.action)
                continue
            if inspect.isawaitable(result):
                self._scheduler.spawn(result, name=f"handler:{envelope.message_id}")

    # --- Diagnostics ---

    def get_report(self) -> DiagnosticsReport:
        return self._diagnostics.get_report()

    def analyze_flow(self) -> FlowAnalysis:
        return self._diagnostics.analyze_flow()

    def reset_diagnostics(self) -> None:
        self._diagnostics.reset()

"""MultiTransport: fans sends out over both channels and merges receives."""

import logging

from framebus.helpers.throttle import RateLimiter
from framebus.models.actions import Channel
from framebus.models.envelope import Envelope
from framebus.transport.base import RawHandler, Transport

logger = logging.getLogger(__name__)


class MultiTransport:
    """Composes a primary transport with an optional fallback transport.

    Every envelope goes out on the primary channel. Envelopes whose action is
    in `fallback_actions` are also written to the fallback channel, at most
    once per action per fallback throttle window. A failure on one channel
    never prevents the other from being tried.
    """

    def __init__(
        self,
        primary: Transport,
        fallback: Transport | None = None,
        *,
        limiter: RateLimiter,
        fallback_actions: frozenset[str] = frozenset(),
    ) -> None:
        self.primary = primary
        self.fallback = fallback
        self._limiter = limiter
        self._fallback_actions = fallback_actions

    @property
    def transports(self) -> list[Transport]:
        return [t for t in (self.primary, self.fallback) if t is not None]

    async def start(self, on_raw: RawHandler) -> None:
        for transport in self.transports:
            await transport.start(on_raw)

    def send(self, envelope: Envelope, wire: str, *, bypass_throttle: bool = False) -> list[Channel]:
        """Send on every applicable channel. Returns the channels written to."""
        used: list[Channel] = []
        try:
            self.primary.send(wire)
            used.append(Channel.PRIMARY)
        except Exception:
            logger.exception("Primary channel failed for %s", envelope.message_id)

        if self.fallback is None or envelope.action not in self._fallback_actions:
            return used

        if not self._limiter.allow(envelope.action, Channel.FALLBACK, bypass=bypass_throttle):
            logger.debug("Skipping fallback for %s (rate limited)", envelope.action)
            return used

        try:
            if self.fallback.send(wire):
                used.append(Channel.FALLBACK)
        except Exception:
            logger.exception("Fallback channel failed for %s", envelope.message_id)
        return used

    async def close(self) -> None:
        for transport in self.transports:
            try:
                await transport.close()
            except Exception:
                logger.exception("Error closing %s transport", transport.channel)

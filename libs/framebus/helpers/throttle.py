"""Per-action send throttling, one window per channel."""

import time
from collections.abc import Callable

from framebus.models.actions import Channel


class RateLimiter:
    """Refuses a send when the same action went out on the same channel too recently.

    The last-send time is only updated when a send is allowed. A bypassed
    check always allows and still records the send.
    """

    def __init__(
        self,
        intervals: dict[Channel, float],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._intervals = dict(intervals)
        self._clock = clock
        self._last_sent: dict[tuple[Channel, str], float] = {}

    def allow(
        self,
        action: str,
        channel: Channel = Channel.PRIMARY,
        *,
        bypass: bool = False,
    ) -> bool:
        key = (channel, str(action) or "unknown")
        now = self._clock()
        last = self._last_sent.get(key)
        interval = self._intervals.get(channel, 0.0)
        if not bypass and last is not None and now - last < interval:
            return False
        self._last_sent[key] = now
        return True

    def last_sent(self, action: str, channel: Channel = Channel.PRIMARY) -> float | None:
        return self._last_sent.get((channel, str(action) or "unknown"))

    def reset(self) -> None:
        self._last_sent.clear()

"""Transport capability shared by both delivery channels."""

from abc import ABC, abstractmethod
from collections.abc import Callable

from framebus.models.actions import Channel

# (raw wire data, sender origin, channel it arrived on)
RawHandler = Callable[[str, str, Channel], object]


class Transport(ABC):
    """A fire-and-forget channel that carries encoded envelopes between peers.

    `send()` never blocks and never raises for a single unreachable target;
    inbound data is handed to the `on_raw` callback given to `start()`.
    """

    channel: Channel

    @abstractmethod
    async def start(self, on_raw: RawHandler) -> None:
        """Begin delivering inbound data to `on_raw`."""

    @abstractmethod
    def send(self, wire: str) -> int:
        """Send wire data to every reachable target. Returns the number reached."""

    @abstractmethod
    async def close(self) -> None:
        """Stop receiving and release resources."""

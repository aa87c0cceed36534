"""Primary channel: addressed delivery to parent and nested child contexts."""

import asyncio
import logging

from framebus.errors import TransportUnavailable
from framebus.models.actions import Channel
from framebus.transport.base import RawHandler, Transport

logger = logging.getLogger(__name__)


class DirectTransport(Transport):
    """Posts wire data to the contexts directly related to this one.

    Contexts form a tree: `attach()` nests a child under this context.
    A send reaches the parent (if any) and every attached child. Delivery is
    queued on the receiver's event loop, so `send()` returns immediately.
    """

    channel = Channel.PRIMARY

    def __init__(self, origin: str) -> None:
        self.origin = origin
        self._parent: DirectTransport | None = None
        self._children: list[DirectTransport] = []
        self._on_raw: RawHandler | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def parent(self) -> "DirectTransport | None":
        return self._parent

    @property
    def children(self) -> list["DirectTransport"]:
        return list(self._children)

    @property
    def is_listening(self) -> bool:
        return self._on_raw is not None

    def attach(self, child: "DirectTransport") -> "DirectTransport":
        """Nest `child` under this context. Returns the child."""
        if child._parent is not None:
            child._parent.detach(child)
        child._parent = self
        self._children.append(child)
        return child

    def detach(self, child: "DirectTransport") -> None:
        if child in self._children:
            self._children.remove(child)
            child._parent = None

    async def start(self, on_raw: RawHandler) -> None:
        self._loop = asyncio.get_running_loop()
        self._on_raw = on_raw

    def send(self, wire: str) -> int:
        targets: list[DirectTransport] = []
        if self._parent is not None:
            targets.append(self._parent)
        targets.extend(self._children)

        delivered = 0
        for target in targets:
            try:
                target.post(wire, self.origin)
                delivered += 1
            except Exception as e:
                # One unreachable context must not stop delivery to the others
                logger.debug("Error sending to %s: %s", target.origin, e)
        return delivered

    def post(self, wire: str, origin: str) -> None:
        """Queue wire data from a sender at `origin` for this context."""
        if self._on_raw is None or self._loop is None or self._loop.is_closed():
            raise TransportUnavailable(f"Context {self.origin} is not accepting messages")
        self._loop.call_soon(self._on_raw, wire, origin, self.channel)

    async def close(self) -> None:
        self._on_raw = None
        self._loop = None

"""Fallback channel: a shared key-value store with change notifications.

Every context sharing the store sees every write, regardless of how the
contexts are nested. Entries are deleted shortly after being written.
"""

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable

from framebus.models.actions import Channel
from framebus.transport.base import RawHandler, Transport

logger = logging.getLogger(__name__)

# (key, new value or None when the key was deleted)
ChangeCallback = Callable[[str, str | None], None]


class KeyValueStore(ABC):
    """An async key-value store that notifies watchers of changes."""

    @abstractmethod
    async def put(self, key: str, value: str) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def watch(self, prefix: str, callback: ChangeCallback) -> None:
        """Call `callback` for every change to a key starting with `prefix`."""

    @abstractmethod
    def unwatch(self, callback: ChangeCallback) -> None:
        """Stop calling `callback`."""

    @abstractmethod
    async def close(self) -> None: ...


class MemoryStore(KeyValueStore):
    """In-process store shared by contexts living in the same event loop."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._watchers: list[tuple[str, ChangeCallback]] = []

    def __len__(self) -> int:
        return len(self._data)

    def keys(self) -> list[str]:
        return list(self._data)

    async def put(self, key: str, value: str) -> None:
        self._data[key] = value
        self._notify(key, value)

    async def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._notify(key, None)

    async def watch(self, prefix: str, callback: ChangeCallback) -> None:
        self._watchers.append((prefix, callback))

    def unwatch(self, callback: ChangeCallback) -> None:
        self._watchers = [(p, cb) for p, cb in self._watchers if cb != callback]

    async def close(self) -> None:
        self._watchers.clear()

    def _notify(self, key: str, value: str | None) -> None:
        loop = asyncio.get_running_loop()
        for prefix, callback in list(self._watchers):
            if key.startswith(prefix):
                loop.call_soon(callback, key, value)


class SharedStoreTransport(Transport):
    """Writes each envelope under a unique key and listens for others' writes.

    Stores are shared only between same-origin contexts, so inbound data is
    reported with this context's own origin.
    """

    channel = Channel.FALLBACK

    def __init__(
        self,
        store: KeyValueStore,
        origin: str,
        *,
        key_prefix: str = "framebus.msg.",
        cleanup_delay: float = 1.0,
    ) -> None:
        self.origin = origin
        self._store = store
        self._prefix = key_prefix
        self._cleanup_delay = cleanup_delay
        self._on_raw: RawHandler | None = None
        self._own_keys: set[str] = set()
        self._cleanups: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending_keys(self) -> set[str]:
        """Keys written by this context that have not been cleaned up yet."""
        return set(self._own_keys)

    async def start(self, on_raw: RawHandler) -> None:
        self._on_raw = on_raw
        await self._store.watch(self._prefix, self._on_change)

    def send(self, wire: str) -> int:
        if self._on_raw is None:
            logger.debug("Shared store transport not started, dropping write")
            return 0
        key = f"{self._prefix}{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
        self._own_keys.add(key)
        self._spawn(self._write(key, wire))
        return 1

    async def _write(self, key: str, wire: str) -> None:
        try:
            await self._store.put(key, wire)
        except Exception as e:
            self._own_keys.discard(key)
            logger.error("Fallback communication failed: %s", e)
            return
        loop = asyncio.get_running_loop()
        self._cleanups[key] = loop.call_later(
            self._cleanup_delay, lambda: self._spawn(self._remove(key))
        )

    async def _remove(self, key: str) -> None:
        self._cleanups.pop(key, None)
        try:
            await self._store.delete(key)
        except Exception as e:
            logger.warning("Could not clean up fallback entry %s: %s", key, e)
        finally:
            self._own_keys.discard(key)

    def _on_change(self, key: str, value: str | None) -> None:
        if value is None or key in self._own_keys or self._on_raw is None:
            return
        self._on_raw(value, self.origin, self.channel)

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def close(self) -> None:
        self._on_raw = None
        self._store.unwatch(self._on_change)
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        for handle in self._cleanups.values():
            handle.cancel()
        self._cleanups.clear()
        for key in list(self._own_keys):
            await self._remove(key)

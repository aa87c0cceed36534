"""NatsKeyValueStore: shared fallback store backed by a NATS JetStream KV bucket."""

import asyncio
import logging
from typing import Any

import nats
from nats.aio.client import Client as NATSClient
from nats.errors import TimeoutError as NATSTimeoutError
from nats.js.api import KeyValueConfig
from nats.js.errors import BucketNotFoundError, KeyNotFoundError
from nats.js.kv import KeyValue

from framebus.transport.shared_store import ChangeCallback, KeyValueStore

logger = logging.getLogger(__name__)

BUCKET_NAME = "FRAMEBUS"


class NatsKeyValueStore(KeyValueStore):
    """Key-value store shared by every process connected to the same bucket.

    Usage:
        store = NatsKeyValueStore("nats://localhost:4222")
        await store.connect()
        transport = SharedStoreTransport(store, origin)
        ...
        await store.close()

    Keys use `.`-separated tokens, so watch prefixes should end with `.`.
    """

    def __init__(
        self,
        url: str = "nats://localhost:4222",
        *,
        bucket: str = BUCKET_NAME,
        ttl: float = 60.0,
    ) -> None:
        self._url = url
        self._bucket = bucket
        self._ttl = ttl
        self._nc: NATSClient | None = None
        self._kv: KeyValue | None = None
        self._watchers: dict[ChangeCallback, tuple[Any, asyncio.Task]] = {}

    @property
    def is_connected(self) -> bool:
        return self._nc is not None and self._nc.is_connected

    async def connect(self) -> None:
        """Connect to NATS and open (or create) the key-value bucket."""
        self._nc = await nats.connect(
            self._url,
            reconnected_cb=self._on_reconnect,
            disconnected_cb=self._on_disconnect,
            error_cb=self._on_error,
            max_reconnect_attempts=10,
            reconnect_time_wait=2,
        )
        js = self._nc.jetstream()

        try:
            self._kv = await js.key_value(self._bucket)
            logger.info("Key-value bucket '%s' already exists", self._bucket)
        except BucketNotFoundError:
            # Entries are deleted by their writer; the TTL only reaps orphans
            self._kv = await js.create_key_value(
                config=KeyValueConfig(bucket=self._bucket, history=1, ttl=self._ttl)
            )
            logger.info("Created key-value bucket '%s'", self._bucket)

    def _require_kv(self) -> KeyValue:
        if self._kv is None:
            raise RuntimeError("Not connected. Call connect() first.")
        return self._kv

    async def put(self, key: str, value: str) -> None:
        kv = self._require_kv()
        await kv.put(key, value.encode())
        logger.debug("Stored %s", key)

    async def delete(self, key: str) -> None:
        kv = self._require_kv()
        try:
            await kv.delete(key)
        except KeyNotFoundError:
            pass

    async def watch(self, prefix: str, callback: ChangeCallback) -> None:
        """Watch every key under `prefix` for new values.

        Only updates made after the watch starts are reported.
        """
        kv = self._require_kv()
        watcher = await kv.watch(f"{prefix}>", ignore_deletes=True)
        task = asyncio.ensure_future(self._consume(watcher, callback))
        self._watchers[callback] = (watcher, task)
        logger.info("Watching %s in bucket '%s'", prefix, self._bucket)

    async def _consume(self, watcher: Any, callback: ChangeCallback) -> None:
        """Forward watcher updates to the callback until the watcher is stopped."""
        initial = True
        while True:
            try:
                entry = await watcher.updates(timeout=5.0)
            except NATSTimeoutError:
                continue
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.debug("Key-value watcher stopped")
                return
            if entry is None:
                # Marks the end of the values that existed before the watch
                initial = False
                continue
            if initial or entry.value is None:
                continue
            try:
                callback(entry.key, entry.value.decode())
            except Exception:
                logger.exception("Error handling key-value update for %s", entry.key)

    def unwatch(self, callback: ChangeCallback) -> None:
        found = self._watchers.pop(callback, None)
        if found is None:
            return
        watcher, task = found
        task.cancel()
        asyncio.ensure_future(self._stop_watcher(watcher))

    async def _stop_watcher(self, watcher: Any) -> None:
        try:
            await watcher.stop()
        except Exception:
            logger.debug("Key-value watcher already stopped")

    async def close(self) -> None:
        """Stop every watcher and disconnect."""
        for callback in list(self._watchers):
            watcher, task = self._watchers.pop(callback)
            task.cancel()
            await self._stop_watcher(watcher)

        if self._nc is not None:
            await self._nc.drain()
            self._nc = None
            self._kv = None
        logger.info("Disconnected from NATS")

    async def _on_reconnect(self, _: Any = None) -> None:
        logger.info("Reconnected to NATS at %s", self._url)

    async def _on_disconnect(self, _: Any = None) -> None:
        logger.warning("Disconnected from NATS")

    async def _on_error(self, e: Exception) -> None:
        logger.error("NATS error: %s", e)

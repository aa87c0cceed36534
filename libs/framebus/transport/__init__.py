from framebus.transport.base import RawHandler, Transport
from framebus.transport.direct import DirectTransport
from framebus.transport.multi import MultiTransport
from framebus.transport.shared_store import KeyValueStore, MemoryStore, SharedStoreTransport

__all__ = [
    "DirectTransport",
    "KeyValueStore",
    "MemoryStore",
    "MultiTransport",
    "RawHandler",
    "SharedStoreTransport",
    "Transport",
]

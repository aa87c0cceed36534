"""Frame bus: cross-context message bus shared library."""

from framebus.agent import (
    MemorySettingsStore,
    PeerAgent,
    PeerState,
    QuestionSource,
    SettingsStore,
)
from framebus.client.bus import MessageBus, SendOptions
from framebus.client.nats_store import NatsKeyValueStore
from framebus.config import BusConfig, PeerRule
from framebus.errors import (
    DecodeError,
    DropReason,
    ForeignMessage,
    FrameBusError,
    MalformedPayload,
    TransportUnavailable,
)
from framebus.helpers.codec import create_envelope, decode_envelope, encode_envelope
from framebus.helpers.dedup import content_fingerprint, detect_loop
from framebus.helpers.origin import OriginValidator, classify_origin
from framebus.models.actions import Action, Channel
from framebus.models.envelope import PROTOCOL_TAG, Envelope
from framebus.models.report import (
    CircularPath,
    DiagnosticsReport,
    FlowAnalysis,
    FlowRating,
    StatCategory,
)
from framebus.transport import (
    DirectTransport,
    KeyValueStore,
    MemoryStore,
    MultiTransport,
    SharedStoreTransport,
    Transport,
)

__all__ = [
    # Client
    "MessageBus",
    "NatsKeyValueStore",
    "SendOptions",
    # Peer agent
    "MemorySettingsStore",
    "PeerAgent",
    "PeerState",
    "QuestionSource",
    "SettingsStore",
    # Config and errors
    "BusConfig",
    "DecodeError",
    "DropReason",
    "ForeignMessage",
    "FrameBusError",
    "MalformedPayload",
    "PeerRule",
    "TransportUnavailable",
    # Models
    "Action",
    "Channel",
    "CircularPath",
    "DiagnosticsReport",
    "Envelope",
    "FlowAnalysis",
    "FlowRating",
    "PROTOCOL_TAG",
    "StatCategory",
    # Transports
    "DirectTransport",
    "KeyValueStore",
    "MemoryStore",
    "MultiTransport",
    "SharedStoreTransport",
    "Transport",
    # Helpers
    "OriginValidator",
    "classify_origin",
    "content_fingerprint",
    "create_envelope",
    "decode_envelope",
    "detect_loop",
    "encode_envelope",
]

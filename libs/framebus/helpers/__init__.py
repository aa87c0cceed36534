from framebus.helpers.codec import create_envelope, decode_envelope, encode_envelope
from framebus.helpers.dedup import DedupGuard, content_fingerprint, detect_loop, peer_counts
from framebus.helpers.diagnostics import DiagnosticsCollector
from framebus.helpers.origin import OriginValidator, classify_origin, host_matches
from framebus.helpers.throttle import RateLimiter

__all__ = [
    "DedupGuard",
    "DiagnosticsCollector",
    "OriginValidator",
    "RateLimiter",
    "classify_origin",
    "content_fingerprint",
    "create_envelope",
    "decode_envelope",
    "detect_loop",
    "encode_envelope",
    "host_matches",
    "peer_counts",
]

"""Duplicate suppression and hop-path loop detection."""

import hashlib
import json
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable, Sequence
from typing import Any

DEFAULT_FINGERPRINT_KEYS = ("enabled", "hasQuestions")


def content_fingerprint(
    action: str,
    payload: Any,
    keys: Iterable[str] = DEFAULT_FINGERPRINT_KEYS,
) -> str:
    """Hash the semantically relevant part of an outgoing message.

    Only the action and the listed payload keys contribute, so two sends of
    the same logical event hash equal even with different ids and timestamps.
    """
    subset: dict[str, Any] = {"action": str(action)}
    if isinstance(payload, dict):
        for key in keys:
            if key in payload:
                subset[key] = payload[key]
    raw = json.dumps(subset, sort_keys=True, default=str)
    return hashlib.sha256(raw.encode()).hexdigest()[:16]


def peer_counts(path: Sequence[str]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for peer in path:
        counts[peer] = counts.get(peer, 0) + 1
    return counts


def detect_loop(path: Sequence[str], threshold: int = 3) -> dict[str, int] | None:
    """Return the per-peer counts if any peer occurs `threshold` or more times."""
    if len(path) < threshold:
        return None
    counts = peer_counts(path)
    if any(n >= threshold for n in counts.values()):
        return counts
    return None


class _BoundedRecord:
    """Insertion-ordered id -> value map that evicts its oldest entries."""

    def __init__(self, capacity: int) -> None:
        self._capacity = capacity
        self._entries: OrderedDict[str, Any] = OrderedDict()

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Any:
        return self._entries.get(key)

    def add(self, key: str, value: Any) -> None:
        if key in self._entries:
            return
        self._entries[key] = value
        while len(self._entries) > self._capacity:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()


class DedupGuard:
    """Tracks sent ids, received ids and recent content fingerprints.

    Outgoing: a fingerprint seen within `duplicate_window` seconds is refused.
    Incoming: a message id already in the received record is refused, unless
    the sender marked the message as always answerable. An always-answerable
    message is admitted again only on the channel it first arrived on, so a
    repeated ping is answered but its copy on the other channel is not.
    """

    def __init__(
        self,
        *,
        capacity: int = 100,
        duplicate_window: float = 2.0,
        fingerprint_ttl: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._duplicate_window = duplicate_window
        self._fingerprint_ttl = fingerprint_ttl
        self._clock = clock
        self._sent = _BoundedRecord(capacity)
        self._received = _BoundedRecord(capacity)
        # broadcast id -> channel it first arrived on
        self._broadcast_channels = _BoundedRecord(capacity)
        self._fingerprints: dict[str, float] = {}

    # --- Outgoing ---

    def admit_outgoing(self, fingerprint: str, *, skip_duplicate_check: bool = False) -> bool:
        """Check and record an outgoing fingerprint. Returns False for a near-duplicate."""
        now = self._clock()
        self._purge_fingerprints(now)
        last = self._fingerprints.get(fingerprint)
        if (
            not skip_duplicate_check
            and last is not None
            and now - last < self._duplicate_window
        ):
            return False
        self._fingerprints[fingerprint] = now
        return True

    def record_sent(self, message_id: str) -> None:
        self._sent.add(message_id, self._clock())

    def is_own(self, message_id: str) -> bool:
        """Check if a message id was generated by this bus."""
        return message_id in self._sent

    # --- Incoming ---

    def admit_incoming(
        self,
        message_id: str,
        *,
        always_answer: bool = False,
        channel: str | None = None,
    ) -> bool:
        """Record an inbound message id. Returns False if it was already seen."""
        seen = message_id in self._received
        self._received.add(message_id, self._clock())
        if not always_answer:
            return not seen
        if not seen:
            self._broadcast_channels.add(message_id, channel)
            return True
        first = self._broadcast_channels.get(message_id)
        return first is None or channel is None or first == channel

    @property
    def received_count(self) -> int:
        return len(self._received)

    @property
    def sent_count(self) -> int:
        return len(self._sent)

    def reset(self) -> None:
        self._sent.clear()
        self._received.clear()
        self._broadcast_channels.clear()
        self._fingerprints.clear()

    def _purge_fingerprints(self, now: float) -> None:
        stale = [fp for fp, ts in self._fingerprints.items() if now - ts > self._fingerprint_ttl]
        for fp in stale:
            del self._fingerprints[fp]

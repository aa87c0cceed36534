"""Bus configuration: every policy constant in one validated model."""

import os

from pydantic import BaseModel, Field

from framebus.models.actions import FALLBACK_ACTIONS
from framebus.models.envelope import PROTOCOL_TAG


class PeerRule(BaseModel):
    """Classify an origin as a peer tag when `pattern` occurs in its host."""

    pattern: str
    tag: str


class BusConfig(BaseModel):
    """Configuration for one MessageBus instance.

    All durations are in seconds.
    """

    protocol_tag: str = PROTOCOL_TAG
    origin: str = "http://localhost"
    peer_id: str | None = None
    trusted_domains: list[str] = Field(default_factory=list)
    peer_rules: list[PeerRule] = Field(default_factory=list)
    debug_mode: bool = False

    # Throttling
    primary_min_interval: float = Field(default=0.5, ge=0)
    fallback_min_interval: float = Field(default=2.0, ge=0)

    # Deduplication
    duplicate_window: float = Field(default=2.0, ge=0)
    fingerprint_ttl: float = Field(default=10.0, ge=0)
    fingerprint_keys: tuple[str, ...] = ("enabled", "hasQuestions")
    dedup_capacity: int = Field(default=100, gt=0)

    # Loop detection
    loop_threshold: int = Field(default=3, gt=1)
    suspect_path_length: int = Field(default=5, gt=0)
    circular_history: int = Field(default=20, gt=0)

    # Request/reply
    ping_timeout: float = Field(default=5.0, gt=0)
    discovery_window: float = Field(default=2.0, gt=0)
    retry_delay: float = Field(default=0.5, ge=0)

    # Fallback channel
    fallback_actions: frozenset[str] = FALLBACK_ACTIONS
    store_key_prefix: str = "framebus.msg."
    store_cleanup_delay: float = Field(default=1.0, ge=0)

    # Peer agent
    relay_max_path: int = Field(default=3, gt=0)
    reaction_jitter: float = Field(default=0.5, ge=0)
    initial_ping_delay: float = Field(default=1.0, ge=0)

    # Diagnostics
    diagnostics_window: float = Field(default=5.0, gt=0)
    max_timestamps: int = Field(default=50, gt=0)
    max_samples: int = Field(default=20, gt=0)

    @classmethod
    def from_env(cls, **overrides) -> "BusConfig":
        """Build a config from FRAMEBUS_* environment variables.

        Keyword overrides win over the environment.
        """
        values: dict = {}
        if origin := os.environ.get("FRAMEBUS_ORIGIN"):
            values["origin"] = origin
        if peer_id := os.environ.get("FRAMEBUS_PEER_ID"):
            values["peer_id"] = peer_id
        if trusted := os.environ.get("FRAMEBUS_TRUSTED_DOMAINS"):
            values["trusted_domains"] = [d.strip() for d in trusted.split(",") if d.strip()]
        if debug := os.environ.get("FRAMEBUS_DEBUG"):
            values["debug_mode"] = debug.lower() in ("1", "true", "yes", "on")
        values.update(overrides)
        return cls(**values)

"""Origin trust decisions and peer identifier classification."""

from urllib.parse import urlsplit

from framebus.config import PeerRule

UNKNOWN_PEER = "unknown"


def _host_of(origin: str) -> str | None:
    """Return the lowercased host of an http(s) origin, or None."""
    try:
        parts = urlsplit(origin.strip())
        host = parts.hostname
    except ValueError:
        return None
    if parts.scheme not in ("http", "https") or not host:
        return None
    return host


def host_matches(host: str, pattern: str) -> bool:
    """Check a host against an exact (`a.b.com`) or wildcard (`*.b.com`) pattern.

    A wildcard pattern also matches the bare domain itself.
    """
    pattern = pattern.strip().lower()
    if pattern.startswith("*."):
        domain = pattern[2:]
        return host == domain or host.endswith("." + domain)
    return host == pattern


class OriginValidator:
    """Decides whether inbound traffic from an origin is trusted.

    Trusted means: identical to our own origin, or an http(s) origin whose
    host matches one of the configured domain patterns.
    """

    def __init__(self, own_origin: str, trusted_domains: list[str] | None = None) -> None:
        self._own_origin = own_origin
        self._patterns = [p for p in (trusted_domains or []) if p and p.strip()]

    @property
    def own_origin(self) -> str:
        return self._own_origin

    def is_trusted(self, origin: str) -> bool:
        if not isinstance(origin, str) or not origin:
            return False
        if origin == self._own_origin:
            return True
        host = _host_of(origin)
        if host is None:
            return False
        return any(host_matches(host, pattern) for pattern in self._patterns)


def classify_origin(origin: str, rules: list[PeerRule]) -> str:
    """Map an origin to a peer identifier using the first matching rule.

    Rules are checked in order, so more specific patterns must come first.
    Without a matching rule the origin host is used, or `unknown`.
    """
    lowered = origin.lower()
    for rule in rules:
        if rule.pattern.lower() in lowered:
            return rule.tag
    return _host_of(origin) or UNKNOWN_PEER

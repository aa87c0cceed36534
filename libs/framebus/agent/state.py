"""PeerState: local view of the solver for one hosting context."""

from dataclasses import dataclass, field


@dataclass
class PeerState:
    """Mutable state owned by a PeerAgent."""

    peer_id: str
    enabled: bool = False
    analyzing: bool = False
    analyses_completed: int = 0
    # peer id -> whether it reported questions in its last pong
    known_peers: dict[str, bool] = field(default_factory=dict)

    def start_analysis(self) -> bool:
        """Mark an analysis as running. Returns False if one already is."""
        if self.analyzing:
            return False
        self.analyzing = True
        return True

    def finish_analysis(self) -> bool:
        """Mark the running analysis done.

        Returns False if it was cancelled meanwhile (another peer finished first).
        """
        if not self.analyzing:
            return False
        self.analyzing = False
        self.analyses_completed += 1
        return True

    def cancel_analysis(self) -> bool:
        """Drop the running analysis flag. Returns False if nothing was running."""
        if not self.analyzing:
            return False
        self.analyzing = False
        return True

    def record_peer(self, peer_id: str, has_questions: bool) -> None:
        self.known_peers[peer_id] = has_questions

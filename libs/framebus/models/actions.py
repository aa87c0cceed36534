"""Action tags and channel names for the frame bus protocol."""

from enum import StrEnum


class Action(StrEnum):
    """All action tags the protocol knows about.

    The wire carries plain strings, so unknown tags can still arrive;
    use `Action.parse()` to map a tag to a member or None.
    """

    ANALYZE_QUESTION = "analyzeQuestion"
    UPDATE_STATUS = "updateStatus"
    SOLVER_STATUS_CHANGED = "solverStatusChanged"
    REQUEST_QUESTION_CHECK = "requestQuestionCheck"
    QUESTION_ANALYZED = "questionAnalyzed"
    PING = "ping"
    PONG = "pong"

    @classmethod
    def parse(cls, tag: str) -> "Action | None":
        """Return the Action for a wire tag, or None if the tag is unknown."""
        try:
            return cls(tag)
        except ValueError:
            return None


class Channel(StrEnum):
    """The two independent delivery channels."""

    PRIMARY = "primary"
    FALLBACK = "fallback"


# Actions that are also written to the fallback channel. Ping and pong
# travel there too so store-only contexts can be discovered.
FALLBACK_ACTIONS: frozenset[str] = frozenset(
    {
        Action.PING,
        Action.PONG,
        Action.ANALYZE_QUESTION,
        Action.UPDATE_STATUS,
        Action.REQUEST_QUESTION_CHECK,
    }
)

# Discovery traffic is never throttled or content-suppressed
CONTROL_ACTIONS: frozenset[str] = frozenset({Action.PING, Action.PONG})

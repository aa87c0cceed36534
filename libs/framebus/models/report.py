"""Diagnostics report models."""

from enum import StrEnum

from pydantic import BaseModel, Field


class StatCategory(StrEnum):
    """Traffic categories tallied by the diagnostics collector."""

    SENT = "sent"
    RECEIVED = "received"
    THROTTLED = "throttled"
    FALLBACK_SENT = "fallback.sent"
    FALLBACK_RECEIVED = "fallback.received"


class FlowRating(StrEnum):
    """Qualitative health of the message flow, ordered by severity."""

    NORMAL = "normal"
    CONCERNING = "concerning"
    PROBLEMATIC = "problematic"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    def worst(self, other: "FlowRating") -> "FlowRating":
        """Return whichever of the two ratings is more severe."""
        return self if self.severity >= other.severity else other


_SEVERITY = {
    FlowRating.NORMAL: 0,
    FlowRating.CONCERNING: 1,
    FlowRating.PROBLEMATIC: 2,
}


class CircularPath(BaseModel):
    """Snapshot of a hop path that tripped loop detection."""

    path: list[str]
    counts: dict[str, int]
    timestamp: float


class FlowAnalysis(BaseModel):
    """Patterns, advice and overall rating derived from a report."""

    patterns: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    urgent_issues: list[str] = Field(default_factory=list)
    flow_rating: FlowRating = FlowRating.NORMAL


class DiagnosticsReport(BaseModel):
    """Point-in-time traffic report.

    `by_action` and `message_rate` are keyed by action, then category.
    Rates are messages per second over the diagnostics window.
    """

    summary: dict[str, int] = Field(default_factory=dict)
    by_action: dict[str, dict[str, int]] = Field(default_factory=dict)
    message_rate: dict[str, dict[str, float]] = Field(default_factory=dict)
    loops: int = 0
    last_circular_path: CircularPath | None = None
    analysis: FlowAnalysis = Field(default_factory=FlowAnalysis)

    @property
    def flow_rating(self) -> FlowRating:
        return self.analysis.flow_rating

"""Traffic statistics, loop history and flow health analysis.

The collector is a pure observer: nothing it records or reports feeds back
into protocol decisions.
"""

import time
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from framebus.helpers.dedup import peer_counts
from framebus.models.report import (
    CircularPath,
    DiagnosticsReport,
    FlowAnalysis,
    FlowRating,
    StatCategory,
)

CONCERNING_RATE = 5.0
PROBLEMATIC_RATE = 10.0
PROBLEMATIC_LOOPS = 5
IMBALANCE_FACTOR = 3
IMBALANCE_MIN_RECEIVED = 10


@dataclass
class ActionStats:
    """Counters for one (category, action) pair."""

    count: int = 0
    timestamps: deque[float] = field(default_factory=deque)
    samples: deque[dict[str, Any]] = field(default_factory=deque)


class DiagnosticsCollector:
    """Tallies traffic per category and action and rates the message flow."""

    def __init__(
        self,
        *,
        window: float = 5.0,
        max_timestamps: int = 50,
        max_samples: int = 20,
        circular_history: int = 20,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window = window
        self._max_timestamps = max_timestamps
        self._max_samples = max_samples
        self._clock = clock
        self._stats: dict[str, dict[str, ActionStats]] = {c.value: {} for c in StatCategory}
        self._circular: deque[CircularPath] = deque(maxlen=circular_history)

    def record(
        self,
        category: StatCategory | str,
        action: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        """Count one message, keeping bounded timestamp and sample history."""
        now = self._clock()
        by_action = self._stats.setdefault(str(category), {})
        stats = by_action.get(action)
        if stats is None:
            stats = by_action[action] = ActionStats(
                timestamps=deque(maxlen=self._max_timestamps),
                samples=deque(maxlen=self._max_samples),
            )
        stats.count += 1
        stats.timestamps.append(now)
        if data:
            stats.samples.append({"timestamp": now, **data})

    def record_loop(self, path: Sequence[str], counts: dict[str, int] | None = None) -> None:
        self._circular.append(
            CircularPath(
                path=list(path),
                counts=dict(counts) if counts is not None else peer_counts(path),
                timestamp=time.time(),
            )
        )

    @property
    def loop_count(self) -> int:
        return len(self._circular)

    def samples(self, category: StatCategory | str, action: str) -> list[dict[str, Any]]:
        stats = self._stats.get(str(category), {}).get(action)
        return list(stats.samples) if stats else []

    def _rate(self, timestamps: deque[float], now: float) -> float:
        """Messages per second over the window.

        The divisor is the span actually covered by recent messages, clamped
        to [1s, window], so a short burst is not diluted over the full window.
        """
        recent = [ts for ts in timestamps if now - ts < self._window]
        if not recent:
            return 0.0
        span = min(max(now - recent[0], 1.0), self._window)
        return len(recent) / span

    def get_report(self) -> DiagnosticsReport:
        """Build a point-in-time report including the flow analysis."""
        now = self._clock()
        report = DiagnosticsReport(
            loops=len(self._circular),
            last_circular_path=self._circular[-1] if self._circular else None,
        )
        for category, by_action in self._stats.items():
            report.summary[category] = 0
            for action, stats in by_action.items():
                report.summary[category] += stats.count
                report.by_action.setdefault(action, {})[category] = stats.count
                report.message_rate.setdefault(action, {})[category] = self._rate(
                    stats.timestamps, now
                )
        report.analysis = self._analyze(report)
        return report

    def analyze_flow(self) -> FlowAnalysis:
        return self.get_report().analysis

    def _analyze(self, report: DiagnosticsReport) -> FlowAnalysis:
        analysis = FlowAnalysis()
        rating = FlowRating.NORMAL

        for action, rates in report.message_rate.items():
            for category, rate in rates.items():
                if rate <= CONCERNING_RATE:
                    continue
                analysis.patterns.append(
                    f"High message rate: {rate:.1f}/sec for {action} ({category})"
                )
                if rate > PROBLEMATIC_RATE:
                    rating = rating.worst(FlowRating.PROBLEMATIC)
                    analysis.urgent_issues.append(f"Message storm detected: {action} ({category})")
                    analysis.recommendations.append(f"Increase throttling for '{action}' messages")
                else:
                    rating = rating.worst(FlowRating.CONCERNING)
                    analysis.recommendations.append(f"Consider rate limiting '{action}' messages")

        for action, counts in report.by_action.items():
            sent = counts.get(StatCategory.SENT, 0)
            received = counts.get(StatCategory.RECEIVED, 0)
            if sent > 0 and received == 0:
                analysis.patterns.append(f"Messages sent but none received: {action}")
                analysis.recommendations.append(
                    f"Check if '{action}' messages are being processed correctly"
                )
            if received > sent * IMBALANCE_FACTOR and received > IMBALANCE_MIN_RECEIVED:
                analysis.patterns.append(f"Receiving many more messages than sending: {action}")
                analysis.recommendations.append(
                    f"Check for message duplication or multiple senders for '{action}'"
                )

        if report.loops > 0:
            analysis.patterns.append(f"{report.loops} circular message paths detected")
            analysis.recommendations.append(
                "Review message forwarding logic and limit propagation depth"
            )
            if report.loops > PROBLEMATIC_LOOPS:
                rating = rating.worst(FlowRating.PROBLEMATIC)
                analysis.urgent_issues.append("Multiple message loops detected")
            else:
                rating = rating.worst(FlowRating.CONCERNING)

        analysis.flow_rating = rating
        return analysis

    def reset(self) -> None:
        for by_action in self._stats.values():
            by_action.clear()
        self._circular.clear()

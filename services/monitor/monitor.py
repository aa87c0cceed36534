"""MonitorService: watches the shared fallback store and reports flow health."""

import asyncio
import logging

from framebus import (
    BusConfig,
    DiagnosticsReport,
    DirectTransport,
    Envelope,
    FlowRating,
    KeyValueStore,
    MessageBus,
    SharedStoreTransport,
)

logger = logging.getLogger(__name__)

DEFAULT_REPORT_INTERVAL = 10.0


class MonitorService:
    """A passive peer on the fallback channel.

    It sees every envelope written to the shared store and answers the
    discovery pings that reach it there. Every report interval it logs the
    diagnostics report, warning whenever the flow rating is not normal.
    """

    PEER_ID = "monitor"

    def __init__(
        self,
        store: KeyValueStore,
        config: BusConfig | None = None,
        *,
        report_interval: float = DEFAULT_REPORT_INTERVAL,
    ) -> None:
        self._config = config or BusConfig.from_env(peer_id=self.PEER_ID)
        self._report_interval = report_interval
        self._bus = MessageBus(
            self._config,
            DirectTransport(self._config.origin),
            SharedStoreTransport(
                store,
                self._config.origin,
                key_prefix=self._config.store_key_prefix,
                cleanup_delay=self._config.store_cleanup_delay,
            ),
        )
        self._seen: list[Envelope] = []
        self._report_task: asyncio.Task | None = None

    @property
    def bus(self) -> MessageBus:
        return self._bus

    @property
    def seen(self) -> list[Envelope]:
        """Envelopes observed since the last report."""
        return list(self._seen)

    async def start(self) -> None:
        self._bus.on_receive(self._on_envelope)
        await self._bus.start()
        self._report_task = asyncio.ensure_future(self._report_loop())
        logger.info("Monitor watching %s", self._config.store_key_prefix)

    async def stop(self) -> None:
        if self._report_task is not None:
            self._report_task.cancel()
            try:
                await self._report_task
            except asyncio.CancelledError:
                pass
            self._report_task = None
        await self._bus.close()
        logger.info("Monitor stopped")

    def _on_envelope(self, envelope: Envelope) -> None:
        self._seen.append(envelope)
        logger.info(
            "%s from %s (path %s)",
            envelope.action,
            envelope.from_peer,
            " -> ".join(envelope.path),
        )

    async def _report_loop(self) -> None:
        while True:
            await asyncio.sleep(self._report_interval)
            self.log_report()

    def log_report(self) -> DiagnosticsReport:
        """Log the current report and start a new observation period."""
        report = self._bus.get_report()
        analysis = report.analysis
        logger.info(
            "Flow %s: %d messages observed, %d loops",
            report.flow_rating,
            len(self._seen),
            report.loops,
        )
        if report.flow_rating != FlowRating.NORMAL:
            for issue in analysis.urgent_issues:
                logger.warning("Urgent: %s", issue)
            for pattern in analysis.patterns:
                logger.warning("Pattern: %s", pattern)
            for recommendation in analysis.recommendations:
                logger.info("Recommendation: %s", recommendation)
        self._seen.clear()
        return report

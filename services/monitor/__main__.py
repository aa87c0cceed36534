"""Entry point: python -m services.monitor"""

import asyncio
import logging
import os
import signal

from framebus import BusConfig, NatsKeyValueStore

from services.monitor.monitor import MonitorService


async def main() -> None:
    config = BusConfig.from_env(peer_id=MonitorService.PEER_ID)
    logging.basicConfig(
        level=logging.DEBUG if config.debug_mode else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    store = NatsKeyValueStore(os.environ.get("NATS_URL", "nats://localhost:4222"))
    await store.connect()

    interval = float(os.environ.get("FRAMEBUS_REPORT_INTERVAL", "10"))
    monitor = MonitorService(store, config, report_interval=interval)
    loop = asyncio.get_running_loop()

    # Handle graceful shutdown
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logging.getLogger(__name__).info("Shutdown signal received")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    await monitor.start()
    logging.getLogger(__name__).info("Monitor is running. Press Ctrl+C to stop.")

    await stop_event.wait()
    await monitor.stop()
    await store.close()


if __name__ == "__main__":
    asyncio.run(main())

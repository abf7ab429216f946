"""
Background worker entry point.

Runs the reminder scheduler and the calendar sync reconciler on one event
loop until SIGTERM/SIGINT, then stops both (in-flight ticks finish first).
"""

import asyncio
import logging
import signal

from agent.workers.calendar_sync_worker import CalendarSyncReconciler
from agent.workers.reminder_worker import ReminderScheduler
from shared.config import get_settings
from shared.logging_config import configure_logging

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


async def async_main(shutdown: asyncio.Event | None = None) -> None:
    settings = get_settings()
    configure_logging()

    pollers = [
        ReminderScheduler(settings=settings),
        CalendarSyncReconciler(settings=settings),
    ]

    shutdown = shutdown or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in SHUTDOWN_SIGNALS:
        loop.add_signal_handler(sig, shutdown.set)

    for poller in pollers:
        poller.start()
    logger.info(f"Background workers running: {', '.join(p.name for p in pollers)}")

    try:
        await shutdown.wait()
    finally:
        logger.info("Shutdown signal received, stopping workers")
        for sig in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(sig)
        for poller in pollers:
            await poller.stop()

        from database.connection import engine

        await engine.dispose()


def run_background_workers() -> None:
    asyncio.run(async_main())


if __name__ == "__main__":
    run_background_workers()

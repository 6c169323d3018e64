"""Retention worker entry point.

Runs the retention scheduler as a separate process, without the HTTP API.
"""

import asyncio
import signal

import structlog

from chryso.config import settings
from chryso.core.logging import setup_logging
from chryso.db.session import AsyncSessionLocal, close_db, init_db
from chryso.services.retention_scheduler import RetentionScheduler

logger = structlog.get_logger()


class RetentionWorker:
    """Main retention worker process."""

    def __init__(self, scheduler: RetentionScheduler | None = None):
        self._shutdown_event: asyncio.Event = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._scheduler = scheduler or RetentionScheduler(AsyncSessionLocal)

    def _signal_handler(self, sig: signal.Signals) -> None:
        """Handle shutdown signals."""
        logger.info("shutdown_signal_received", signal=sig.name)
        self._shutdown_event.set()

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def run(self) -> None:
        """Run the retention worker."""
        setup_logging()

        logger.info(
            "retention_worker_starting",
            debug=settings.debug,
            owner=settings.retention_owner_id,
        )

        # Set up signal handlers
        self._loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                self._loop.add_signal_handler(
                    sig,
                    lambda s=sig: self._signal_handler(s),
                )
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f, sig=sig: self._signal_handler(sig))

        try:
            await init_db()
            logger.info("database_connected")

            await self._scheduler.start()
            logger.info("retention_scheduler_started")

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error("retention_worker_error", error=str(e))
            raise
        finally:
            logger.info("retention_worker_shutting_down")

            await self._scheduler.stop()
            await close_db()

            logger.info("retention_worker_stopped")


def main() -> None:
    """Entry point for the retention worker."""
    worker = RetentionWorker()
    asyncio.run(worker.run())


if __name__ == "__main__":
    main()

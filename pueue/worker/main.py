"""
Worker process entrypoint.

Prepares the schema, wires EventBus -> DispatchEngine -> PollingScheduler,
lets the configured setup hook register handlers and listeners, and runs
until SIGTERM/SIGINT.
"""

import asyncio
import logging
import signal

from pueue.config import get_settings
from pueue.db import close_db, get_engine, get_session_factory, init_db
from pueue.db.schema import SchemaManager
from pueue.errors import SchemaError
from pueue.events import EventBus
from pueue.observability.logging import setup_logging
from pueue.observability.metrics import setup_metrics
from pueue.observability.tracing import setup_tracing
from pueue.utils import import_string
from pueue.worker.engine import DispatchEngine
from pueue.worker.scheduler import PollingScheduler

logger = logging.getLogger(__name__)


def build_scheduler() -> PollingScheduler:
    """
    Construct the scheduler and run the configured setup hook on it.

    Requires init_db() to have been called.
    """
    settings = get_settings()
    metrics = setup_metrics()

    engine = DispatchEngine(
        get_session_factory(),
        EventBus(metrics),
        metrics=metrics,
    )
    scheduler = PollingScheduler(
        engine,
        schema_manager=SchemaManager(get_engine()),
        migrate=settings.schema_auto_migrate,
    )

    setup = import_string(settings.worker_setup)
    setup(scheduler)

    return scheduler


async def run_async() -> None:
    """Run the worker asynchronously."""
    setup_logging()
    setup_tracing()
    await init_db()

    try:
        scheduler = build_scheduler()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, scheduler.stop)

        try:
            await scheduler.run()
        except SchemaError as e:
            logger.critical(f"Error on migration: {e}")
            raise
    finally:
        await close_db()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()

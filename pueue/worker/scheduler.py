"""
Polling scheduler.

Runs one independent polling loop per registered process name. Each loop
calls DispatchEngine.process(), logs anything that escapes, waits the
registration's delay, and repeats until stop() is called.
"""

import asyncio
import logging
from collections.abc import Callable

from pueue.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CONCURRENCY,
    DEFAULT_POLL_DELAY_MS,
    QueueEvent,
)
from pueue.db.schema import SchemaManager
from pueue.errors import DuplicateProcessError
from pueue.events import EventBus
from pueue.types.job import EventListener, JobHandler, ProcessRegistration
from pueue.worker.engine import DispatchEngine

logger = logging.getLogger(__name__)


class PollingScheduler:
    """
    Drives dispatch rounds for every registered process name.

    Handlers and listeners are registered with explicit calls (or the
    decorator forms) before run(). The scheduler owns the engine's
    EventBus; listeners registered through on() live as long as it does.
    """

    def __init__(
        self,
        engine: DispatchEngine,
        schema_manager: SchemaManager | None = None,
        migrate: bool = True,
    ):
        """
        Initialize the scheduler.

        Args:
            engine: Engine running the rounds.
            schema_manager: If given, run() brings the schema to head first
                and refuses to start if that fails.
            migrate: Apply pending migrations (True) or only verify (False).
        """
        self._engine = engine
        self._schema_manager = schema_manager
        self._migrate = migrate
        self._registrations: dict[str, ProcessRegistration] = {}
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    @property
    def event_bus(self) -> EventBus:
        return self._engine.event_bus

    @property
    def registrations(self) -> list[ProcessRegistration]:
        return list(self._registrations.values())

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def register(
        self,
        process_name: str,
        handler: JobHandler,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        batch_size: int = DEFAULT_BATCH_SIZE,
        delay: int = DEFAULT_POLL_DELAY_MS,
    ) -> ProcessRegistration:
        """
        Register the handler for a process name.

        Args:
            process_name: Queue to consume.
            handler: Coroutine function called once per claimed job.
            concurrency: Handlers run in parallel per chunk.
            batch_size: Jobs claimed per round.
            delay: Milliseconds between rounds.

        Returns:
            The registration.

        Raises:
            DuplicateProcessError: If the process name already has a handler.
            ValueError: If an option is out of range.
        """
        if process_name in self._registrations:
            raise DuplicateProcessError(process_name)

        registration = ProcessRegistration(
            process_name=process_name,
            handler=handler,
            concurrency=concurrency,
            batch_size=batch_size,
            delay=delay,
        )
        self._registrations[process_name] = registration

        logger.info(
            f"Registered handler for process: {process_name}",
            extra={
                "process_name": process_name,
                "concurrency": concurrency,
                "batch_size": batch_size,
                "delay_ms": delay,
            }
        )
        return registration

    def process(self, process_name: str, **options: int) -> Callable[[JobHandler], JobHandler]:
        """
        Decorator form of register().

        Example:
            @scheduler.process("email", concurrency=4)
            async def send_email(job: ClaimedJob) -> None:
                ...
        """
        def decorator(handler: JobHandler) -> JobHandler:
            self.register(process_name, handler, **options)
            return handler
        return decorator

    def on(
        self,
        process_name: str,
        event: QueueEvent | str,
        listener: EventListener,
    ) -> None:
        """Subscribe a listener to a process name's lifecycle event."""
        self.event_bus.subscribe(process_name, event, listener)

    def listener(
        self,
        process_name: str,
        event: QueueEvent | str,
    ) -> Callable[[EventListener], EventListener]:
        """Decorator form of on()."""
        def decorator(listener: EventListener) -> EventListener:
            self.on(process_name, event, listener)
            return listener
        return decorator

    async def run(self) -> None:
        """
        Run every polling loop until stop() is called.

        Raises:
            SchemaError: If the schema precondition fails.
            RuntimeError: If the scheduler is already running.
        """
        if self.is_running:
            raise RuntimeError("Scheduler is already running")

        if self._schema_manager is not None:
            await self._schema_manager.ensure_latest(migrate=self._migrate)

        if not self._registrations:
            logger.warning("No process handlers registered, nothing to run")
            return

        self._stop_event.clear()
        logger.info(
            "Scheduler starting",
            extra={"processes": list(self._registrations)}
        )

        self._tasks = [
            asyncio.create_task(
                self._poll_loop(registration),
                name=f"pueue:{registration.process_name}",
            )
            for registration in self._registrations.values()
        ]
        try:
            await asyncio.gather(*self._tasks)
        finally:
            for task in self._tasks:
                task.cancel()
            self._tasks = []

        logger.info("Scheduler stopped")

    def stop(self) -> None:
        """Ask every loop to stop after its current round (or chunk)."""
        logger.info("Scheduler stopping")
        self._stop_event.set()

    async def run_once(self, process_name: str) -> int:
        """
        Run a single round for a registered process name (for testing or
        cron-style execution).

        Returns:
            Number of jobs whose outcome was recorded.
        """
        registration = self._registrations.get(process_name)
        if registration is None:
            raise KeyError(f"No handler registered for process '{process_name}'")
        return await self._round(registration)

    async def _poll_loop(self, registration: ProcessRegistration) -> None:
        logger.info(f"Starting process loop {registration.process_name}")

        while not self._stop_event.is_set():
            try:
                await self._round(registration)
            except Exception as e:
                logger.exception(
                    f"Error on processing {registration.process_name}: {e}",
                    extra={"process_name": registration.process_name}
                )
            await self._wait(registration.delay)

        logger.info(f"Process loop {registration.process_name} stopped")

    async def _round(self, registration: ProcessRegistration) -> int:
        return await self._engine.process(
            registration.process_name,
            registration.handler,
            concurrency=registration.concurrency,
            batch_size=registration.batch_size,
            stop_event=self._stop_event,
        )

    async def _wait(self, delay_ms: int) -> None:
        """Sleep between rounds, waking early on stop()."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay_ms / 1000)
        except asyncio.TimeoutError:
            pass

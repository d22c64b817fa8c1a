"""
Built-in job handlers.

A process-name -> handler table filled by the register_handler decorator,
plus the register() setup hook the worker entrypoint calls to bind the
table to a scheduler. Point `worker_setup` at your own hook to run your
own handlers.

Job handlers must be idempotent - they may be executed more than once for
the same job if a round fails before its commit.
"""

import asyncio
import logging
import random
from collections.abc import Callable
from typing import Any

from pueue.config import get_settings
from pueue.types.job import ClaimedJob, JobHandler
from pueue.worker.scheduler import PollingScheduler

logger = logging.getLogger(__name__)

# Handler registry
_handlers: dict[str, JobHandler] = {}


def register_handler(process_name: str) -> Callable[[JobHandler], JobHandler]:
    """
    Decorator to add a handler to the built-in table.

    Args:
        process_name: The process name this handler consumes.

    Returns:
        Decorator function.

    Example:
        @register_handler("send_email")
        async def handle_send_email(job: ClaimedJob) -> None:
            ...
    """
    def decorator(handler: JobHandler) -> JobHandler:
        _handlers[process_name] = handler
        logger.debug(f"Added built-in handler for process: {process_name}")
        return handler
    return decorator


def get_handler(process_name: str) -> JobHandler | None:
    """
    Get the built-in handler for a process name.

    Args:
        process_name: The process name.

    Returns:
        The handler function or None if not found.
    """
    return _handlers.get(process_name)


def list_handlers() -> list[str]:
    """List all process names with a built-in handler."""
    return list(_handlers.keys())


def _payload_option(job: ClaimedJob, key: str, default: Any = None) -> Any:
    """Read an option from a mapping payload; other payloads have no options."""
    if not isinstance(job.payload, dict):
        return default
    return job.payload.get(key, default)


def register(scheduler: PollingScheduler) -> None:
    """Register every built-in handler with the worker defaults."""
    settings = get_settings()
    for process_name, handler in _handlers.items():
        scheduler.register(
            process_name,
            handler,
            concurrency=settings.worker_default_concurrency,
            batch_size=settings.worker_default_batch_size,
            delay=settings.worker_default_delay_ms,
        )


# ============================================================================
# Built-in job handlers
# ============================================================================


@register_handler("echo")
async def handle_echo(job: ClaimedJob) -> dict:
    """
    Echo handler for testing.

    Logs the payload and returns it.
    """
    logger.info(
        "Echo job executing",
        extra={"job_id": job.id, "attempt": job.attempt, "payload": job.payload}
    )
    return {"echo": job.payload}


@register_handler("sleep")
async def handle_sleep(job: ClaimedJob) -> None:
    """
    Sleep handler for testing slow jobs.

    Payload should contain:
    - duration_seconds: How long to sleep
    """
    duration = _payload_option(job, "duration_seconds", 1)

    logger.info(
        "Sleep job starting",
        extra={"job_id": job.id, "duration": duration}
    )

    await asyncio.sleep(duration)


@register_handler("failing")
async def handle_failing(job: ClaimedJob) -> None:
    """
    Handler that always fails - for testing retry logic.
    """
    logger.info(
        "Failing job executing (will fail)",
        extra={"job_id": job.id, "attempt": job.attempt}
    )
    raise RuntimeError(f"Intentional failure on attempt {job.attempt}")


@register_handler("random_failure")
async def handle_random_failure(job: ClaimedJob) -> None:
    """
    Handler that randomly fails - for testing retry behavior.

    Payload should contain:
    - failure_rate: Probability of failure (0.0 to 1.0)
    """
    failure_rate = _payload_option(job, "failure_rate", 0.5)

    if random.random() < failure_rate:
        raise RuntimeError(f"Random failure on attempt {job.attempt}")


@register_handler("interruptible")
async def handle_interruptible(job: ClaimedJob) -> None:
    """
    Handler that stops early when asked to.

    Payload should contain:
    - interrupt: Cause to interrupt with; the job completes if absent
    """
    cause = _payload_option(job, "interrupt")
    if cause:
        logger.info(
            "Interrupting job",
            extra={"job_id": job.id, "cause": cause}
        )
        job.interrupt(cause)

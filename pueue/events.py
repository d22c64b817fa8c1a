"""
Event bus for job lifecycle notifications.

Listeners subscribe per (process name, event) pair. Publishing never
raises: a failing listener is logged, the remaining listeners still run,
and the failure is reported once more as an ERROR event.
"""

import inspect
import logging
from collections import defaultdict

from pueue.constants import QueueEvent
from pueue.observability.metrics import MetricsCollector, get_metrics
from pueue.types.job import ClaimedJob, EventListener

logger = logging.getLogger(__name__)


class EventBus:
    """
    Publish/subscribe registry keyed by (process_name, event).

    Listeners are called one after another in registration order. A
    listener may be a plain function or a coroutine function.
    """

    def __init__(self, metrics: MetricsCollector | None = None):
        self._listeners: defaultdict[tuple[str, QueueEvent], list[EventListener]] = defaultdict(list)
        self._metrics = metrics or get_metrics()

    def subscribe(
        self,
        process_name: str,
        event: QueueEvent | str,
        listener: EventListener,
    ) -> None:
        """
        Register a listener. The same listener may be registered twice and
        is then called twice.
        """
        key = (process_name, QueueEvent(event))
        self._listeners[key].append(listener)
        logger.debug(
            "Subscribed listener",
            extra={"process_name": process_name, "event": key[1].value}
        )

    def listeners(self, process_name: str, event: QueueEvent | str) -> list[EventListener]:
        """Listeners registered for a pair, in registration order."""
        return list(self._listeners.get((process_name, QueueEvent(event)), ()))

    async def publish(
        self,
        process_name: str,
        event: QueueEvent | str,
        job: ClaimedJob,
    ) -> None:
        """
        Deliver an event to every listener of (process_name, event).

        If any listener raises, the job is re-published once as an ERROR
        event. Failures while delivering that ERROR event are logged and
        dropped.
        """
        event = QueueEvent(event)
        failed = await self._deliver(process_name, event, job)

        if not failed or event == QueueEvent.ERROR:
            return

        if await self._deliver(process_name, QueueEvent.ERROR, job):
            logger.error(
                "Error event delivery failed, dropping",
                extra={
                    "process_name": process_name,
                    "event": event.value,
                    "job_id": job.id,
                }
            )

    async def _deliver(
        self,
        process_name: str,
        event: QueueEvent,
        job: ClaimedJob,
    ) -> bool:
        """Call each listener, returning True if any of them raised."""
        failed = False

        for listener in self.listeners(process_name, event):
            try:
                result = listener(job)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                failed = True
                self._metrics.record_listener_error(process_name, event.value)
                logger.exception(
                    "Event listener raised",
                    extra={
                        "process_name": process_name,
                        "event": event.value,
                        "job_id": job.id,
                        "listener": getattr(listener, "__qualname__", repr(listener)),
                    }
                )

        return failed

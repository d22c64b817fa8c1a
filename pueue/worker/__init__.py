"""
Worker module.
Contains the dispatch engine, the polling scheduler and built-in handlers.
"""

from pueue.worker.engine import DispatchEngine
from pueue.worker.scheduler import PollingScheduler

__all__ = ["DispatchEngine", "PollingScheduler"]

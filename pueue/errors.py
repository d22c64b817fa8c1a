"""
Exception types raised by the queue.

Job handler failures are not represented here: they are recorded on the job
row and reported through events, never raised to the caller.
"""


class PueueError(Exception):
    """Base class for queue errors."""


class PersistenceError(PueueError):
    """The job store could not start, run, commit or roll back a transaction."""


class SchemaError(PueueError):
    """The database schema could not be brought to the expected version."""


class DuplicateProcessError(PueueError, ValueError):
    """A handler is already registered for the process name."""

    def __init__(self, process_name: str):
        super().__init__(f"A handler is already registered for process '{process_name}'")
        self.process_name = process_name

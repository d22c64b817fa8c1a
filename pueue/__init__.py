"""
Pueue

A persistent, retry-capable job queue on PostgreSQL. Producers enqueue named
units of work; workers claim disjoint batches with FOR UPDATE SKIP LOCKED,
run handlers with bounded concurrency, retry with backoff, and notify listeners.
"""

__version__ = "1.0.0"

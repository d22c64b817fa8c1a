"""
SQLAlchemy database models.
Defines the job table.
"""

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import DateTime, Enum, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from pueue.constants import (
    DB_SCHEMA,
    DEFAULT_MAX_ATTEMPTS,
    JOB_TABLE,
    JobStatus,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def new_job_id() -> str:
    return str(uuid4())


class Job(Base):
    """
    Job model representing a unit of work in the queue.

    This is the authoritative source of truth for job state.

    Key constraints:
    - (id, process_name) is the primary key; a job belongs to one process
      name for its whole life
    - a job is claimable only while pending, due, and within max_attempts
    - the (status, process_name, run_after) index backs the claim query
    """

    __tablename__ = JOB_TABLE

    id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
        default=new_job_id,
    )
    process_name: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
    )

    payload: Mapped[Any] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
    )

    status: Mapped[JobStatus] = mapped_column(
        Enum(
            JobStatus,
            name="job_status",
            native_enum=False,
            create_constraint=True,
            length=20,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=JobStatus.PENDING,
    )

    # Last error or interruption cause, not a history
    log: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # Retry tracking
    attempt: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_MAX_ATTEMPTS,
    )
    delay: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    backoff: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
    )

    # Scheduling
    run_after: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        Index(
            "ix_job_status_process_run_after",
            "status",
            "process_name",
            "run_after",
        ),
        {"schema": DB_SCHEMA},
    )

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, process={self.process_name}, "
            f"status={self.status}, attempt={self.attempt}/{self.max_attempts})"
        )

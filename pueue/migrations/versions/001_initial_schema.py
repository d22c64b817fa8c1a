"""Initial schema with the pueue.job table

Revision ID: 001
Revises:
Create Date: 2024-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute('CREATE SCHEMA IF NOT EXISTS "pueue"')

    op.execute("""
        CREATE TABLE IF NOT EXISTS "pueue"."job" (
            "id" varchar(255) NOT NULL,
            "process_name" varchar(255) NOT NULL,
            "payload" jsonb NOT NULL DEFAULT '{}'::jsonb,
            "status" varchar(20) NOT NULL DEFAULT 'pending',
            "log" text,
            "attempt" integer NOT NULL DEFAULT 1,
            "max_attempts" integer NOT NULL DEFAULT 3,
            "delay" integer NOT NULL DEFAULT 0,
            "backoff" jsonb NOT NULL DEFAULT '{"delay": 0, "type": "fixed"}'::jsonb,
            "run_after" timestamptz NOT NULL DEFAULT now(),
            "created_at" timestamptz NOT NULL DEFAULT now(),
            "updated_at" timestamptz NOT NULL DEFAULT now(),
            CONSTRAINT "pk_job" PRIMARY KEY ("id", "process_name"),
            CONSTRAINT "job_status" CHECK (
                "status" IN ('pending', 'completed', 'failed', 'interrupted')
            )
        )
    """)

    # Backs the claim query: status = 'pending' AND process_name = ? ORDER BY run_after
    op.execute("""
        CREATE INDEX IF NOT EXISTS "ix_job_status_process_run_after"
        ON "pueue"."job" ("status", "process_name", "run_after")
    """)


def downgrade() -> None:
    op.execute('DROP INDEX IF EXISTS "pueue"."ix_job_status_process_run_after"')
    op.execute('DROP TABLE IF EXISTS "pueue"."job"')
    op.execute('DROP SCHEMA IF EXISTS "pueue"')

"""Create the writing pipeline tables.

Revision ID: 0001_writing_pipeline
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op

from autowriter_jobs.store.schema import DROP_STATEMENTS, SCHEMA_STATEMENTS

revision = "0001_writing_pipeline"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    for statement in SCHEMA_STATEMENTS:
        op.execute(statement)


def downgrade() -> None:
    for statement in DROP_STATEMENTS:
        op.execute(statement)

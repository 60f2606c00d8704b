"""DDL for the pipeline tables, shared by the Postgres store and migrations."""

from __future__ import annotations

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS projects (
        id UUID PRIMARY KEY,
        user_id UUID NOT NULL,
        title TEXT NOT NULL,
        genre TEXT,
        writing_status TEXT NOT NULL DEFAULT 'idle',
        total_scenes INTEGER NOT NULL DEFAULT 0,
        completed_scenes INTEGER NOT NULL DEFAULT 0,
        failed_scenes INTEGER NOT NULL DEFAULT 0,
        current_chapter_index INTEGER,
        current_scene_index INTEGER,
        word_count INTEGER NOT NULL DEFAULT 0,
        target_word_count INTEGER,
        writing_error TEXT,
        writing_started_at TIMESTAMPTZ,
        writing_completed_at TIMESTAMPTZ,
        last_activity_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT projects_scene_counters CHECK (completed_scenes + failed_scenes <= total_scenes)
    )
    """,
    "CREATE INDEX IF NOT EXISTS projects_writing_status_idx ON projects (writing_status)",
    """
    CREATE TABLE IF NOT EXISTS chapters (
        id UUID PRIMARY KEY,
        project_id UUID NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        summary TEXT,
        sort_order INTEGER NOT NULL,
        scene_outline JSONB,
        word_count INTEGER NOT NULL DEFAULT 0,
        writing_status TEXT NOT NULL DEFAULT 'pending',
        outline_error TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS chapters_project_order_idx ON chapters (project_id, sort_order)",
    """
    CREATE TABLE IF NOT EXISTS content_blocks (
        id UUID PRIMARY KEY,
        chapter_id UUID NOT NULL REFERENCES chapters(id) ON DELETE CASCADE,
        sort_order INTEGER NOT NULL,
        content TEXT NOT NULL,
        scene_index INTEGER,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        UNIQUE (chapter_id, sort_order)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS writing_jobs (
        id UUID PRIMARY KEY,
        project_id UUID NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        chapter_id UUID NOT NULL REFERENCES chapters(id) ON DELETE CASCADE,
        job_type TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        scene_index INTEGER,
        scene_snapshot JSONB,
        priority INTEGER NOT NULL DEFAULT 0,
        sort_order INTEGER NOT NULL DEFAULT 0,
        attempt_count INTEGER NOT NULL DEFAULT 0,
        next_retry_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        lease_owner TEXT,
        lease_expires_at TIMESTAMPTZ,
        last_error TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        started_at TIMESTAMPTZ,
        completed_at TIMESTAMPTZ
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS writing_jobs_claim_idx
        ON writing_jobs (project_id, status, priority DESC, sort_order ASC)
    """,
    """
    CREATE INDEX IF NOT EXISTS writing_jobs_lease_idx
        ON writing_jobs (lease_expires_at) WHERE status = 'processing'
    """,
    """
    CREATE TABLE IF NOT EXISTS credit_ledgers (
        user_id UUID NOT NULL,
        period CHAR(7) NOT NULL,
        monthly_limit INTEGER NOT NULL DEFAULT 0,
        used_this_period INTEGER NOT NULL DEFAULT 0,
        overflow_balance INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (user_id, period)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS credit_debits (
        job_id UUID PRIMARY KEY,
        user_id UUID NOT NULL,
        words INTEGER NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_sessions (
        id UUID PRIMARY KEY,
        user_id UUID NOT NULL,
        token_hash TEXT NOT NULL UNIQUE,
        expires_at TIMESTAMPTZ NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        last_seen_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
)

DROP_STATEMENTS: tuple[str, ...] = (
    "DROP TABLE IF EXISTS user_sessions",
    "DROP TABLE IF EXISTS credit_debits",
    "DROP TABLE IF EXISTS credit_ledgers",
    "DROP TABLE IF EXISTS writing_jobs",
    "DROP TABLE IF EXISTS content_blocks",
    "DROP TABLE IF EXISTS chapters",
    "DROP TABLE IF EXISTS projects",
)

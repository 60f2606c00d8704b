"""Postgres-backed store (psycopg 3 + psycopg_pool)."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Iterator, Optional, Sequence
from uuid import UUID, uuid4

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from autowriter_schemas import (
    ACTIVE_WRITING_STATUSES,
    Chapter,
    ContentBlock,
    CreditLedger,
    JobStatus,
    JobType,
    Project,
    WritingJob,
)

from .base import StoreSession, WritingStore
from .schema import SCHEMA_STATEMENTS

logger = logging.getLogger(__name__)

_CLAIM_ORDER = "priority DESC, sort_order ASC, created_at ASC"


def _to_db(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (dict, list)):
        return Jsonb(value)
    return value


def _upsert(cur: psycopg.Cursor, table: str, data: dict[str, Any], keys: Sequence[str]) -> None:
    columns = list(data)
    updates = [column for column in columns if column not in keys]
    query = sql.SQL(
        "INSERT INTO {table} ({columns}) VALUES ({values}) "
        "ON CONFLICT ({keys}) DO UPDATE SET {updates}"
    ).format(
        table=sql.Identifier(table),
        columns=sql.SQL(", ").join(map(sql.Identifier, columns)),
        values=sql.SQL(", ").join(sql.Placeholder() * len(columns)),
        keys=sql.SQL(", ").join(map(sql.Identifier, keys)),
        updates=sql.SQL(", ").join(
            sql.SQL("{col} = EXCLUDED.{col}").format(col=sql.Identifier(column)) for column in updates
        ),
    )
    cur.execute(query, [_to_db(data[column]) for column in columns])


def _job_filters(
    project_id: UUID,
    statuses: Iterable[JobStatus] | None,
    job_type: JobType | None,
) -> tuple[sql.Composable, list[Any]]:
    clauses = [sql.SQL("project_id = %s")]
    params: list[Any] = [project_id]
    if statuses is not None:
        clauses.append(sql.SQL("status = ANY(%s)"))
        params.append([status.value for status in statuses])
    if job_type is not None:
        clauses.append(sql.SQL("job_type = %s"))
        params.append(job_type.value)
    return sql.SQL(" AND ").join(clauses), params


class PostgresSession(StoreSession):
    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def _cursor(self) -> psycopg.Cursor:
        return self._conn.cursor(row_factory=dict_row)

    def _lock_suffix(self, for_update: bool) -> str:
        return " FOR UPDATE" if for_update else ""

    # Projects -------------------------------------------------------------

    def get_project(self, project_id: UUID, *, for_update: bool = False) -> Optional[Project]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM projects WHERE id = %s" + self._lock_suffix(for_update), (project_id,))
            row = cur.fetchone()
        return Project.model_validate(row) if row else None

    def save_project(self, project: Project) -> None:
        with self._cursor() as cur:
            _upsert(cur, "projects", project.model_dump(), ["id"])

    def list_active_project_ids(self) -> list[UUID]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT id FROM projects WHERE writing_status = ANY(%s) ORDER BY last_activity_at NULLS FIRST",
                ([status.value for status in ACTIVE_WRITING_STATUSES],),
            )
            return [row["id"] for row in cur.fetchall()]

    # Chapters and prose ---------------------------------------------------

    def list_chapters(self, project_id: UUID) -> list[Chapter]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM chapters WHERE project_id = %s ORDER BY sort_order", (project_id,))
            return [Chapter.model_validate(row) for row in cur.fetchall()]

    def get_chapter(self, chapter_id: UUID, *, for_update: bool = False) -> Optional[Chapter]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM chapters WHERE id = %s" + self._lock_suffix(for_update), (chapter_id,))
            row = cur.fetchone()
        return Chapter.model_validate(row) if row else None

    def save_chapter(self, chapter: Chapter) -> None:
        data = chapter.model_dump(mode="json")
        data["id"] = chapter.id
        data["project_id"] = chapter.project_id
        with self._cursor() as cur:
            _upsert(cur, "chapters", data, ["id"])

    def list_blocks(self, chapter_id: UUID) -> list[ContentBlock]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM content_blocks WHERE chapter_id = %s ORDER BY sort_order", (chapter_id,))
            return [ContentBlock.model_validate(row) for row in cur.fetchall()]

    def append_block(
        self, chapter_id: UUID, content: str, *, scene_index: int | None, now: datetime
    ) -> ContentBlock:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO content_blocks (id, chapter_id, sort_order, content, scene_index, created_at)
                SELECT %s, %s, COALESCE(MAX(sort_order) + 1, 0), %s, %s, %s
                FROM content_blocks WHERE chapter_id = %s
                RETURNING *
                """,
                (uuid4(), chapter_id, content, scene_index, now, chapter_id),
            )
            row = cur.fetchone()
        return ContentBlock.model_validate(row)

    # Jobs -----------------------------------------------------------------

    def enqueue(self, jobs: Sequence[WritingJob]) -> None:
        with self._cursor() as cur:
            for job in jobs:
                _upsert(cur, "writing_jobs", self._job_row(job), ["id"])

    @staticmethod
    def _job_row(job: WritingJob) -> dict[str, Any]:
        data = job.model_dump()
        data["scene_snapshot"] = job.scene_snapshot.model_dump(mode="json") if job.scene_snapshot else None
        return data

    def claim_next(
        self,
        project_id: UUID,
        *,
        owner: str,
        lease_seconds: float,
        now: datetime,
        job_type: JobType | None = None,
    ) -> Optional[WritingJob]:
        with self._cursor() as cur:
            # Serialise claimers of one project for the rest of the transaction.
            cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (str(project_id),))
            cur.execute(
                "SELECT 1 FROM writing_jobs WHERE project_id = %s AND status = %s LIMIT 1",
                (project_id, JobStatus.PROCESSING.value),
            )
            if cur.fetchone():
                return None
            type_clause = " AND job_type = %s" if job_type is not None else ""
            params: list[Any] = [project_id, JobStatus.PENDING.value, now]
            if job_type is not None:
                params.append(job_type.value)
            cur.execute(
                "SELECT id FROM writing_jobs "
                "WHERE project_id = %s AND status = %s AND next_retry_at <= %s" + type_clause + " "
                f"ORDER BY {_CLAIM_ORDER} LIMIT 1 FOR UPDATE SKIP LOCKED",
                params,
            )
            row = cur.fetchone()
            if not row:
                return None
            cur.execute(
                """
                UPDATE writing_jobs
                SET status = %s, lease_owner = %s, lease_expires_at = %s, started_at = %s
                WHERE id = %s
                RETURNING *
                """,
                (
                    JobStatus.PROCESSING.value,
                    owner,
                    now + timedelta(seconds=lease_seconds),
                    now,
                    row["id"],
                ),
            )
            claimed = cur.fetchone()
        return WritingJob.model_validate(claimed)

    def get_job(self, job_id: UUID, *, for_update: bool = False) -> Optional[WritingJob]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM writing_jobs WHERE id = %s" + self._lock_suffix(for_update), (job_id,))
            row = cur.fetchone()
        return WritingJob.model_validate(row) if row else None

    def save_job(self, job: WritingJob) -> None:
        with self._cursor() as cur:
            _upsert(cur, "writing_jobs", self._job_row(job), ["id"])

    def list_jobs(
        self,
        project_id: UUID,
        *,
        statuses: Iterable[JobStatus] | None = None,
        job_type: JobType | None = None,
    ) -> list[WritingJob]:
        where, params = _job_filters(project_id, statuses, job_type)
        query = sql.SQL("SELECT * FROM writing_jobs WHERE {where} ORDER BY " + _CLAIM_ORDER).format(where=where)
        with self._cursor() as cur:
            cur.execute(query, params)
            return [WritingJob.model_validate(row) for row in cur.fetchall()]

    def count_jobs(
        self,
        project_id: UUID,
        *,
        statuses: Iterable[JobStatus] | None = None,
        job_type: JobType | None = None,
    ) -> int:
        where, params = _job_filters(project_id, statuses, job_type)
        query = sql.SQL("SELECT COUNT(*) AS total FROM writing_jobs WHERE {where}").format(where=where)
        with self._cursor() as cur:
            cur.execute(query, params)
            row = cur.fetchone()
        return int(row["total"]) if row else 0

    def update_jobs_status(
        self,
        project_id: UUID,
        from_status: JobStatus,
        to_status: JobStatus,
        *,
        next_retry_at: datetime | None = None,
    ) -> int:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE writing_jobs
                SET status = %s, next_retry_at = COALESCE(%s, next_retry_at)
                WHERE project_id = %s AND status = %s
                """,
                (to_status.value, next_retry_at, project_id, from_status.value),
            )
            return cur.rowcount

    def delete_jobs(self, project_id: UUID) -> int:
        with self._cursor() as cur:
            cur.execute("DELETE FROM writing_jobs WHERE project_id = %s", (project_id,))
            return cur.rowcount

    def requeue_expired(self, *, now: datetime, project_id: UUID | None = None) -> int:
        query = """
            UPDATE writing_jobs
            SET status = %s, lease_owner = NULL, lease_expires_at = NULL, next_retry_at = %s
            WHERE status = %s AND (lease_expires_at IS NULL OR lease_expires_at <= %s)
        """
        params: list[Any] = [JobStatus.PENDING.value, now, JobStatus.PROCESSING.value, now]
        if project_id is not None:
            query += " AND project_id = %s"
            params.append(project_id)
        with self._cursor() as cur:
            cur.execute(query, params)
            touched = cur.rowcount
        if touched:
            logger.warning("Re-queued jobs with expired leases", extra={"requeued": touched})
        return touched

    def earliest_retry_at(self, project_id: UUID, *, job_type: JobType | None = None) -> Optional[datetime]:
        where, params = _job_filters(project_id, [JobStatus.PENDING], job_type)
        query = sql.SQL("SELECT MIN(next_retry_at) AS earliest FROM writing_jobs WHERE {where}").format(where=where)
        with self._cursor() as cur:
            cur.execute(query, params)
            row = cur.fetchone()
        return row["earliest"] if row else None

    # Credits and sessions -------------------------------------------------

    def get_ledger(self, user_id: UUID, period: str, *, for_update: bool = False) -> Optional[CreditLedger]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM credit_ledgers WHERE user_id = %s AND period = %s" + self._lock_suffix(for_update),
                (user_id, period),
            )
            row = cur.fetchone()
        return CreditLedger.model_validate(row) if row else None

    def save_ledger(self, ledger: CreditLedger) -> None:
        with self._cursor() as cur:
            _upsert(cur, "credit_ledgers", ledger.model_dump(), ["user_id", "period"])

    def has_debit(self, job_id: UUID) -> bool:
        with self._cursor() as cur:
            cur.execute("SELECT 1 FROM credit_debits WHERE job_id = %s", (job_id,))
            return cur.fetchone() is not None

    def record_debit(self, job_id: UUID, user_id: UUID, words: int, *, now: datetime) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO credit_debits (job_id, user_id, words, created_at)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (job_id) DO NOTHING
                """,
                (job_id, user_id, words, now),
            )

    def lookup_session_user(self, token_hash: str, *, now: datetime) -> Optional[UUID]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT id, user_id, expires_at FROM user_sessions WHERE token_hash = %s",
                (token_hash,),
            )
            row = cur.fetchone()
            if not row:
                return None
            if row["expires_at"] < now:
                cur.execute("DELETE FROM user_sessions WHERE id = %s", (row["id"],))
                return None
            cur.execute("UPDATE user_sessions SET last_seen_at = %s WHERE id = %s", (now, row["id"]))
        return row["user_id"]


class PostgresStore(WritingStore):
    """Store backed by a shared psycopg connection pool.

    Each session holds one pooled connection for the length of a transaction;
    leaving the block commits, an exception rolls back.
    """

    name = "postgres"

    def __init__(self, conninfo: str, *, min_size: int = 1, max_size: int = 10) -> None:
        # psycopg connection URLs do not use SQLAlchemy's driver suffix.
        self._pool = ConnectionPool(
            conninfo.replace("+psycopg", ""),
            min_size=min_size,
            max_size=max_size,
            open=True,
        )

    @contextmanager
    def session(self) -> Iterator[StoreSession]:
        with self._pool.connection() as conn:
            with conn.transaction():
                yield PostgresSession(conn)

    def initialise(self) -> None:
        with self._pool.connection() as conn, conn.cursor() as cur:
            for statement in SCHEMA_STATEMENTS:
                cur.execute(statement)
            conn.commit()

    def close(self) -> None:
        self._pool.close()

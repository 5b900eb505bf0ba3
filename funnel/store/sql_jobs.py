"""SQL-backed job repository for MySQL, PostgreSQL and SQLite connections."""

from __future__ import annotations

from contextlib import closing
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable, Sequence

from funnel.store.models import Job, JobFilter, JobRepository, JobStatus


class Dialect(Enum):
    """SQL flavour of a DB-API connection."""

    MYSQL = "mysql"
    POSTGRES = "postgres"
    SQLITE = "sqlite"

    @property
    def placeholder(self) -> str:
        """Parameter marker used by the driver."""
        return "?" if self is Dialect.SQLITE else "%s"

    def placeholders(self, count: int) -> str:
        """Comma separated parameter markers."""
        return ", ".join([self.placeholder] * count)

    @property
    def claim_lock(self) -> str:
        """Row-locking clause appended to the claim query."""
        return "" if self is Dialect.SQLITE else " FOR UPDATE SKIP LOCKED"

    @property
    def begin_statement(self) -> str | None:
        """Statement opening a write transaction, if the driver needs one."""
        return "BEGIN IMMEDIATE" if self is Dialect.SQLITE else None

    def upsert_clause(self, key: str, columns: Iterable[str]) -> str:
        """Clause turning an INSERT into an insert-or-update on key."""
        if self is Dialect.MYSQL:
            sets = ", ".join(f"{c}=VALUES({c})" for c in columns)
            return f"ON DUPLICATE KEY UPDATE {sets}"
        sets = ", ".join(f"{c}=EXCLUDED.{c}" for c in columns)
        return f"ON CONFLICT ({key}) DO UPDATE SET {sets}"

    def adapt(self, value: Any) -> Any:
        """Convert a Python value into one the driver accepts."""
        if isinstance(value, Enum):
            value = value.value
        if self is Dialect.SQLITE:
            if isinstance(value, datetime):
                return value.isoformat(timespec="microseconds")
            if isinstance(value, bool):
                return int(value)
        return value

    def adapt_all(self, values: Iterable[Any]) -> tuple[Any, ...]:
        """Adapt every value of a parameter sequence."""
        return tuple(self.adapt(v) for v in values)

    @staticmethod
    def load_time(value: Any) -> datetime | None:
        """Convert a stored timestamp back into a datetime."""
        if value is None or isinstance(value, datetime):
            return value
        if isinstance(value, (bytes, bytearray)):
            value = value.decode("ascii")
        if isinstance(value, str):
            return datetime.fromisoformat(value) if value else None
        raise ValueError(f"cannot read timestamp from {value!r}")


class JobNotFoundError(LookupError):
    """No job has the requested id."""


_JOB_COLUMNS = (
    "id",
    "magnet",
    "info_hash",
    "status",
    "worker_id",
    "name",
    "size",
    "progress",
    "error_msg",
    "paused",
    "created_at",
    "updated_at",
    "started_at",
    "completed_at",
)
_SELECT_JOBS = "SELECT " + ", ".join(_JOB_COLUMNS) + " FROM jobs"

_UPDATE_COLUMNS = (
    "status",
    "worker_id",
    "name",
    "size",
    "progress",
    "error_msg",
    "paused",
    "updated_at",
    "started_at",
    "completed_at",
)


def _row_to_job(row: Sequence[Any]) -> Job:
    (
        job_id,
        magnet,
        info_hash,
        status,
        worker_id,
        name,
        size,
        progress,
        error_msg,
        paused,
        created_at,
        updated_at,
        started_at,
        completed_at,
    ) = row
    return Job(
        id=job_id,
        magnet=magnet or "",
        info_hash=info_hash or "",
        status=JobStatus(status),
        worker_id=worker_id or "",
        name=name or "",
        size=int(size or 0),
        progress=float(progress or 0.0),
        error_msg=error_msg or "",
        paused=bool(paused),
        created_at=Dialect.load_time(created_at),
        updated_at=Dialect.load_time(updated_at),
        started_at=Dialect.load_time(started_at),
        completed_at=Dialect.load_time(completed_at),
    )


class SqlJobRepository(JobRepository):
    """Job repository over a DB-API connection."""

    def __init__(self, connection: Any, dialect: Dialect = Dialect.MYSQL) -> None:
        self._conn = connection
        self._dialect = dialect

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> None:
        with closing(self._conn.cursor()) as cur:
            try:
                cur.execute(sql, self._dialect.adapt_all(params))
                self._conn.commit()
            except BaseException:
                self._conn.rollback()
                raise

    def _query(self, sql: str, params: Iterable[Any] = ()) -> list[Sequence[Any]]:
        with closing(self._conn.cursor()) as cur:
            try:
                cur.execute(sql, self._dialect.adapt_all(params))
                rows = list(cur.fetchall())
                self._conn.commit()
            except BaseException:
                self._conn.rollback()
                raise
        return rows

    def _one(self, sql: str, params: Iterable[Any] = ()) -> Job | None:
        rows = self._query(sql, params)
        return _row_to_job(rows[0]) if rows else None

    def create(self, job: Job) -> None:
        now = datetime.now()
        job.created_at = now
        job.updated_at = now
        columns = _JOB_COLUMNS[:12]
        values = (
            job.id,
            job.magnet,
            job.info_hash,
            job.status,
            job.worker_id,
            job.name,
            job.size,
            job.progress,
            job.error_msg,
            job.paused,
            job.created_at,
            job.updated_at,
        )
        sql = (
            f"INSERT INTO jobs ({', '.join(columns)}) "
            f"VALUES ({self._dialect.placeholders(len(columns))})"
        )
        self._execute(sql, values)

    def get(self, job_id: str) -> Job | None:
        return self._one(f"{_SELECT_JOBS} WHERE id = {self._dialect.placeholder}", (job_id,))

    def get_by_info_hash(self, info_hash: str) -> Job | None:
        return self._one(
            f"{_SELECT_JOBS} WHERE info_hash = {self._dialect.placeholder}", (info_hash,)
        )

    def update(self, job_id: str, fn: Callable[[Job], None]) -> None:
        job = self.get(job_id)
        if job is None:
            raise JobNotFoundError(f"job {job_id} not found")
        fn(job)
        job.updated_at = datetime.now()
        p = self._dialect.placeholder
        sets = ", ".join(f"{c} = {p}" for c in _UPDATE_COLUMNS)
        values = [getattr(job, c) for c in _UPDATE_COLUMNS]
        self._execute(f"UPDATE jobs SET {sets} WHERE id = {p}", (*values, job_id))

    def list(self, job_filter: JobFilter | None = None) -> list[Job]:
        job_filter = job_filter or JobFilter()
        p = self._dialect.placeholder
        conditions: list[str] = []
        params: list[Any] = []
        if job_filter.status:
            conditions.append(f"status = {p}")
            params.append(job_filter.status)
        if job_filter.worker_id:
            conditions.append(f"worker_id = {p}")
            params.append(job_filter.worker_id)
        sql = _SELECT_JOBS
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        return [_row_to_job(row) for row in self._query(sql, params)]

    def delete(self, job_id: str) -> None:
        self._execute(f"DELETE FROM jobs WHERE id = {self._dialect.placeholder}", (job_id,))

    def next_pending(self) -> Job | None:
        p = self._dialect.placeholder
        return self._one(
            f"{_SELECT_JOBS} WHERE status = {p} AND worker_id = {p} "
            "ORDER BY created_at ASC LIMIT 1",
            (JobStatus.QUEUED, ""),
        )

    def claim(self, worker_id: str) -> Job | None:
        d = self._dialect
        p = d.placeholder
        with closing(self._conn.cursor()) as cur:
            try:
                if d.begin_statement and not getattr(self._conn, "in_transaction", False):
                    cur.execute(d.begin_statement)
                cur.execute(
                    "SELECT id, magnet, info_hash FROM jobs "
                    "WHERE status='queued' AND worker_id='' "
                    f"ORDER BY created_at ASC LIMIT 1{d.claim_lock}"
                )
                row = cur.fetchone()
                if row is None:
                    self._conn.rollback()
                    return None
                job_id, magnet, info_hash = row
                now = datetime.now()
                cur.execute(
                    f"UPDATE jobs SET status='assigned', worker_id={p}, "
                    f"updated_at={p}, started_at={p} WHERE id={p}",
                    d.adapt_all((worker_id, now, now, job_id)),
                )
                self._conn.commit()
            except BaseException:
                self._conn.rollback()
                raise
        return Job(
            id=job_id,
            magnet=magnet or "",
            info_hash=info_hash or "",
            status=JobStatus.ASSIGNED,
            worker_id=worker_id,
        )

    def release_from_worker(self, worker_id: str) -> None:
        p = self._dialect.placeholder
        now = datetime.now()
        # downloading/assigned go back to the queue so another worker can take them
        self._execute(
            f"UPDATE jobs SET status='queued', worker_id='', updated_at={p} "
            f"WHERE worker_id={p} AND status IN ('assigned','downloading')",
            (now, worker_id),
        )
        # seeding is finished; the user re-adds it to seed again
        self._execute(
            f"UPDATE jobs SET status='done', worker_id='', updated_at={p}, completed_at={p} "
            f"WHERE worker_id={p} AND status='seeding'",
            (now, now, worker_id),
        )
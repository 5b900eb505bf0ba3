"""SQL-backed worker repository."""

from __future__ import annotations

from contextlib import closing
from datetime import datetime, timedelta
from typing import Any, Iterable, Sequence

from funnel.store.models import WorkerInfo, WorkerRepository
from funnel.store.sql_jobs import Dialect

_WORKER_COLUMNS = (
    "id",
    "address",
    "capacity",
    "active_jobs",
    "status",
    "version",
    "last_seen",
    "joined_at",
)
# joined_at keeps the time of the first registration
_UPSERT_COLUMNS = ("address", "capacity", "active_jobs", "status", "version", "last_seen")
_SELECT_WORKERS = "SELECT " + ", ".join(_WORKER_COLUMNS) + " FROM workers"

OFFLINE = "offline"


def _row_to_worker(row: Sequence[Any]) -> WorkerInfo:
    worker_id, address, capacity, active_jobs, status, version, last_seen, joined_at = row
    return WorkerInfo(
        id=worker_id,
        address=address or "",
        capacity=int(capacity or 0),
        active_jobs=int(active_jobs or 0),
        status=status or "",
        version=version or "",
        last_seen=Dialect.load_time(last_seen),
        joined_at=Dialect.load_time(joined_at),
    )


class SqlWorkerRepository(WorkerRepository):
    """Worker repository over a DB-API connection."""

    def __init__(self, connection: Any, dialect: Dialect = Dialect.MYSQL) -> None:
        self._conn = connection
        self._dialect = dialect

    def _run(self, sql: str, params: Iterable[Any] = ()) -> list[Sequence[Any]]:
        with closing(self._conn.cursor()) as cur:
            try:
                cur.execute(sql, self._dialect.adapt_all(params))
                rows = list(cur.fetchall()) if cur.description else []
                self._conn.commit()
            except BaseException:
                self._conn.rollback()
                raise
        return rows

    def upsert(self, worker: WorkerInfo) -> None:
        now = datetime.now()
        worker.last_seen = now
        if worker.joined_at is None:
            worker.joined_at = now
        d = self._dialect
        sql = (
            f"INSERT INTO workers ({', '.join(_WORKER_COLUMNS)}) "
            f"VALUES ({d.placeholders(len(_WORKER_COLUMNS))}) "
            f"{d.upsert_clause('id', _UPSERT_COLUMNS)}"
        )
        self._run(sql, tuple(getattr(worker, column) for column in _WORKER_COLUMNS))

    def get(self, worker_id: str) -> WorkerInfo | None:
        rows = self._run(
            f"{_SELECT_WORKERS} WHERE id = {self._dialect.placeholder}", (worker_id,)
        )
        return _row_to_worker(rows[0]) if rows else None

    def list(self) -> list[WorkerInfo]:
        return [_row_to_worker(row) for row in self._run(_SELECT_WORKERS)]

    def remove(self, worker_id: str) -> None:
        self._run(f"DELETE FROM workers WHERE id = {self._dialect.placeholder}", (worker_id,))

    def mark_stale(self, threshold: timedelta) -> None:
        p = self._dialect.placeholder
        deadline = datetime.now() - threshold
        self._run(
            f"UPDATE workers SET status = {p} WHERE last_seen < {p} AND status <> {p}",
            (OFFLINE, deadline, OFFLINE),
        )

    def stale_ids(self, threshold: timedelta) -> list[str]:
        p = self._dialect.placeholder
        deadline = datetime.now() - threshold
        rows = self._run(
            f"SELECT id FROM workers WHERE last_seen < {p} AND status <> {p}",
            (deadline, OFFLINE),
        )
        return [row[0] for row in rows]
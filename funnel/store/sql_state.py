"""SQL-backed state store for saved torrents."""

from __future__ import annotations

import logging
from contextlib import closing
from typing import Any, Iterable, Sequence

from funnel.daemon.state import SavedTorrent, StateStore, UpdateFn
from funnel.store.sql_jobs import Dialect

log = logging.getLogger(__name__)

_MYSQL_SCHEMA = """
CREATE TABLE IF NOT EXISTS state_torrents (
    id     VARCHAR(64)  NOT NULL PRIMARY KEY,
    magnet TEXT         NOT NULL,
    name   VARCHAR(512),
    paused TINYINT(1)   NOT NULL DEFAULT 0
)"""

_DEFAULT_SCHEMA = """
CREATE TABLE IF NOT EXISTS state_torrents (
    id     VARCHAR(64)   NOT NULL PRIMARY KEY,
    magnet TEXT          NOT NULL,
    name   VARCHAR(512),
    paused BOOLEAN       NOT NULL DEFAULT FALSE
)"""

_SELECT = "SELECT id, magnet, name, paused FROM state_torrents"


class SchemaError(RuntimeError):
    """The state table could not be created."""


def _row_to_saved(row: Sequence[Any]) -> SavedTorrent:
    torrent_id, magnet, name, paused = row
    if not isinstance(torrent_id, str):
        raise ValueError(f"bad torrent id {torrent_id!r}")
    return SavedTorrent(id=torrent_id, magnet=magnet or "", name=name or "", paused=bool(paused))


class SqlStateStore(StateStore):
    """State store kept in the state_torrents table."""

    def __init__(self, connection: Any, dialect: Dialect = Dialect.MYSQL) -> None:
        self._conn = connection
        self._dialect = dialect
        schema = _MYSQL_SCHEMA if dialect is Dialect.MYSQL else _DEFAULT_SCHEMA
        try:
            self._run(schema)
        except Exception as exc:
            raise SchemaError(f"migrate state_torrents: {exc}") from exc

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

    def list(self) -> list[SavedTorrent]:
        try:
            rows = self._run(_SELECT)
        except Exception as exc:
            log.warning("[state] list error: %s", exc)
            return []
        torrents = []
        for row in rows:
            try:
                torrents.append(_row_to_saved(row))
            except (TypeError, ValueError):
                continue
        return torrents

    def add(self, torrent: SavedTorrent) -> None:
        self._run(
            "INSERT INTO state_torrents (id, magnet, name, paused) "
            f"VALUES ({self._dialect.placeholders(4)})",
            (torrent.id, torrent.magnet, torrent.name, torrent.paused),
        )

    def remove(self, torrent_id: str) -> None:
        self._run(
            f"DELETE FROM state_torrents WHERE id = {self._dialect.placeholder}", (torrent_id,)
        )

    def update(self, torrent_id: str, fn: UpdateFn) -> None:
        p = self._dialect.placeholder
        rows = self._run(f"{_SELECT} WHERE id = {p}", (torrent_id,))
        if not rows:
            return
        torrent = _row_to_saved(rows[0])
        fn(torrent)
        self._run(
            f"UPDATE state_torrents SET name = {p}, paused = {p} WHERE id = {p}",
            (torrent.name, torrent.paused, torrent_id),
        )

    def close(self) -> None:
        self._conn.close()
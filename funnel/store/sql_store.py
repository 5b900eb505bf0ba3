"""SQL store bundling the job, worker and token repositories."""

from __future__ import annotations

import logging
import re
from contextlib import closing
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs

import pymysql

from funnel.store.models import Store
from funnel.store.sql_jobs import Dialect, SqlJobRepository
from funnel.store.sql_tokens import SqlTokenRepository
from funnel.store.sql_workers import SqlWorkerRepository

log = logging.getLogger(__name__)


class MigrationError(RuntimeError):
    """A migration statement failed."""


class StoreConnectionError(RuntimeError):
    """The database could not be reached."""


class SqlStore(Store):
    """Store whose repositories share one DB-API connection."""

    def __init__(self, connection: Any, dialect: Dialect = Dialect.MYSQL) -> None:
        self._conn = connection
        self._dialect = dialect
        self.jobs = SqlJobRepository(connection, dialect)
        self.workers = SqlWorkerRepository(connection, dialect)
        self.tokens = SqlTokenRepository(connection, dialect)

    def close(self) -> None:
        self._conn.close()

    def run_migrations(self, directory: str | Path) -> None:
        """Apply every *.sql file in directory in file-name order.

        Each file is split on semicolons and its statements run one by one.
        """
        directory = Path(directory)
        names = sorted(
            entry.name
            for entry in directory.iterdir()
            if entry.is_file() and entry.name.endswith(".sql")
        )
        for name in names:
            log.info("[store] applying %s migration: %s", self._dialect.value, name)
            content = (directory / name).read_text(encoding="utf-8")
            statements = (q.strip() for q in content.split(";"))
            for statement in filter(None, statements):
                with closing(self._conn.cursor()) as cur:
                    try:
                        cur.execute(statement)
                        self._conn.commit()
                    except Exception as exc:
                        self._conn.rollback()
                        raise MigrationError(f"exec migration {name}: {exc}") from exc


_DSN = re.compile(
    r"^(?:(?P<user>[^:@/]*)(?::(?P<pw>[^@]*))?@)?"
    r"(?:(?P<net>[A-Za-z0-9]+)(?:\((?P<addr>[^)]*)\))?)?"
    r"/(?P<db>[^?]*)(?:\?(?P<params>.*))?$"
)


def _parse_mysql_dsn(dsn: str) -> dict[str, Any]:
    match = _DSN.match(dsn)
    if match is None:
        raise ValueError(f"invalid mysql DSN: {dsn!r}")
    options: dict[str, Any] = {"user": match["user"] or None}
    if match["pw"] is not None:
        options["password"] = match["pw"]
    if match["db"]:
        options["database"] = match["db"]
    net = match["net"] or "tcp"
    addr = match["addr"] or ""
    if net == "unix":
        if not addr:
            raise ValueError("unix network needs a socket path")
        options["unix_socket"] = addr
    elif net == "tcp":
        host, port = "127.0.0.1", 3306
        if addr:
            if addr.startswith("["):
                host_part, _, rest = addr[1:].partition("]")
                host = host_part
                if rest.startswith(":") and rest[1:]:
                    port = int(rest[1:])
            else:
                head, sep, tail = addr.rpartition(":")
                if sep:
                    host = head or host
                    port = int(tail)
                else:
                    host = addr
        options["host"] = host
        options["port"] = port
    else:
        raise ValueError(f"unsupported network {net!r} in mysql DSN")
    params = parse_qs(match["params"] or "")
    if "charset" in params:
        options["charset"] = params["charset"][-1].split(",")[0]
    return options


def open_mysql_store(dsn: str) -> SqlStore:
    """Connect to MySQL using a "user:password@tcp(host:port)/db" DSN."""
    try:
        options = _parse_mysql_dsn(dsn)
    except ValueError as exc:
        raise ValueError(f"open mysql: {exc}") from exc
    try:
        connection = pymysql.connect(**options)
    except pymysql.MySQLError as exc:
        raise StoreConnectionError(f"ping mysql: {exc}") from exc
    return SqlStore(connection, Dialect.MYSQL)
"""SQL-backed join-token repository."""

from __future__ import annotations

from contextlib import closing
from datetime import datetime
from typing import Any, Iterable, Sequence

from funnel.store.models import JoinToken, TokenRepository
from funnel.store.sql_jobs import Dialect

_TOKEN_COLUMNS = ("id", "token_hash", "name", "created_at", "expires_at", "revoked")
_SELECT_TOKENS = "SELECT " + ", ".join(_TOKEN_COLUMNS) + " FROM join_tokens"


def _row_to_token(row: Sequence[Any]) -> JoinToken:
    token_id, token_hash, name, created_at, expires_at, revoked = row
    return JoinToken(
        id=token_id,
        token_hash=token_hash or "",
        name=name or "",
        created_at=Dialect.load_time(created_at),
        expires_at=Dialect.load_time(expires_at),
        revoked=bool(revoked),
    )


class SqlTokenRepository(TokenRepository):
    """Join-token repository over a DB-API connection."""

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

    def create(self, token: JoinToken) -> None:
        token.created_at = datetime.now()
        sql = (
            f"INSERT INTO join_tokens ({', '.join(_TOKEN_COLUMNS)}) "
            f"VALUES ({self._dialect.placeholders(len(_TOKEN_COLUMNS))})"
        )
        self._run(
            sql,
            (
                token.id,
                token.token_hash,
                token.name,
                token.created_at,
                token.expires_at,
                token.revoked,
            ),
        )

    def get_by_hash(self, token_hash: str) -> JoinToken | None:
        rows = self._run(
            f"{_SELECT_TOKENS} WHERE token_hash = {self._dialect.placeholder}", (token_hash,)
        )
        return _row_to_token(rows[0]) if rows else None

    def list(self) -> list[JoinToken]:
        return [_row_to_token(row) for row in self._run(_SELECT_TOKENS)]

    def revoke(self, token_id: str) -> None:
        p = self._dialect.placeholder
        self._run(f"UPDATE join_tokens SET revoked = {p} WHERE id = {p}", (True, token_id))
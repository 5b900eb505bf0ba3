import sqlite3

import pytest

from funnel.daemon.state import SavedTorrent
from funnel.store.sql_jobs import Dialect
from funnel.store.sql_state import SchemaError, SqlStateStore


@pytest.fixture
def store():
    connection = sqlite3.connect(":memory:")
    state = SqlStateStore(connection, Dialect.SQLITE)
    yield state
    connection.close()


def test_add_and_list(store):
    store.add(SavedTorrent(id="aaa", magnet="magnet:?aaa"))
    store.add(SavedTorrent(id="bbb", magnet="magnet:?bbb", name="B", paused=True))
    by_id = {t.id: t for t in store.list()}
    assert by_id["aaa"] == SavedTorrent(id="aaa", magnet="magnet:?aaa")
    assert by_id["bbb"] == SavedTorrent(id="bbb", magnet="magnet:?bbb", name="B", paused=True)


def test_schema_creation_is_idempotent():
    connection = sqlite3.connect(":memory:")
    first = SqlStateStore(connection, Dialect.SQLITE)
    first.add(SavedTorrent(id="aaa", magnet="magnet:?aaa"))
    second = SqlStateStore(connection, Dialect.SQLITE)
    assert [t.id for t in second.list()] == ["aaa"]
    connection.close()


def test_remove(store):
    store.add(SavedTorrent(id="aaa", magnet="magnet:?aaa"))
    store.add(SavedTorrent(id="bbb", magnet="magnet:?bbb"))
    store.remove("aaa")
    assert [t.id for t in store.list()] == ["bbb"]


def test_update(store):
    store.add(SavedTorrent(id="aaa", magnet="magnet:?aaa"))

    def change(saved):
        saved.paused = True
        saved.name = "MyTorrent"

    store.update("aaa", change)
    [saved] = store.list()
    assert saved.paused is True
    assert saved.name == "MyTorrent"
    assert saved.magnet == "magnet:?aaa"


def test_update_missing_is_noop(store):
    calls = []
    store.update("nonexistent", calls.append)
    assert calls == []
    assert store.list() == []


def test_duplicate_add_raises(store):
    store.add(SavedTorrent(id="aaa", magnet="magnet:?aaa"))
    with pytest.raises(sqlite3.IntegrityError):
        store.add(SavedTorrent(id="aaa", magnet="magnet:?other"))


def test_list_after_close_is_empty():
    connection = sqlite3.connect(":memory:")
    state = SqlStateStore(connection, Dialect.SQLITE)
    state.add(SavedTorrent(id="aaa", magnet="magnet:?aaa"))
    state.close()
    assert state.list() == []


def test_schema_failure_raises():
    connection = sqlite3.connect(":memory:")
    connection.close()
    with pytest.raises(SchemaError, match="migrate state_torrents"):
        SqlStateStore(connection, Dialect.SQLITE)
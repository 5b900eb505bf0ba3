# funnel

`funnel` is a library for running a torrent download daemon. It keeps track of
the magnet links it is given, limits how many download at once, remembers them
across restarts and serves a small JSON API as a WSGI application, normally on
a local Unix socket. Several daemons can be joined into a cluster in which a
coordinator hands queued jobs out to worker agents.

## What is inside

| Module | Purpose |
| --- | --- |
| `funnel.daemon.types` | `Status` and the JSON request and response shapes of the API |
| `funnel.daemon.state` | `SavedTorrent`, the `StateStore` base class, the JSON-file `State` and `load_state` |
| `funnel.daemon.manager` | `Manager` (queueing, pause and resume, stop and remove) and the `TorrentClient` / `TorrentHandle` interfaces it drives |
| `funnel.daemon.server` | `Server`, the WSGI application serving `/api/...`, and the `Router` it is built on |
| `funnel.ipc` | where the daemon's socket lives, a listener on it and an HTTP connection to it |
| `funnel.storages.local` | `LocalStorage`: deletes a torrent's data directory on disk |
| `funnel.store.models` | `Job`, `WorkerInfo`, `JoinToken` and the repository base classes |
| `funnel.store.memory_state` | `MemoryStateStore`, a state store kept only in memory |
| `funnel.store.sql_jobs`, `sql_workers`, `sql_tokens`, `sql_state` | repositories over a DB-API connection, with a `Dialect` of MySQL, PostgreSQL or SQLite |
| `funnel.store.sql_store` | `SqlStore`, `open_mysql_store` and migrations |
| `funnel.cluster.coordinator` | `Coordinator`: the `/internal/...` routes and stale-worker cleanup |
| `funnel.cluster.agent` | `Agent`: the worker side of the cluster |
| `funnel.cluster.types` | the messages between agents and the coordinator |
| `funnel.cluster.token` | `generate_token` and `hash_token` |

## Torrent states

A torrent is always in one of the `Status` values: `queued`, `downloading`,
`seeding`, `paused` or `failed`. New torrents start as `queued` and move to
`downloading` when a slot is free (`max_active`, three unless a positive value
is given). When every piece is complete they move to `seeding`, which frees the
slot for the next queued torrent. Paused torrents are resumed by adding their
magnet to the client again, which puts them back in the queue.

## The manager

`Manager(client, storage=None, state=None, max_active=0, storage_info=None, poll_interval=5.0)`
drives a `TorrentClient`, an abstract class whose `add_magnet()` returns a
`TorrentHandle`. Saved torrents in `state` are added again on start, paused
ones staying paused; without a `state` a `MemoryStateStore` is used.

- `add(magnet)` returns an `AddResponse`; adding a known info hash returns its
  current status with `new=False`.
- `pause(id)`, `resume(id)`, `stop(id)` and `remove(id)` accept the full info
  hash or any unique prefix of it. An unknown id raises `TorrentNotFoundError`,
  a prefix that fits several raises `AmbiguousIDError`, and pausing or resuming
  in the wrong state raises `InvalidStateError`; all derive from `ManagerError`.
- `stop` drops the torrent and keeps its data; `remove` also calls
  `delete_torrent_data(info_hash)` on the storage if it has that method, as
  `LocalStorage` does.
- `list(status_filter=None)` returns `TorrentInfo` records with size, peers and
  progress in percent; `daemon_status()` returns counts per status.

## Persisted state

```python
from funnel.daemon.state import SavedTorrent, load_state

state = load_state("/var/lib/funnel/state.json")   # empty if the file is missing
state.add(SavedTorrent(id="aaa", magnet="magnet:?xt=urn:btih:aaa"))

def mark_paused(saved):
    saved.paused = True
    saved.name = "MyTorrent"

state.update("aaa", mark_paused)   # unknown ids are ignored
state.remove("aaa")
print(state.list())
```

Every change is written straight back to the file as JSON. A file that is not
valid JSON makes `load_state` raise. `MemoryStateStore` has the same methods and
keeps nothing on disk; `SqlStateStore(connection, dialect)` keeps the list in a
`state_torrents` table, which it creates if needed.

## The HTTP API

`Server(manager, cancel)` is a WSGI application. It answers:

| Request | Effect |
| --- | --- |
| `POST /api/torrents` with `{"magnet": "..."}` | add; `201` if new, `200` if already known |
| `GET /api/torrents?status=seeding` | list, optionally filtered by status |
| `PATCH /api/torrents/{id}` with `{"action": "pause"}` or `"resume"` | pause or resume |
| `POST /api/torrents/{id}/stop` | drop from the client, keep the data |
| `DELETE /api/torrents/{id}` | drop from the client and delete the data (`404` on failure) |
| `GET /api/status` | counts per status and the storage in use |
| `POST /api/shutdown` | call `cancel` and answer `204` |

Errors come back as `{"error": "..."}`.

`Server.listen_and_serve()` serves on a Unix socket at `funnel.ipc.socket_path()`:
`$XDG_RUNTIME_DIR/funnel.sock` where that variable is set, otherwise
`~/.local/share/funnel/funnel.sock` (or `~/Library/Application Support/funnel/funnel.sock`
on macOS). `Server.serve(sock)` serves on a socket you already listen on, and
`Server.shutdown()` stops either. `funnel.ipc.set_socket_path()` overrides the
path, and `funnel.ipc.new_http_connection()` returns an `http.client`
connection to it:

```python
from funnel import ipc

conn = ipc.new_http_connection(timeout=5)
conn.request("GET", "/api/status")
print(conn.getresponse().read())
```

## Clusters

The coordinator works on a `Store`. `open_mysql_store` takes a DSN of the form
`user:password@tcp(host:port)/database`; `SqlStore(connection, dialect)` wraps
any other DB-API connection, for instance a `sqlite3` one with `Dialect.SQLITE`.
`run_migrations(directory)` runs every `*.sql` file in the directory in name
order, statement by statement.

```python
import threading
from wsgiref.simple_server import make_server

from funnel.cluster.coordinator import Coordinator
from funnel.daemon.server import Router
from funnel.store.sql_store import open_mysql_store

store = open_mysql_store("user:password@tcp(localhost:3306)/funnel")
store.run_migrations("migrations/mysql")

router = Router()
coordinator = Coordinator(store)
coordinator.register_routes(router)

stop = threading.Event()
coordinator.start(stop)   # every 30 s, releases jobs of workers silent for over a minute
make_server("localhost", 8080, router).serve_forever()
```

Releasing a worker's jobs puts its assigned and downloading jobs back in the
queue and marks its seeding jobs done. `handle_stale_workers()` runs one such
pass and returns the ids it found.

Each worker runs an `Agent` next to its own `Manager`. `run(stop_event)`
registers (raising `AgentError` if that fails), then claims a job every five
seconds while below its capacity, sends a heartbeat every fifteen and progress
every ten. When `stop_event` is set it requeues the jobs still queued or
downloading, marks seeding ones complete and leaves the cluster.

```python
from funnel.cluster.agent import Agent

agent = Agent(
    manager_url="http://localhost:8080",
    token="token",
    manager=manager,
    capacity=3,
    version="0.1.0",
    client=None,
)
agent.run(stop)
```

Join tokens are made with `funnel.cluster.token.generate_token()` (64 hex
characters) and stored only as `hash_token(raw)`, their SHA-256 in hex.
`SqlTokenRepository` stores and revokes them; the coordinator routes do not
check them.

## What it does not do

- There is no BitTorrent engine. `Manager` needs a `TorrentClient`
  implementation supplied by you.
- There is no command-line program; the daemon is assembled in your own code.
- Only local-disk data deletion is provided; there is no object-storage backend.
- No migration SQL files are shipped; `run_migrations` applies files you provide.
- Only MySQL has a connect helper; PostgreSQL needs a DB-API connection from a
  driver you install.
import sqlite3
import threading
from datetime import datetime, timedelta

import pytest
from werkzeug.test import Client

from funnel.cluster.coordinator import Coordinator
from funnel.daemon.server import Router
from funnel.store.models import Job, JobStatus
from funnel.store.sql_jobs import Dialect
from funnel.store.sql_store import SqlStore

SCHEMA = """
CREATE TABLE jobs (
    id TEXT PRIMARY KEY,
    magnet TEXT,
    info_hash TEXT,
    status TEXT,
    worker_id TEXT NOT NULL DEFAULT '',
    name TEXT,
    size INTEGER,
    progress REAL,
    error_msg TEXT,
    paused INTEGER,
    created_at TEXT,
    updated_at TEXT,
    started_at TEXT,
    completed_at TEXT
);
CREATE TABLE workers (
    id TEXT PRIMARY KEY,
    address TEXT,
    capacity INTEGER,
    active_jobs INTEGER,
    status TEXT,
    version TEXT,
    last_seen TEXT,
    joined_at TEXT
);
"""


@pytest.fixture
def env():
    conn = sqlite3.connect(":memory:")
    conn.executescript(SCHEMA)
    store = SqlStore(conn, Dialect.SQLITE)
    coordinator = Coordinator(store)
    router = Router()
    coordinator.register_routes(router)
    yield conn, store, coordinator, Client(router)
    store.close()


def add_job(store, job_id="job-1", magnet="magnet:?xt=abc", info_hash="abc"):
    store.jobs.create(
        Job(id=job_id, magnet=magnet, info_hash=info_hash, status=JobStatus("queued"), worker_id="")
    )


def register(client, **body):
    resp = client.post("/internal/workers/register", json=body)
    assert resp.status_code == 200
    return resp.get_json()["worker_id"]


def test_register_new_worker(env):
    _, store, _, client = env
    worker_id = register(client, capacity=2, version="v1")
    assert worker_id
    worker = store.workers.get(worker_id)
    assert worker.capacity == 2
    assert worker.version == "v1"
    assert worker.status == "active"


def test_register_keeps_given_id(env):
    _, store, _, client = env
    assert register(client, worker_id="w-1", capacity=1, version="v1") == "w-1"
    assert store.workers.get("w-1").id == "w-1"


def test_register_bad_json(env):
    client = env[3]
    resp = client.post("/internal/workers/register", data="{bad")
    assert resp.status_code == 400


def test_heartbeat_unknown_worker(env):
    client = env[3]
    resp = client.post("/internal/workers/nope/heartbeat", json={"active_jobs": 1})
    assert resp.status_code == 404


def test_heartbeat_updates_active_jobs(env):
    _, store, _, client = env
    worker_id = register(client, capacity=3, version="v1")
    resp = client.post(f"/internal/workers/{worker_id}/heartbeat", json={"active_jobs": 2})
    assert resp.status_code == 204
    assert store.workers.get(worker_id).active_jobs == 2


def test_claim_requires_worker_id(env):
    client = env[3]
    resp = client.post("/internal/jobs/claim", json={})
    assert resp.status_code == 400


def test_claim_without_jobs_returns_null_job(env):
    client = env[3]
    resp = client.post("/internal/jobs/claim", json={"worker_id": "w-1"})
    assert resp.status_code == 200
    assert resp.get_json().get("job") is None


def test_claim_assigns_job_once(env):
    _, store, _, client = env
    add_job(store)
    resp = client.post("/internal/jobs/claim", json={"worker_id": "w-1"})
    job = resp.get_json()["job"]
    assert job["job_id"] == "job-1"
    assert job["magnet"] == "magnet:?xt=abc"
    assert job["info_hash"] == "abc"
    stored = store.jobs.get("job-1")
    assert stored.status == JobStatus("assigned")
    assert stored.worker_id == "w-1"

    again = client.post("/internal/jobs/claim", json={"worker_id": "w-2"})
    assert again.get_json().get("job") is None


def test_progress_updates_job(env):
    _, store, _, client = env
    add_job(store)
    resp = client.post(
        "/internal/jobs/job-1/progress",
        json={"progress": 42.5, "status": "downloading", "name": "Movie", "size": 2048},
    )
    assert resp.status_code == 204
    job = store.jobs.get("job-1")
    assert job.progress == 42.5
    assert job.status == JobStatus("downloading")
    assert job.name == "Movie"
    assert job.size == 2048


def test_progress_keeps_name_when_empty(env):
    _, store, _, client = env
    add_job(store)
    client.post("/internal/jobs/job-1/progress", json={"progress": 1.0, "status": "downloading", "name": "Movie"})
    client.post("/internal/jobs/job-1/progress", json={"progress": 2.0, "status": "seeding"})
    job = store.jobs.get("job-1")
    assert job.name == "Movie"
    assert job.status == JobStatus("seeding")


def test_progress_unknown_job_is_server_error(env):
    client = env[3]
    resp = client.post("/internal/jobs/missing/progress", json={"progress": 1.0, "status": "downloading"})
    assert resp.status_code == 500


def test_complete_marks_done(env):
    _, store, _, client = env
    add_job(store)
    resp = client.post("/internal/jobs/job-1/complete")
    assert resp.status_code == 204
    job = store.jobs.get("job-1")
    assert job.status == JobStatus("done")
    assert job.progress == 100
    assert job.completed_at is not None


def test_requeue_resets_job(env):
    _, store, _, client = env
    add_job(store)
    client.post("/internal/jobs/claim", json={"worker_id": "w-1"})
    resp = client.post("/internal/jobs/job-1/requeue")
    assert resp.status_code == 204
    job = store.jobs.get("job-1")
    assert job.status == JobStatus("queued")
    assert job.worker_id == ""
    assert job.progress == 0


def test_fail_records_error(env):
    _, store, _, client = env
    add_job(store)
    resp = client.post("/internal/jobs/job-1/fail", json={"error": "bad magnet"})
    assert resp.status_code == 204
    job = store.jobs.get("job-1")
    assert job.status == JobStatus("failed")
    assert job.error_msg == "bad magnet"


def test_fail_bad_body(env):
    _, store, _, client = env
    add_job(store)
    resp = client.post("/internal/jobs/job-1/fail", data="")
    assert resp.status_code == 400


def test_leave_removes_worker_and_releases_jobs(env):
    _, store, _, client = env
    add_job(store)
    worker_id = register(client, capacity=1, version="v1")
    client.post("/internal/jobs/claim", json={"worker_id": worker_id})
    resp = client.delete(f"/internal/workers/{worker_id}")
    assert resp.status_code == 204
    assert store.workers.get(worker_id) is None
    job = store.jobs.get("job-1")
    assert job.status == JobStatus("queued")
    assert job.worker_id == ""


def test_handle_stale_workers(env):
    conn, store, coordinator, client = env
    add_job(store, "job-1")
    add_job(store, "job-2", info_hash="def")
    stale = register(client, worker_id="stale", capacity=2, version="v1")
    fresh = register(client, worker_id="fresh", capacity=2, version="v1")
    client.post("/internal/jobs/claim", json={"worker_id": stale})
    client.post("/internal/jobs/claim", json={"worker_id": stale})
    client.post("/internal/jobs/job-2/progress", json={"progress": 100.0, "status": "seeding"})
    old = (datetime.now() - timedelta(minutes=5)).isoformat(timespec="microseconds")
    conn.execute("UPDATE workers SET last_seen = ? WHERE id = ?", (old, stale))
    conn.commit()

    assert coordinator.handle_stale_workers() == [stale]

    assert store.workers.get(stale).status == "offline"
    assert store.workers.get(fresh).status == "active"
    assert store.jobs.get("job-1").status == JobStatus("queued")
    assert store.jobs.get("job-2").status == JobStatus("done")
    assert coordinator.handle_stale_workers() == []


def test_start_stops_on_event(env):
    coordinator = env[2]
    stop = threading.Event()
    thread = coordinator.start(stop)
    stop.set()
    thread.join(timeout=5)
    assert not thread.is_alive()
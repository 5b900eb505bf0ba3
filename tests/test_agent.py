import json
import threading

import httpx
import pytest

from funnel.cluster.agent import Agent, AgentError
from funnel.daemon.types import AddResponse, Status, TorrentInfo

URL = "http://manager.test"


class Recorder:
    def __init__(self, routes=None):
        self.routes = routes or {}
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        status, body = self.routes.get((request.method, request.url.path), (204, None))
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    def calls(self):
        return [(r.method, r.url.path) for r in self.requests]

    def body(self, index):
        return json.loads(self.requests[index].content)


class FakeManager:
    def __init__(self, torrents=(), fail=None):
        self.torrents = list(torrents)
        self.fail = fail
        self.added = []

    def list(self, status_filter=None):
        return list(self.torrents)

    def add(self, magnet):
        if self.fail:
            raise RuntimeError(self.fail)
        self.added.append(magnet)
        return AddResponse(id="abc", status=Status.QUEUED, new=True)


def make_agent(recorder, manager=None, token="token", capacity=2):
    client = httpx.Client(transport=httpx.MockTransport(recorder))
    return Agent(URL, token, manager or FakeManager(), capacity, "v1", client)


def torrent(torrent_id, status, **kw):
    return TorrentInfo(id=torrent_id, status=status, **kw)


REGISTER = ("POST", "/internal/workers/register")
CLAIM = ("POST", "/internal/jobs/claim")


def test_register_sets_worker_id_and_headers():
    rec = Recorder({REGISTER: (200, {"worker_id": "w-1"})})
    agent = make_agent(rec, capacity=3)
    assert agent.register() == "w-1"
    assert agent.worker_id == "w-1"
    request = rec.requests[0]
    assert request.headers["Authorization"] == "Bearer token"
    assert request.headers["Content-Type"] == "application/json"
    body = rec.body(0)
    assert body["capacity"] == 3
    assert body["version"] == "v1"


def test_no_authorization_without_token():
    rec = Recorder({REGISTER: (200, {"worker_id": "w-1"})})
    agent = make_agent(rec, token="")
    agent.register()
    assert "Authorization" not in rec.requests[0].headers


def test_register_server_error():
    rec = Recorder({REGISTER: (500, {"error": "boom"})})
    agent = make_agent(rec)
    with pytest.raises(AgentError, match="server error: 500"):
        agent.register()


def test_claim_skipped_at_capacity():
    rec = Recorder()
    manager = FakeManager([torrent("a", Status.DOWNLOADING), torrent("b", Status.QUEUED)])
    agent = make_agent(rec, manager, capacity=2)
    assert agent.claim_job() is None
    assert rec.requests == []


def test_claim_starts_job():
    job = {"job_id": "j1", "magnet": "magnet:?xt=abc", "info_hash": "abc"}
    rec = Recorder({CLAIM: (200, {"job": job})})
    manager = FakeManager([torrent("a", Status.SEEDING)])
    agent = make_agent(rec, manager)
    agent.worker_id = "w-1"
    claimed = agent.claim_job()
    assert claimed.job_id == "j1"
    assert manager.added == ["magnet:?xt=abc"]
    assert rec.body(0)["worker_id"] == "w-1"


def test_claim_nothing_available():
    rec = Recorder({CLAIM: (200, {"job": None})})
    manager = FakeManager()
    agent = make_agent(rec, manager)
    assert agent.claim_job() is None
    assert manager.added == []


def test_claim_failure_is_reported():
    job = {"job_id": "j1", "magnet": "magnet:?xt=abc", "info_hash": "abc"}
    rec = Recorder({CLAIM: (200, {"job": job})})
    agent = make_agent(rec, FakeManager(fail="bad magnet"))
    agent.claim_job()
    assert rec.calls()[-1] == ("POST", "/internal/jobs/j1/fail")
    assert rec.body(-1) == {"error": "bad magnet"}


def test_heartbeat_counts_active():
    rec = Recorder()
    manager = FakeManager(
        [torrent("a", Status.DOWNLOADING), torrent("b", Status.SEEDING), torrent("c", Status.QUEUED)]
    )
    agent = make_agent(rec, manager)
    agent.worker_id = "w-1"
    agent.heartbeat()
    assert rec.calls() == [("POST", "/internal/workers/w-1/heartbeat")]
    assert rec.body(0)["active_jobs"] == 2


def test_report_progress_one_request_per_torrent():
    rec = Recorder({("POST", "/internal/jobs/a/progress"): (500, None)})
    manager = FakeManager(
        [
            torrent("a", Status.DOWNLOADING, name="A", progress=50.0),
            torrent("b", Status.SEEDING, name="B", progress=100.0),
        ]
    )
    agent = make_agent(rec, manager)
    agent.report_progress()
    assert sorted(rec.calls()) == [
        ("POST", "/internal/jobs/a/progress"),
        ("POST", "/internal/jobs/b/progress"),
    ]
    bodies = {r.url.path: json.loads(r.content) for r in rec.requests}
    assert bodies["/internal/jobs/b/progress"]["status"] == "seeding"
    assert bodies["/internal/jobs/a/progress"]["name"] == "A"


def test_drain():
    rec = Recorder()
    manager = FakeManager(
        [
            torrent("a", Status.DOWNLOADING),
            torrent("b", Status.SEEDING),
            torrent("c", Status.PAUSED),
            torrent("d", Status.QUEUED),
        ]
    )
    agent = make_agent(rec, manager)
    agent.drain()
    assert sorted(rec.calls()) == [
        ("POST", "/internal/jobs/a/requeue"),
        ("POST", "/internal/jobs/b/complete"),
        ("POST", "/internal/jobs/d/requeue"),
    ]


def test_leave():
    rec = Recorder()
    agent = make_agent(rec)
    agent.worker_id = "w-1"
    agent.leave()
    assert rec.calls() == [("DELETE", "/internal/workers/w-1")]


def test_run_registers_drains_and_leaves():
    rec = Recorder({REGISTER: (200, {"worker_id": "w-9"})})
    manager = FakeManager([torrent("a", Status.DOWNLOADING)])
    agent = make_agent(rec, manager)
    stop = threading.Event()
    stop.set()
    agent.run(stop)
    assert rec.calls() == [
        REGISTER,
        ("POST", "/internal/jobs/a/requeue"),
        ("DELETE", "/internal/workers/w-9"),
    ]


def test_run_fails_when_register_fails():
    rec = Recorder({REGISTER: (503, None)})
    agent = make_agent(rec)
    with pytest.raises(AgentError, match="initial register"):
        agent.run(threading.Event())
"""Worker agent: registers with the coordinator, claims jobs and reports on them."""

from __future__ import annotations

import json
import logging
import threading
import time
from contextlib import suppress
from typing import Any, Callable

import httpx

from funnel.cluster.types import (
    ClaimReq,
    ClaimRes,
    HeartbeatReq,
    JobAssignment,
    ProgressReq,
    RegisterReq,
    RegisterRes,
)
from funnel.daemon.types import Status

log = logging.getLogger(__name__)

_ACTIVE = (Status.DOWNLOADING, Status.QUEUED)
_DECODE_ERRORS = (ValueError, TypeError, KeyError)


class AgentError(Exception):
    """A request to the coordinator failed."""


class Agent:
    """Runs on a worker and talks to the coordinator's internal API."""

    CLAIM_INTERVAL = 5.0
    HEARTBEAT_INTERVAL = 15.0
    PROGRESS_INTERVAL = 10.0

    def __init__(
        self,
        manager_url: str,
        token: str,
        manager: Any,
        capacity: int,
        version: str,
        client: httpx.Client | None = None,
    ) -> None:
        self.manager_url = manager_url
        self.token = token
        self.capacity = capacity
        self.version = version
        self.worker_id = ""
        self._manager = manager
        self._client = client if client is not None else httpx.Client(timeout=10.0)

    def run(self, stop_event: threading.Event) -> None:
        """Register, then claim, heartbeat and report until stop_event is set.

        On stop the agent drains its jobs and leaves the cluster.
        """
        try:
            self.register()
        except AgentError as exc:
            raise AgentError(f"initial register: {exc}") from exc

        tasks: list[tuple[float, Callable[[], Any], str]] = [
            (self.CLAIM_INTERVAL, self.claim_job, "claim"),
            (self.HEARTBEAT_INTERVAL, self.heartbeat, "heartbeat"),
            (self.PROGRESS_INTERVAL, self.report_progress, "progress"),
        ]
        start = time.monotonic()
        due = [start + interval for interval, _, _ in tasks]

        while True:
            timeout = max(0.0, min(due) - time.monotonic())
            if stop_event.wait(timeout):
                self.drain()
                with suppress(AgentError):
                    self.leave()
                return
            now = time.monotonic()
            for index, (interval, task, label) in enumerate(tasks):
                if due[index] > now:
                    continue
                due[index] = now + interval
                try:
                    task()
                except AgentError as exc:
                    log.warning("[agent] %s error: %s", label, exc)

    def register(self) -> str:
        """Register with the coordinator and return the assigned worker id."""
        req = RegisterReq(
            worker_id=self.worker_id,
            address="",
            capacity=self.capacity,
            version=self.version,
        )
        data = self._request("POST", "/internal/workers/register", req.to_dict(), decode=True)
        try:
            res = RegisterRes.from_dict(data)
        except _DECODE_ERRORS as exc:
            raise AgentError(f"bad register response: {exc}") from exc
        self.worker_id = res.worker_id
        log.info(
            "[agent] registered as worker %s (capacity=%d, version=%s)",
            self.worker_id,
            self.capacity,
            self.version,
        )
        return self.worker_id

    def _active_count(self) -> int:
        return sum(1 for t in self._manager.list(None) if t.status in _ACTIVE)

    def claim_job(self) -> JobAssignment | None:
        """Claim and start the next queued job if there is spare capacity.

        Returns the claimed job, or None if nothing was claimed.
        """
        if self._active_count() >= self.capacity:
            return None

        data = self._request(
            "POST", "/internal/jobs/claim", ClaimReq(worker_id=self.worker_id).to_dict(), decode=True
        )
        try:
            res = ClaimRes.from_dict(data)
        except _DECODE_ERRORS as exc:
            raise AgentError(f"bad claim response: {exc}") from exc
        job = res.job
        if job is None:
            return None

        log.info("[agent] claimed job %s", job.job_id)
        try:
            self._manager.add(job.magnet)
        except Exception as exc:
            log.warning("[agent] error starting job %s: %s", job.job_id, exc)
            self._report_failure(job.job_id, str(exc))
        return job

    def heartbeat(self) -> None:
        """Tell the coordinator this worker is alive and how busy it is."""
        req = HeartbeatReq(active_jobs=self._active_count())
        self._request("POST", f"/internal/workers/{self.worker_id}/heartbeat", req.to_dict())

    def report_progress(self) -> None:
        """Send the progress of every local torrent; failures are logged."""
        for torrent in self._manager.list(None):
            req = ProgressReq(
                progress=torrent.progress,
                status=str(torrent.status),
                name=torrent.name,
                size=torrent.size,
                peers=torrent.peers,
            )
            try:
                self._request("POST", f"/internal/jobs/{torrent.id}/progress", req.to_dict())
            except AgentError as exc:
                log.warning("[agent] progress report error for %s: %s", torrent.id, exc)

    def drain(self) -> None:
        """Requeue unfinished jobs and mark seeding ones complete."""
        for torrent in self._manager.list(None):
            if torrent.status in _ACTIVE:
                action = "requeue"
            elif torrent.status is Status.SEEDING:
                action = "complete"
            else:
                continue
            try:
                self._request("POST", f"/internal/jobs/{torrent.id}/{action}")
            except AgentError as exc:
                log.warning("[agent] %s error for %s: %s", action, torrent.id, exc)

    def leave(self) -> None:
        """Deregister from the coordinator."""
        self._request("DELETE", f"/internal/workers/{self.worker_id}")

    def _report_failure(self, job_id: str, message: str) -> None:
        self._request("POST", f"/internal/jobs/{job_id}/fail", {"error": message})

    def _request(self, method: str, path: str, body: Any = None, decode: bool = False) -> Any:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        content = (json.dumps(body) + "\n").encode("utf-8") if body is not None else b""
        try:
            response = self._client.request(
                method, self.manager_url + path, content=content, headers=headers
            )
        except httpx.HTTPError as exc:
            raise AgentError(str(exc)) from exc

        if response.status_code == 204:
            return None
        if response.status_code >= 400:
            raise AgentError(f"server error: {response.status_code}")
        if not decode:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise AgentError(f"decode response: {exc}") from exc
"""Cluster coordinator: worker registration, job claiming and stale-worker cleanup."""

from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable

from werkzeug.wrappers import Request, Response

from funnel.cluster.types import (
    ClaimReq,
    ClaimRes,
    HeartbeatReq,
    JobAssignment,
    ProgressReq,
    RegisterReq,
    RegisterRes,
)
from funnel.daemon.server import Router, write_json
from funnel.store.models import Job, JobStatus, Store, WorkerInfo

log = logging.getLogger(__name__)

STALE_THRESHOLD = timedelta(minutes=1)

_DECODE_ERRORS = (ValueError, TypeError, KeyError)


def _text_error(status: int, message: str) -> Response:
    return Response(message + "\n", status=status, mimetype="text/plain")


def _no_content() -> Response:
    return Response(status=204)


def _decode(request: Request) -> Any:
    return json.loads(request.get_data())


def _plain(value: Any) -> Any:
    return getattr(value, "value", value)


class Coordinator:
    """Serves the internal cluster API on top of a job/worker store."""

    STALE_INTERVAL = 30.0

    def __init__(self, store: Store) -> None:
        self._store = store

    def register_routes(self, router: Router) -> None:
        """Register the internal cluster routes on router."""
        router.add("POST", "/internal/workers/register", self._handle_register)
        router.add("POST", "/internal/workers/{worker_id}/heartbeat", self._handle_heartbeat)
        router.add("DELETE", "/internal/workers/{worker_id}", self._handle_leave)
        router.add("POST", "/internal/jobs/claim", self._handle_claim)
        router.add("POST", "/internal/jobs/{job_id}/progress", self._handle_progress)
        router.add("POST", "/internal/jobs/{job_id}/complete", self._handle_complete)
        router.add("POST", "/internal/jobs/{job_id}/requeue", self._handle_requeue)
        router.add("POST", "/internal/jobs/{job_id}/fail", self._handle_fail)

    def start(self, stop_event: threading.Event) -> threading.Thread:
        """Run the stale-worker cleanup loop in a background thread until stop_event is set."""
        thread = threading.Thread(
            target=self._stale_worker_loop,
            args=(stop_event,),
            name="stale-workers",
            daemon=True,
        )
        thread.start()
        return thread

    # ── workers ──────────────────────────────────────────────────────────────

    def _handle_register(self, request: Request) -> Response:
        try:
            req = RegisterReq.from_dict(_decode(request))
        except _DECODE_ERRORS as exc:
            return _text_error(400, str(exc))

        worker_id = req.worker_id or str(uuid.uuid4())
        info = WorkerInfo(
            id=worker_id,
            address=req.address,
            capacity=req.capacity,
            active_jobs=0,
            status="active",
            version=req.version,
            last_seen=None,
            joined_at=None,
        )
        try:
            self._store.workers.upsert(info)
        except Exception as exc:
            return _text_error(500, str(exc))

        log.info(
            "[coordinator] worker registered: %s (capacity=%d, version=%s)",
            worker_id,
            req.capacity,
            req.version,
        )
        return write_json(200, RegisterRes(worker_id=worker_id))

    def _handle_heartbeat(self, request: Request, worker_id: str) -> Response:
        try:
            req = HeartbeatReq.from_dict(_decode(request))
        except _DECODE_ERRORS as exc:
            return _text_error(400, str(exc))

        try:
            worker = self._store.workers.get(worker_id)
        except Exception as exc:
            return _text_error(500, str(exc))
        if worker is None:
            return _text_error(404, "worker not found")

        worker.active_jobs = req.active_jobs
        worker.status = "active"
        try:
            self._store.workers.upsert(worker)
        except Exception as exc:
            return _text_error(500, str(exc))
        return _no_content()

    def _handle_leave(self, request: Request, worker_id: str) -> Response:
        # The worker drains its own jobs first; releasing here is a safety net.
        try:
            self._store.jobs.release_from_worker(worker_id)
        except Exception as exc:
            log.warning("[coordinator] error releasing jobs for worker %s: %s", worker_id, exc)
        try:
            self._store.workers.remove(worker_id)
        except Exception as exc:
            return _text_error(500, str(exc))
        log.info("[coordinator] worker left: %s", worker_id)
        return _no_content()

    # ── jobs ─────────────────────────────────────────────────────────────────

    def _handle_claim(self, request: Request) -> Response:
        try:
            req = ClaimReq.from_dict(_decode(request))
        except _DECODE_ERRORS as exc:
            return _text_error(400, str(exc))
        if not req.worker_id:
            return _text_error(400, "worker_id required")

        try:
            job = self._store.jobs.claim(req.worker_id)
        except Exception as exc:
            return _text_error(500, str(exc))

        if job is None:
            return write_json(200, ClaimRes(job=None))

        log.info("[coordinator] job %s claimed by worker %s", job.id, req.worker_id)
        assignment = JobAssignment(job_id=job.id, magnet=job.magnet, info_hash=job.info_hash)
        return write_json(200, ClaimRes(job=assignment))

    def _update_job(self, job_id: str, fn: Callable[[Job], None]) -> Response:
        try:
            self._store.jobs.update(job_id, fn)
        except Exception as exc:
            return _text_error(500, str(exc))
        return _no_content()

    def _handle_progress(self, request: Request, job_id: str) -> Response:
        try:
            req = ProgressReq.from_dict(_decode(request))
            status = JobStatus(_plain(req.status))
        except _DECODE_ERRORS as exc:
            return _text_error(400, str(exc))

        def apply(job: Job) -> None:
            job.progress = req.progress
            job.status = status
            if req.name:
                job.name = req.name
            if req.size > 0:
                job.size = req.size

        return self._update_job(job_id, apply)

    def _handle_complete(self, request: Request, job_id: str) -> Response:
        def apply(job: Job) -> None:
            job.status = JobStatus("done")
            job.progress = 100.0
            job.completed_at = datetime.now()

        return self._update_job(job_id, apply)

    def _handle_requeue(self, request: Request, job_id: str) -> Response:
        def apply(job: Job) -> None:
            job.status = JobStatus("queued")
            job.worker_id = ""
            job.progress = 0.0

        return self._update_job(job_id, apply)

    def _handle_fail(self, request: Request, job_id: str) -> Response:
        try:
            data = _decode(request)
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object")
            message = data.get("error") or ""
            if not isinstance(message, str):
                raise ValueError("field 'error': expected str")
        except _DECODE_ERRORS as exc:
            return _text_error(400, str(exc))

        def apply(job: Job) -> None:
            job.status = JobStatus("failed")
            job.error_msg = message

        return self._update_job(job_id, apply)

    # ── stale workers ────────────────────────────────────────────────────────

    def _stale_worker_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.STALE_INTERVAL):
            self.handle_stale_workers()

    def handle_stale_workers(self) -> list[str]:
        """Release the jobs of workers that missed their heartbeat and mark them offline.

        Returns the ids of the stale workers found.
        """
        try:
            ids = self._store.workers.stale_ids(STALE_THRESHOLD)
        except Exception as exc:
            log.warning("[coordinator] error fetching stale worker IDs: %s", exc)
            return []

        for worker_id in ids:
            try:
                self._store.jobs.release_from_worker(worker_id)
            except Exception as exc:
                log.warning(
                    "[coordinator] error releasing jobs for stale worker %s: %s", worker_id, exc
                )
                continue
            log.info("[coordinator] released jobs for stale worker %s", worker_id)

        if ids:
            try:
                self._store.workers.mark_stale(STALE_THRESHOLD)
            except Exception as exc:
                log.warning("[coordinator] error marking stale workers: %s", exc)
        return list(ids)
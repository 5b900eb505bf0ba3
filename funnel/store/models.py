"""Cluster data model: jobs, workers, join tokens and their repositories."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable


class JobStatus(str, Enum):
    """Lifecycle state of a cluster job."""

    QUEUED = "queued"
    ASSIGNED = "assigned"
    DOWNLOADING = "downloading"
    SEEDING = "seeding"
    PAUSED = "paused"
    FAILED = "failed"
    DONE = "done"

    def __str__(self) -> str:
        return self.value


@dataclass
class Job:
    """A download job tracked by the coordinator."""

    id: str
    magnet: str = ""
    info_hash: str = ""
    status: JobStatus = JobStatus.QUEUED
    worker_id: str = ""  # empty when unassigned
    name: str = ""
    size: int = 0
    progress: float = 0.0
    error_msg: str = ""
    paused: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass
class JobFilter:
    """Criteria for listing jobs; None or empty means any."""

    status: JobStatus | None = None
    worker_id: str = ""


class JobRepository(ABC):
    """Storage of cluster jobs."""

    @abstractmethod
    def create(self, job: Job) -> None:
        """Insert a job, stamping its creation time."""

    @abstractmethod
    def get(self, job_id: str) -> Job | None:
        """Return the job with this id, or None."""

    @abstractmethod
    def get_by_info_hash(self, info_hash: str) -> Job | None:
        """Return the job for this info hash, or None."""

    @abstractmethod
    def update(self, job_id: str, fn: Callable[[Job], None]) -> None:
        """Apply fn to the job and save it; raise LookupError if absent."""

    @abstractmethod
    def list(self, job_filter: JobFilter) -> list[Job]:
        """Return jobs matching the filter."""

    @abstractmethod
    def delete(self, job_id: str) -> None:
        """Delete a job."""

    @abstractmethod
    def next_pending(self) -> Job | None:
        """Return the oldest queued unassigned job, or None."""

    @abstractmethod
    def claim(self, worker_id: str) -> Job | None:
        """Atomically assign the oldest queued job to worker_id, or return None."""

    @abstractmethod
    def release_from_worker(self, worker_id: str) -> None:
        """Requeue the worker's active jobs and mark its seeding jobs done."""


@dataclass
class JoinToken:
    """A token that lets a worker join the cluster."""

    id: str
    token_hash: str = ""
    name: str = ""
    created_at: datetime | None = None
    expires_at: datetime | None = None
    revoked: bool = False


class TokenRepository(ABC):
    """Storage of join tokens."""

    @abstractmethod
    def create(self, token: JoinToken) -> None:
        """Insert a token, stamping its creation time."""

    @abstractmethod
    def get_by_hash(self, token_hash: str) -> JoinToken | None:
        """Return the token with this hash, or None."""

    @abstractmethod
    def list(self) -> list[JoinToken]:
        """Return all tokens."""

    @abstractmethod
    def revoke(self, token_id: str) -> None:
        """Mark a token revoked."""


@dataclass
class WorkerInfo:
    """A worker registered with the coordinator."""

    id: str
    address: str = ""
    capacity: int = 0
    active_jobs: int = 0
    status: str = ""  # "active" | "draining" | "offline"
    version: str = ""
    last_seen: datetime | None = None
    joined_at: datetime | None = None


class WorkerRepository(ABC):
    """Storage of registered workers."""

    @abstractmethod
    def upsert(self, worker: WorkerInfo) -> None:
        """Insert or refresh a worker, stamping last_seen."""

    @abstractmethod
    def get(self, worker_id: str) -> WorkerInfo | None:
        """Return the worker with this id, or None."""

    @abstractmethod
    def list(self) -> list[WorkerInfo]:
        """Return all workers."""

    @abstractmethod
    def remove(self, worker_id: str) -> None:
        """Delete a worker."""

    @abstractmethod
    def mark_stale(self, threshold: timedelta) -> None:
        """Mark workers not seen within threshold as offline."""

    @abstractmethod
    def stale_ids(self, threshold: timedelta) -> list[str]:
        """Return ids of workers silent beyond threshold and not yet offline."""


class Store(ABC):
    """Top-level store combining all repositories."""

    jobs: JobRepository
    workers: WorkerRepository
    tokens: TokenRepository

    @abstractmethod
    def close(self) -> None:
        """Release the underlying connection."""

    @abstractmethod
    def run_migrations(self, directory) -> None:
        """Apply SQL migrations in file-name order."""
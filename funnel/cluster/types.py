"""Messages exchanged between cluster workers and the coordinator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping


def _object(data: Any) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data


def _get(data: Mapping[str, Any], key: str, kind: type, default: Any) -> Any:
    value = data.get(key)
    if value is None:
        return default
    if kind is int:
        valid = isinstance(value, int) and not isinstance(value, bool)
    elif kind is float:
        valid = isinstance(value, (int, float)) and not isinstance(value, bool)
    else:
        valid = isinstance(value, kind)
    if not valid:
        raise ValueError(
            f"field {key!r}: expected {kind.__name__}, got {type(value).__name__}"
        )
    return float(value) if kind is float else value


@dataclass
class RegisterReq:
    """Sent by a worker on startup; an empty worker_id asks for a new id."""

    worker_id: str = ""
    address: str = ""
    capacity: int = 0
    version: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.worker_id:
            data["worker_id"] = self.worker_id
        data.update(address=self.address, capacity=self.capacity, version=self.version)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> RegisterReq:
        data = _object(data)
        return cls(
            worker_id=_get(data, "worker_id", str, ""),
            address=_get(data, "address", str, ""),
            capacity=_get(data, "capacity", int, 0),
            version=_get(data, "version", str, ""),
        )


@dataclass
class RegisterRes:
    """Reply to a worker registration."""

    worker_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"worker_id": self.worker_id}

    @classmethod
    def from_dict(cls, data: Any) -> RegisterRes:
        return cls(worker_id=_get(_object(data), "worker_id", str, ""))


@dataclass
class ClaimReq:
    """Sent by a worker to claim the next queued job."""

    worker_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"worker_id": self.worker_id}

    @classmethod
    def from_dict(cls, data: Any) -> ClaimReq:
        return cls(worker_id=_get(_object(data), "worker_id", str, ""))


@dataclass
class JobAssignment:
    """What a worker needs to start a job."""

    job_id: str = ""
    magnet: str = ""
    info_hash: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"job_id": self.job_id, "magnet": self.magnet, "info_hash": self.info_hash}

    @classmethod
    def from_dict(cls, data: Any) -> JobAssignment:
        data = _object(data)
        return cls(
            job_id=_get(data, "job_id", str, ""),
            magnet=_get(data, "magnet", str, ""),
            info_hash=_get(data, "info_hash", str, ""),
        )


@dataclass
class ClaimRes:
    """Reply to a claim; job is None when nothing is queued."""

    job: JobAssignment | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"job": self.job.to_dict() if self.job is not None else None}

    @classmethod
    def from_dict(cls, data: Any) -> ClaimRes:
        job = _object(data).get("job")
        return cls(job=JobAssignment.from_dict(job) if job is not None else None)


@dataclass
class ProgressReq:
    """Progress report for one job."""

    progress: float = 0.0
    status: str = ""  # "downloading" | "seeding"
    name: str = ""
    size: int = 0
    peers: int = 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"progress": self.progress, "status": self.status}
        if self.name:
            data["name"] = self.name
        if self.size:
            data["size"] = self.size
        if self.peers:
            data["peers"] = self.peers
        return data

    @classmethod
    def from_dict(cls, data: Any) -> ProgressReq:
        data = _object(data)
        return cls(
            progress=_get(data, "progress", float, 0.0),
            status=_get(data, "status", str, ""),
            name=_get(data, "name", str, ""),
            size=_get(data, "size", int, 0),
            peers=_get(data, "peers", int, 0),
        )


@dataclass
class HeartbeatReq:
    """Periodic liveness report from a worker."""

    active_jobs: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"active_jobs": self.active_jobs}

    @classmethod
    def from_dict(cls, data: Any) -> HeartbeatReq:
        return cls(active_jobs=_get(_object(data), "active_jobs", int, 0))
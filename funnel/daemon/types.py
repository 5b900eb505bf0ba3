"""Wire types exchanged between the daemon, its HTTP API and its clients."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class Status(str, Enum):
    """Lifecycle state of a managed torrent."""

    QUEUED = "queued"
    DOWNLOADING = "downloading"
    SEEDING = "seeding"
    PAUSED = "paused"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


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
class StorageInfo:
    """Describes the active storage backend ("local" or "s3")."""

    type: str = ""
    location: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "location": self.location}

    @classmethod
    def from_dict(cls, data: Any) -> StorageInfo:
        data = _object(data)
        return cls(
            type=_get(data, "type", str, ""),
            location=_get(data, "location", str, ""),
        )


@dataclass
class DaemonStatus:
    """Aggregate torrent counts per status."""

    running: bool = False
    counts: dict[Status, int] = field(default_factory=dict)
    storage: StorageInfo = field(default_factory=StorageInfo)

    def to_dict(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "counts": {str(status): count for status, count in self.counts.items()},
            "storage": self.storage.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> DaemonStatus:
        data = _object(data)
        raw_counts = _object(data.get("counts") or {})
        counts = {}
        for key, value in raw_counts.items():
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValueError(f"count for {key!r} is not an integer")
            counts[Status(key)] = value
        storage = data.get("storage")
        return cls(
            running=_get(data, "running", bool, False),
            counts=counts,
            storage=StorageInfo.from_dict(storage) if storage is not None else StorageInfo(),
        )


@dataclass
class TorrentInfo:
    """Public representation of a managed torrent."""

    id: str
    name: str = ""
    magnet: str = ""
    size: int = 0
    progress: float = 0.0
    status: Status = Status.QUEUED
    peers: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "magnet": self.magnet,
            "size": self.size,
            "progress": self.progress,
            "status": str(self.status),
            "peers": self.peers,
        }

    @classmethod
    def from_dict(cls, data: Any) -> TorrentInfo:
        data = _object(data)
        return cls(
            id=_get(data, "id", str, ""),
            name=_get(data, "name", str, ""),
            magnet=_get(data, "magnet", str, ""),
            size=_get(data, "size", int, 0),
            progress=_get(data, "progress", float, 0.0),
            status=Status(_get(data, "status", str, Status.QUEUED.value)),
            peers=_get(data, "peers", int, 0),
        )


@dataclass
class AddRequest:
    """Body of POST /api/torrents."""

    magnet: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> AddRequest:
        return cls(magnet=_get(_object(data), "magnet", str, ""))


@dataclass
class AddResponse:
    """Result of adding a torrent."""

    id: str
    status: Status
    new: bool

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "status": str(self.status), "new": self.new}

    @classmethod
    def from_dict(cls, data: Any) -> AddResponse:
        data = _object(data)
        return cls(
            id=_get(data, "id", str, ""),
            status=Status(_get(data, "status", str, Status.QUEUED.value)),
            new=_get(data, "new", bool, False),
        )


@dataclass
class ActionRequest:
    """Body of PATCH /api/torrents/{id}."""

    action: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> ActionRequest:
        return cls(action=_get(_object(data), "action", str, ""))


@dataclass
class ErrorResponse:
    """An error message for JSON responses."""

    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error}
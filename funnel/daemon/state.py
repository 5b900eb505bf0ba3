"""Persistent list of torrents the daemon resumes after a restart."""

from __future__ import annotations

import dataclasses
import json
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping


@dataclass
class SavedTorrent:
    """A torrent entry persisted so it can be resumed."""

    id: str
    magnet: str
    name: str = ""
    paused: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "magnet": self.magnet}
        if self.name:
            data["name"] = self.name
        if self.paused:
            data["paused"] = True
        return data

    @classmethod
    def from_dict(cls, data: Any) -> SavedTorrent:
        if not isinstance(data, Mapping):
            raise ValueError("saved torrent entry is not a JSON object")
        values = {}
        for key, kind, default in (
            ("id", str, ""),
            ("magnet", str, ""),
            ("name", str, ""),
            ("paused", bool, False),
        ):
            value = data.get(key)
            if value is None:
                value = default
            elif not isinstance(value, kind):
                raise ValueError(f"field {key!r}: expected {kind.__name__}")
            values[key] = value
        return cls(**values)


UpdateFn = Callable[[SavedTorrent], None]


class StateStore(ABC):
    """Persistence backend for saved torrents."""

    @abstractmethod
    def list(self) -> list[SavedTorrent]:
        """Return a snapshot of saved torrents."""

    @abstractmethod
    def add(self, torrent: SavedTorrent) -> None:
        """Persist a new torrent."""

    @abstractmethod
    def remove(self, torrent_id: str) -> None:
        """Forget a torrent by id."""

    @abstractmethod
    def update(self, torrent_id: str, fn: UpdateFn) -> None:
        """Apply fn to the saved torrent; a missing id is a no-op."""

    @abstractmethod
    def close(self) -> None:
        """Release underlying resources."""


class State(StateStore):
    """JSON-file backed state store."""

    def __init__(self, path: str | Path, torrents: Iterable[SavedTorrent] = ()) -> None:
        self.path = Path(path)
        self.torrents: list[SavedTorrent] = list(torrents)
        self._lock = threading.Lock()

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"torrents": [t.to_dict() for t in self.torrents]}
        self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def add(self, torrent: SavedTorrent) -> None:
        with self._lock:
            self.torrents.append(dataclasses.replace(torrent))
            self._save()

    def remove(self, torrent_id: str) -> None:
        with self._lock:
            self.torrents = [t for t in self.torrents if t.id != torrent_id]
            self._save()

    def update(self, torrent_id: str, fn: UpdateFn) -> None:
        with self._lock:
            for torrent in self.torrents:
                if torrent.id == torrent_id:
                    fn(torrent)
                    self._save()
                    return

    def list(self) -> list[SavedTorrent]:
        with self._lock:
            return [dataclasses.replace(t) for t in self.torrents]

    def close(self) -> None:
        """Flush the current list to disk if anything was ever persisted."""
        with self._lock:
            if self.torrents or self.path.exists():
                self._save()


def load_state(path: str | Path) -> State:
    """Read state from path, or return an empty State if the file is absent.

    Raises ValueError if the file holds malformed JSON.
    """
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return State(path)
    data = json.loads(raw)
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ValueError("state file is not a JSON object")
    entries = data.get("torrents") or []
    if not isinstance(entries, list):
        raise ValueError("state 'torrents' is not a list")
    return State(path, (SavedTorrent.from_dict(entry) for entry in entries))
"""Transient in-memory state store."""

from __future__ import annotations

import dataclasses
import threading

from funnel.daemon.state import SavedTorrent, StateStore, UpdateFn


class MemoryStateStore(StateStore):
    """State store that keeps saved torrents in memory only."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._torrents: dict[str, SavedTorrent] = {}

    def list(self) -> list[SavedTorrent]:
        with self._lock:
            return [dataclasses.replace(t) for t in self._torrents.values()]

    def add(self, torrent: SavedTorrent) -> None:
        with self._lock:
            self._torrents[torrent.id] = dataclasses.replace(torrent)

    def remove(self, torrent_id: str) -> None:
        with self._lock:
            self._torrents.pop(torrent_id, None)

    def update(self, torrent_id: str, fn: UpdateFn) -> None:
        with self._lock:
            current = self._torrents.get(torrent_id)
            if current is None:
                return
            updated = dataclasses.replace(current)
            fn(updated)
            self._torrents[torrent_id] = updated

    def close(self) -> None:
        """Drop everything held in memory."""
        with self._lock:
            self._torrents.clear()
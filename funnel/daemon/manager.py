"""Torrent manager: tracks torrents, their status and the download queue."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from funnel.daemon.state import SavedTorrent, StateStore, UpdateFn
from funnel.daemon.types import AddResponse, DaemonStatus, Status, StorageInfo, TorrentInfo
from funnel.store.memory_state import MemoryStateStore

log = logging.getLogger(__name__)

DEFAULT_MAX_ACTIVE = 3


class ManagerError(Exception):
    """A torrent operation failed."""


class TorrentNotFoundError(ManagerError, LookupError):
    """No torrent matches the given id."""


class AmbiguousIDError(ManagerError, ValueError):
    """An id prefix matches several torrents."""


class InvalidStateError(ManagerError):
    """The torrent is not in a state that allows the operation."""


class TorrentHandle(ABC):
    """A torrent inside the BitTorrent client."""

    @abstractmethod
    def info_hash(self) -> str:
        """Hex info hash of the torrent."""

    @abstractmethod
    def wait_for_info(self, timeout: float | None) -> bool:
        """Wait until metainfo is known; return whether it is."""

    @abstractmethod
    def name(self) -> str:
        """Torrent name from its metainfo."""

    @abstractmethod
    def length(self) -> int:
        """Total size in bytes."""

    @abstractmethod
    def bytes_completed(self) -> int:
        """Bytes downloaded and verified."""

    @abstractmethod
    def active_peers(self) -> int:
        """Number of connected peers."""

    @abstractmethod
    def num_pieces(self) -> int:
        """Number of pieces."""

    @abstractmethod
    def pieces_complete(self) -> int:
        """Number of completed pieces."""

    @abstractmethod
    def download_all(self) -> None:
        """Start downloading every piece."""

    @abstractmethod
    def disallow_data_download(self) -> None:
        """Stop requesting data."""

    @abstractmethod
    def drop(self) -> None:
        """Remove the torrent from the client."""


class TorrentClient(ABC):
    """The BitTorrent client the manager drives."""

    @abstractmethod
    def add_magnet(self, magnet: str) -> TorrentHandle:
        """Add a magnet link, returning its torrent."""

    @abstractmethod
    def close(self) -> None:
        """Shut the client down."""


@runtime_checkable
class StorageRemover(Protocol):
    """A storage backend that can delete a torrent's data."""

    def delete_torrent_data(self, info_hash: str) -> None: ...


@dataclass(eq=False)
class _ManagedTorrent:
    handle: TorrentHandle
    magnet: str
    status: Status
    name: str = ""


def _is_complete(handle: TorrentHandle) -> bool:
    pieces = handle.num_pieces()
    return pieces > 0 and handle.pieces_complete() >= pieces


class Manager:
    """Owns the torrent client and tracks active torrents."""

    def __init__(
        self,
        client: TorrentClient,
        storage: object = None,
        state: StateStore | None = None,
        max_active: int = 0,
        storage_info: StorageInfo | None = None,
        poll_interval: float = 5.0,
    ) -> None:
        self._client = client
        self._storage = storage
        self._state = state if state is not None else MemoryStateStore()
        self._max_active = max_active if max_active > 0 else DEFAULT_MAX_ACTIVE
        self._storage_info = storage_info if storage_info is not None else StorageInfo()
        self._poll_interval = poll_interval
        self._torrents: dict[str, _ManagedTorrent] = {}
        self._lock = threading.RLock()
        self._closed = threading.Event()

        for saved in self._state.list():
            initial = Status.PAUSED if saved.paused else Status.QUEUED
            try:
                self._add_magnet(saved.magnet, persist=False, initial=initial)
            except ManagerError as exc:
                log.warning("resume torrent %s: %s", saved.id, exc)

    def close(self) -> None:
        """Stop watching torrents and shut the client down."""
        self._closed.set()
        self._client.close()

    def _client_add(self, magnet: str, what: str = "add magnet") -> TorrentHandle:
        try:
            return self._client.add_magnet(magnet)
        except Exception as exc:
            raise ManagerError(f"{what}: {exc}") from exc

    def _update_state(self, torrent_id: str, fn: UpdateFn) -> None:
        try:
            self._state.update(torrent_id, fn)
        except Exception as exc:
            log.warning("update state for %s: %s", torrent_id, exc)

    def _persist(self, torrent: SavedTorrent) -> None:
        try:
            self._state.add(torrent)
        except Exception as exc:
            log.warning("persist %s: %s", torrent.id, exc)

    def _resolve_id(self, torrent_id: str) -> str:
        with self._lock:
            if torrent_id in self._torrents:
                return torrent_id
            matches = [key for key in self._torrents if key.startswith(torrent_id)]
        if not matches:
            raise TorrentNotFoundError(f"torrent {torrent_id} not found")
        if len(matches) > 1:
            raise AmbiguousIDError(
                f"ambiguous id {torrent_id!r} matches {len(matches)} torrents"
            )
        return matches[0]

    def _lookup(self, torrent_id: str) -> tuple[str, _ManagedTorrent]:
        full = self._resolve_id(torrent_id)
        with self._lock:
            managed = self._torrents.get(full)
        if managed is None:
            raise TorrentNotFoundError(f"torrent {full} not found")
        return full, managed

    def _spawn_watcher(self, torrent_id: str, managed: _ManagedTorrent, initial: Status) -> None:
        threading.Thread(
            target=self._watch,
            args=(torrent_id, managed, initial),
            name=f"watch-{torrent_id[:8]}",
            daemon=True,
        ).start()

    def add(self, magnet: str) -> AddResponse:
        """Add a magnet link, deduplicating by info hash."""
        handle = self._client_add(magnet)
        torrent_id = handle.info_hash()
        with self._lock:
            existing = self._torrents.get(torrent_id)
            if existing is not None:
                return AddResponse(id=torrent_id, status=existing.status, new=False)
            managed = _ManagedTorrent(handle=handle, magnet=magnet, status=Status.QUEUED)
            self._torrents[torrent_id] = managed
        self._persist(SavedTorrent(id=torrent_id, magnet=magnet))
        self._spawn_watcher(torrent_id, managed, Status.QUEUED)
        return AddResponse(id=torrent_id, status=Status.QUEUED, new=True)

    def _add_magnet(self, magnet: str, persist: bool, initial: Status) -> None:
        handle = self._client_add(magnet)
        torrent_id = handle.info_hash()
        managed = _ManagedTorrent(handle=handle, magnet=magnet, status=initial)
        with self._lock:
            self._torrents[torrent_id] = managed
        if persist:
            self._persist(SavedTorrent(id=torrent_id, magnet=magnet))
        self._spawn_watcher(torrent_id, managed, initial)

    def pause(self, torrent_id: str) -> None:
        """Pause a downloading, queued or seeding torrent."""
        full, managed = self._lookup(torrent_id)
        with self._lock:
            status = managed.status
            handle = managed.handle
        if status in (Status.DOWNLOADING, Status.QUEUED):
            handle.disallow_data_download()
        elif status is Status.SEEDING:
            handle.drop()
        else:
            raise InvalidStateError(f"cannot pause torrent in {status} state")
        with self._lock:
            managed.status = Status.PAUSED

        def mark_paused(saved: SavedTorrent) -> None:
            saved.paused = True

        self._update_state(full, mark_paused)

    def resume(self, torrent_id: str) -> None:
        """Resume a paused torrent by re-adding it to the client."""
        full, managed = self._lookup(torrent_id)
        with self._lock:
            status = managed.status
        if status is not Status.PAUSED:
            raise InvalidStateError(f"torrent {full} is not paused (status: {status})")
        handle = self._client_add(managed.magnet, "re-add magnet")
        with self._lock:
            managed.handle = handle
            managed.status = Status.QUEUED

        def mark_resumed(saved: SavedTorrent) -> None:
            saved.paused = False

        self._update_state(full, mark_resumed)
        self._spawn_watcher(full, managed, Status.QUEUED)

    def _detach(self, torrent_id: str) -> tuple[str, _ManagedTorrent]:
        full = self._resolve_id(torrent_id)
        with self._lock:
            managed = self._torrents.pop(full, None)
        if managed is None:
            raise TorrentNotFoundError(f"torrent {full} not found")
        managed.handle.drop()
        return full, managed

    def stop(self, torrent_id: str) -> None:
        """Drop a torrent from the client, keeping its data."""
        full, _ = self._detach(torrent_id)
        self._process_queue()
        self._state.remove(full)

    def remove(self, torrent_id: str) -> None:
        """Drop a torrent from the client and delete its data."""
        full, _ = self._detach(torrent_id)
        if isinstance(self._storage, StorageRemover):
            try:
                self._storage.delete_torrent_data(full)
            except Exception as exc:
                log.warning("delete data for %s: %s", full, exc)
        self._process_queue()
        self._state.remove(full)

    def list(self, status_filter: Status | None = None) -> list[TorrentInfo]:
        """Return torrents, optionally only those with the given status."""
        with self._lock:
            snapshot = [
                (torrent_id, m.status, m.name, m.magnet, m.handle)
                for torrent_id, m in self._torrents.items()
            ]
        out = []
        for torrent_id, status, name, magnet, handle in snapshot:
            if status_filter and status is not status_filter:
                continue
            info = TorrentInfo(id=torrent_id, name=name, magnet=magnet, status=status)
            if handle is not None:
                length = handle.length()
                info.size = length
                info.peers = handle.active_peers()
                if length > 0:
                    info.progress = handle.bytes_completed() / length * 100
            out.append(info)
        return out

    def daemon_status(self) -> DaemonStatus:
        """Return aggregate counts per status."""
        counts = {status: 0 for status in Status}
        with self._lock:
            for managed in self._torrents.values():
                counts[managed.status] += 1
        return DaemonStatus(running=True, counts=counts, storage=self._storage_info)

    def _count_active(self) -> int:
        with self._lock:
            return sum(1 for m in self._torrents.values() if m.status is Status.DOWNLOADING)

    def _try_start(self, torrent_id: str) -> None:
        with self._lock:
            managed = self._torrents.get(torrent_id)
            if managed is None or managed.status is not Status.QUEUED:
                return
            if self._count_active() >= self._max_active:
                return
            managed.handle.download_all()
            managed.status = Status.DOWNLOADING
            log.info("[torrent] downloading: %s", torrent_id)

    def _process_queue(self) -> None:
        with self._lock:
            queued = [tid for tid, m in self._torrents.items() if m.status is Status.QUEUED]
        for torrent_id in queued:
            if self._count_active() >= self._max_active:
                break
            self._try_start(torrent_id)

    def _tracked(self, torrent_id: str, managed: _ManagedTorrent) -> bool:
        with self._lock:
            return self._torrents.get(torrent_id) is managed

    def _watch(self, torrent_id: str, managed: _ManagedTorrent, initial: Status) -> None:
        with self._lock:
            handle = managed.handle
        while not handle.wait_for_info(self._poll_interval):
            if self._closed.is_set() or not self._tracked(torrent_id, managed):
                return

        name = handle.name()
        with self._lock:
            managed.name = name

        def set_name(saved: SavedTorrent) -> None:
            saved.name = name

        self._update_state(torrent_id, set_name)

        if initial is not Status.PAUSED:
            self._try_start(torrent_id)

        while not self._closed.wait(self._poll_interval):
            with self._lock:
                if self._torrents.get(torrent_id) is not managed:
                    return
                status = managed.status
                current = managed.handle
            if status in (Status.PAUSED, Status.FAILED):
                return
            if status is Status.DOWNLOADING and _is_complete(current):
                with self._lock:
                    if managed.status is Status.DOWNLOADING and managed.handle is current:
                        managed.status = Status.SEEDING
                        log.info("[torrent] seeding: %s (%s)", managed.name, torrent_id)
                self._process_queue()
"""Local-disk storage backend."""

from __future__ import annotations

import contextlib
import shutil
from pathlib import Path


class LocalStorage:
    """Stores torrent data under a directory on local disk."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def delete_torrent_data(self, info_hash: str) -> None:
        """Remove the torrent's data directory; a missing one is not an error."""
        target = self.directory / info_hash
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        else:
            with contextlib.suppress(FileNotFoundError):
                target.unlink()
from __future__ import annotations

import json
import os
import shutil
from abc import ABC, abstractmethod
from pathlib import Path

from .config import Settings

RESUMABLE_META_SUFFIX = ".META"


class Storage(ABC):
    @abstractmethod
    def video_file_path(self, filename: str) -> Path: ...

    @abstractmethod
    def torrent_path(self, filename: str) -> Path: ...

    @abstractmethod
    def thumbnail_path(self, filename: str) -> Path: ...

    @abstractmethod
    def caption_path(self, filename: str) -> Path: ...

    @abstractmethod
    def tmp_path(self, filename: str) -> Path: ...

    @abstractmethod
    def move(self, source: Path, destination: Path) -> Path: ...

    @abstractmethod
    def remove(self, path: Path) -> None: ...

    @abstractmethod
    def read_resumable_metadata(self, upload_path: Path) -> dict: ...

    @abstractmethod
    def delete_resumable_metadata(self, upload_path: Path) -> None: ...


class LocalStorage(Storage):
    """Filesystem-backed storage laid out under a single root."""

    def __init__(self, base_path: Path):
        self.base_path = base_path
        for directory in ("videos", "torrents", "thumbnails", "captions", "tmp"):
            (self.base_path / directory).mkdir(parents=True, exist_ok=True)

    def video_file_path(self, filename: str) -> Path:
        return self.base_path / "videos" / filename

    def torrent_path(self, filename: str) -> Path:
        return self.base_path / "torrents" / filename

    def thumbnail_path(self, filename: str) -> Path:
        return self.base_path / "thumbnails" / filename

    def caption_path(self, filename: str) -> Path:
        return self.base_path / "captions" / filename

    def tmp_path(self, filename: str) -> Path:
        return self.base_path / "tmp" / filename

    def move(self, source: Path, destination: Path) -> Path:
        """Move ``source`` onto ``destination``, replacing whatever is there.

        Moving a file onto itself is a no-op, so repeating a move after the
        first one succeeded is safe.
        """
        if source.resolve() == destination.resolve():
            return destination
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.replace(source, destination)
        except OSError:
            # Cross-device moves cannot be renamed atomically.
            shutil.move(str(source), str(destination))
        return destination

    def remove(self, path: Path) -> None:
        path.unlink(missing_ok=True)

    def read_resumable_metadata(self, upload_path: Path) -> dict:
        meta_path = upload_path.with_name(upload_path.name + RESUMABLE_META_SUFFIX)
        return json.loads(meta_path.read_text(encoding="utf-8"))

    def delete_resumable_metadata(self, upload_path: Path) -> None:
        self.remove(upload_path.with_name(upload_path.name + RESUMABLE_META_SUFFIX))


def get_storage(settings: Settings) -> LocalStorage:
    return LocalStorage(base_path=Path(settings.storage_root))


__all__ = ["Storage", "LocalStorage", "RESUMABLE_META_SUFFIX", "get_storage"]

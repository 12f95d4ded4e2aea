from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Sequence

import torf

from videocore.core.errors import ValidationError

__all__ = [
    "ParsedTorrent",
    "TorrentBuilder",
    "TorfTorrentBuilder",
    "parse_torrent_file",
    "decode_magnet_name",
]


@dataclass(slots=True)
class ParsedTorrent:
    name: Optional[str]
    file_count: int
    info_hash: str


def parse_torrent_file(path: Path) -> ParsedTorrent:
    """Read a torrent container.

    Raises:
        ValidationError: The file is not a readable torrent.
    """
    try:
        torrent = torf.Torrent.read(str(path))
    except torf.TorfError as exc:
        raise ValidationError(f"invalid torrent file: {exc}", code="invalid_torrent_file") from exc
    return ParsedTorrent(name=torrent.name or None, file_count=len(torrent.files), info_hash=torrent.infohash)


def decode_magnet_name(magnet_uri: str) -> Optional[str]:
    """Return the display name a magnet URI declares, if any.

    Raises:
        ValidationError: The URI is not a valid magnet link.
    """
    try:
        magnet = torf.Magnet.from_string(magnet_uri)
    except torf.TorfError as exc:
        raise ValidationError(f"invalid magnet uri: {exc}", code="invalid_magnet_uri") from exc
    return magnet.dn or None


class TorrentBuilder(Protocol):
    def build(self, *, source: Path, destination: Path, name: str, comment: str, webseed: str) -> str:
        """Write a torrent for ``source`` at ``destination`` and return its info-hash."""
        ...


class TorfTorrentBuilder:
    def __init__(self, trackers: Sequence[str] = ()):
        self.trackers = list(trackers)

    def build(self, *, source: Path, destination: Path, name: str, comment: str, webseed: str) -> str:
        torrent = torf.Torrent(
            path=str(source),
            name=name,
            trackers=self.trackers or None,
            webseeds=[webseed],
            comment=comment,
            created_by="videocore",
        )
        torrent.generate()
        destination.parent.mkdir(parents=True, exist_ok=True)
        torrent.write(str(destination), overwrite=True)
        return torrent.infohash

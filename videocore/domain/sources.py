"""Import sources as a tagged union.

Every consumer matches the union exhaustively and ends with ``assert_never``
so a new source type fails type checking until each arm is handled.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Union

__all__ = ["TorrentFileSource", "MagnetSource", "TargetUrlSource", "ImportSource"]


@dataclass(slots=True, frozen=True)
class TorrentFileSource:
    path: Path
    original_name: str


@dataclass(slots=True, frozen=True)
class MagnetSource:
    magnet_uri: str


@dataclass(slots=True, frozen=True)
class TargetUrlSource:
    target_url: str


ImportSource = Union[TorrentFileSource, MagnetSource, TargetUrlSource]

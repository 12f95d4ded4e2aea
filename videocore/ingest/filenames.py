from __future__ import annotations

from hashlib import sha256
from pathlib import PurePath
from uuid import uuid4

__all__ = [
    "generate_video_filename",
    "generate_torrent_filename",
    "secure_torrent_name",
    "generate_image_filename",
    "generate_caption_filename",
    "normalise_extname",
]


def generate_video_filename(video_uuid: str, resolution: int, extname: str) -> str:
    """Return the canonical filename of a video rendition.

    The result depends only on the arguments, so a transaction that is
    retried computes the same destination path as the first attempt.

    Args:
        video_uuid: The video's stable identity.
        resolution: The rendition's resolution (smaller frame dimension).
        extname: The file extension, including the leading dot.

    Returns:
        The filename.
    """
    return f"{video_uuid}-{resolution}{extname.lower()}"


def generate_torrent_filename(video_uuid: str, resolution: int) -> str:
    """Return the filename of the torrent describing one rendition.

    Args:
        video_uuid: The video's stable identity.
        resolution: The rendition's resolution.

    Returns:
        The torrent filename.
    """
    return f"{video_uuid}-{resolution}.torrent"


def secure_torrent_name(original_name: str) -> str:
    """Return a content-addressed name for an uploaded torrent.

    Args:
        original_name: The filename supplied by the client.

    Returns:
        A filename that cannot escape the torrents directory.
    """
    return sha256(original_name.encode("utf-8")).hexdigest() + ".torrent"


def generate_image_filename(extname: str = ".jpg") -> str:
    return f"{uuid4()}{extname}"


def generate_caption_filename(language: str) -> str:
    return f"{uuid4()}-{language}.vtt"


def normalise_extname(filename: str, default: str = ".mp4") -> str:
    suffix = PurePath(filename).suffix.lower()
    return suffix or default

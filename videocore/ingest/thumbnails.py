from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Tuple
from uuid import uuid4

import cv2  # type: ignore
import requests

from videocore.core.errors import ExternalFetchError

JPEG_QUALITY = 90

__all__ = ["process_image", "generate_from_media", "fetch_from_url"]


def process_image(source: Path, destination: Path, size: Tuple[int, int]) -> Path:
    """Resize ``source`` to cover ``size`` and write it as a JPEG."""
    image = cv2.imread(str(source))
    if image is None:
        raise RuntimeError(f"Failed to read image at {source}")

    width, height = size
    src_height, src_width = image.shape[:2]
    scale = max(width / src_width, height / src_height)
    resized = cv2.resize(
        image,
        (max(int(round(src_width * scale)), width), max(int(round(src_height * scale)), height)),
        interpolation=cv2.INTER_AREA,
    )
    top = (resized.shape[0] - height) // 2
    left = (resized.shape[1] - width) // 2
    cropped = resized[top : top + height, left : left + width]

    destination.parent.mkdir(parents=True, exist_ok=True)
    if not cv2.imwrite(str(destination), cropped, [int(cv2.IMWRITE_JPEG_QUALITY), JPEG_QUALITY]):
        raise RuntimeError(f"Failed to write image at {destination}")
    return destination


def generate_from_media(
    video_path: Path,
    destination: Path,
    size: Tuple[int, int],
    *,
    timestamp_s: float,
    tmp_dir: Path,
) -> Path:
    """Grab a frame at ``timestamp_s`` and turn it into a thumbnail."""
    frame_path = tmp_dir / f"{uuid4().hex}.jpg"
    command = [
        "ffmpeg",
        "-nostdin",
        "-v",
        "error",
        "-ss",
        f"{max(timestamp_s, 0.0):.3f}",
        "-i",
        str(video_path),
        "-frames:v",
        "1",
        "-q:v",
        "2",
        "-y",
        str(frame_path),
    ]
    try:
        subprocess.run(command, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        return process_image(frame_path, destination, size)
    finally:
        frame_path.unlink(missing_ok=True)


def fetch_from_url(
    url: str,
    destination: Path,
    size: Tuple[int, int],
    *,
    tmp_dir: Path,
    timeout_s: float,
) -> Path:
    """Download an image and turn it into a thumbnail."""
    download_path = tmp_dir / f"{uuid4().hex}.img"
    try:
        with requests.get(url, stream=True, timeout=timeout_s) as resp:
            resp.raise_for_status()
            with open(download_path, "wb") as handle:
                for chunk in resp.iter_content(chunk_size=1024 * 1024):
                    if chunk:
                        handle.write(chunk)
        return process_image(download_path, destination, size)
    except requests.RequestException as exc:
        raise ExternalFetchError(f"cannot download image {url}: {exc}") from exc
    finally:
        download_path.unlink(missing_ok=True)

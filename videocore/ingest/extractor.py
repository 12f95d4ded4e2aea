from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from yt_dlp import YoutubeDL

from videocore.core.constants import REMOTE_CATEGORY_MAP, REMOTE_LICENCE_MAP
from videocore.core.errors import ExternalFetchError

__all__ = [
    "ExtractedInfo",
    "ExtractedSubtitle",
    "MediaExtractor",
    "YtDlpExtractor",
    "info_from_ytdlp",
]

NSFW_AGE_LIMIT = 18


@dataclass(slots=True)
class ExtractedInfo:
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[int] = None
    licence: Optional[int] = None
    language: Optional[str] = None
    nsfw: Optional[bool] = None
    tags: List[str] = field(default_factory=list)
    thumbnail_url: Optional[str] = None
    originally_published_at: Optional[datetime] = None
    ext: Optional[str] = None


@dataclass(slots=True)
class ExtractedSubtitle:
    language: str
    path: Path


class MediaExtractor(Protocol):
    def get_info(self, url: str) -> ExtractedInfo: ...

    def get_subtitles(self, url: str, dest_dir: Path) -> List[ExtractedSubtitle]: ...


class YtDlpExtractor:
    """Remote metadata and subtitle extraction backed by yt-dlp."""

    def __init__(self, user_agent: Optional[str] = None):
        self.user_agent = user_agent

    def _base_options(self) -> Dict[str, Any]:
        opts: Dict[str, Any] = {
            "quiet": True,
            "no_warnings": True,
            "noplaylist": True,
            "retries": 3,
            "socket_timeout": 15,
        }
        if self.user_agent:
            opts["user_agent"] = self.user_agent
            opts["http_headers"] = {"User-Agent": self.user_agent}
        return opts

    def get_info(self, url: str) -> ExtractedInfo:
        opts = {**self._base_options(), "skip_download": True}
        try:
            with YoutubeDL(opts) as ydl:
                info = ydl.extract_info(url, download=False)
        except Exception as exc:
            # yt-dlp reports site breakage and network trouble with many exception types.
            raise ExternalFetchError(f"cannot fetch remote information of {url}: {exc!r}") from exc
        if not info:
            raise ExternalFetchError(f"cannot fetch remote information of {url}")
        return info_from_ytdlp(info)

    def get_subtitles(self, url: str, dest_dir: Path) -> List[ExtractedSubtitle]:
        dest_dir.mkdir(parents=True, exist_ok=True)
        opts = {
            **self._base_options(),
            "skip_download": True,
            "writesubtitles": True,
            "allsubtitles": True,
            "subtitlesformat": "vtt",
            "outtmpl": str(dest_dir / "%(id)s.%(ext)s"),
        }
        with YoutubeDL(opts) as ydl:
            info = ydl.extract_info(url, download=True)

        subtitles: List[ExtractedSubtitle] = []
        for language, entry in ((info or {}).get("requested_subtitles") or {}).items():
            filepath = (entry or {}).get("filepath")
            if filepath and Path(filepath).exists():
                subtitles.append(ExtractedSubtitle(language=language, path=Path(filepath)))
        return subtitles


def info_from_ytdlp(info: Dict[str, Any]) -> ExtractedInfo:
    """Map a yt-dlp info dict onto catalog fields."""
    categories = info.get("categories") or []
    category = next((REMOTE_CATEGORY_MAP[c] for c in categories if c in REMOTE_CATEGORY_MAP), None)

    age_limit = info.get("age_limit")
    nsfw = age_limit >= NSFW_AGE_LIMIT if isinstance(age_limit, int) else None

    return ExtractedInfo(
        name=info.get("title"),
        description=info.get("description"),
        category=category,
        licence=REMOTE_LICENCE_MAP.get(info.get("license") or ""),
        language=info.get("language"),
        nsfw=nsfw,
        tags=[str(tag) for tag in (info.get("tags") or [])][:5],
        thumbnail_url=info.get("thumbnail"),
        originally_published_at=_parse_upload_date(info.get("upload_date")),
        ext=info.get("ext"),
    )


def _parse_upload_date(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(str(value), "%Y%m%d").replace(tzinfo=timezone.utc)
    except ValueError:
        return None

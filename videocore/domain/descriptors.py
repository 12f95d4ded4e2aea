from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, TypeVar

from videocore.db.models import ThumbnailOrigin, ThumbnailType, VideoPrivacy, VideoState

__all__ = [
    "FEDERATION_PRIVACIES",
    "CONFIDENTIAL_PRIVACIES",
    "Snapshottable",
    "ScheduledVisibilityChange",
    "VideoDescriptor",
    "VideoFileRecord",
    "ThumbnailArtifact",
    "TechnicalMetadata",
    "UploadedFile",
    "Requester",
    "VideoRef",
]

FEDERATION_PRIVACIES = frozenset({VideoPrivacy.public, VideoPrivacy.unlisted})
CONFIDENTIAL_PRIVACIES = frozenset({VideoPrivacy.private, VideoPrivacy.unlisted, VideoPrivacy.internal})

S = TypeVar("S", bound="Snapshottable")


class Snapshottable:
    """Value-object snapshot support for mutable dataclasses.

    A snapshot is a deep copy; ``restore`` writes every field back, so state
    mutated by a rolled back transaction attempt never leaks into the next one.
    """

    __slots__ = ()

    def snapshot(self: S) -> S:
        values = {f.name: copy.deepcopy(getattr(self, f.name)) for f in fields(self)}  # type: ignore[arg-type]
        return replace(self, **values)  # type: ignore[type-var]

    def restore(self: S, snapshot: S) -> None:
        for f in fields(self):  # type: ignore[arg-type]
            setattr(self, f.name, copy.deepcopy(getattr(snapshot, f.name)))


@dataclass(slots=True)
class ScheduledVisibilityChange:
    update_at: datetime
    privacy: Optional[VideoPrivacy] = None


@dataclass(slots=True)
class VideoDescriptor(Snapshottable):
    """Canonical description of a video, before and after it is committed."""

    uuid: str
    url: str
    name: str
    channel_id: int
    privacy: VideoPrivacy
    state: VideoState
    id: Optional[int] = None
    description: Optional[str] = None
    support: Optional[str] = None
    category: Optional[int] = None
    licence: Optional[int] = None
    language: Optional[str] = None
    nsfw: bool = False
    comments_enabled: bool = True
    download_enabled: bool = True
    wait_transcoding: bool = False
    duration: int = 0
    is_live: bool = False
    remote: bool = False
    blacklisted: bool = False
    originally_published_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    tags: list[str] = field(default_factory=list)
    schedule_update: Optional[ScheduledVisibilityChange] = None

    def has_privacy_for_federation(self) -> bool:
        return self.privacy in FEDERATION_PRIVACIES

    def is_confidential(self) -> bool:
        return self.privacy in CONFIDENTIAL_PRIVACIES

    def is_new_video(self, new_privacy: VideoPrivacy) -> bool:
        return not self.has_privacy_for_federation() and new_privacy in FEDERATION_PRIVACIES

    def set_privacy(self, new_privacy: VideoPrivacy, *, now: datetime) -> None:
        if self.privacy == VideoPrivacy.private and new_privacy != VideoPrivacy.private:
            self.published_at = now
        self.privacy = new_privacy

    def is_owned(self) -> bool:
        return not self.remote


@dataclass(slots=True)
class VideoFileRecord(Snapshottable):
    """One physical rendition of a video."""

    extname: str
    size: int
    resolution: int
    filename: str
    fps: Optional[float] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None
    video_id: Optional[int] = None
    info_hash: Optional[str] = None
    torrent_filename: Optional[str] = None

    def is_audio(self) -> bool:
        return self.fps is None


@dataclass(slots=True)
class ThumbnailArtifact:
    type: ThumbnailType
    origin: ThumbnailOrigin
    filename: str
    path: Path
    automatically_generated: bool = False


@dataclass(slots=True)
class TechnicalMetadata:
    audio_only: bool
    resolution: int
    fps: Optional[float]
    duration: int
    metadata: dict[str, Any]


@dataclass(slots=True)
class UploadedFile:
    """A physical file handed over by the request boundary."""

    path: Path
    filename: str
    size: int


@dataclass(slots=True, frozen=True)
class Requester:
    user_id: int
    can_bypass_blacklist: bool = False


@dataclass(slots=True, frozen=True)
class VideoRef:
    id: int
    uuid: str

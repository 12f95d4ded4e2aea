from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from videocore.core.constants import VIDEO_CATEGORIES, VIDEO_LICENCES
from videocore.db.models import VideoPrivacy


def _check_known(value: Optional[int], known: dict, label: str) -> Optional[int]:
    if value is not None and value not in known:
        raise ValueError(f"unknown {label} {value}")
    return value


class CatalogFields(BaseModel):
    @field_validator("category", check_fields=False)
    @classmethod
    def _known_category(cls, value: Optional[int]) -> Optional[int]:
        return _check_known(value, VIDEO_CATEGORIES, "category")

    @field_validator("licence", check_fields=False)
    @classmethod
    def _known_licence(cls, value: Optional[int]) -> Optional[int]:
        return _check_known(value, VIDEO_LICENCES, "licence")


class ScheduleUpdate(BaseModel):
    update_at: datetime = Field(..., description="When the privacy change takes effect.")
    privacy: Optional[VideoPrivacy] = Field(default=None, description="Target privacy, public when omitted.")


class VideoCreate(CatalogFields):
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    support: Optional[str] = None
    category: Optional[int] = None
    licence: Optional[int] = None
    language: Optional[str] = None
    privacy: VideoPrivacy = VideoPrivacy.public
    nsfw: bool = False
    comments_enabled: bool = True
    download_enabled: bool = True
    wait_transcoding: bool = False
    tags: Optional[List[str]] = None
    schedule_update: Optional[ScheduleUpdate] = None
    originally_published_at: Optional[datetime] = None


class VideoUpdate(CatalogFields):
    """Partial update.

    Fields left out of the payload are untouched. ``schedule_update`` sent as
    an explicit null removes an existing schedule; use ``model_fields_set`` to
    tell the two apart.
    """

    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = None
    support: Optional[str] = None
    category: Optional[int] = None
    licence: Optional[int] = None
    language: Optional[str] = None
    privacy: Optional[VideoPrivacy] = None
    nsfw: Optional[bool] = None
    comments_enabled: Optional[bool] = None
    download_enabled: Optional[bool] = None
    wait_transcoding: Optional[bool] = None
    tags: Optional[List[str]] = None
    schedule_update: Optional[ScheduleUpdate] = None
    originally_published_at: Optional[datetime] = None

    def is_set(self, field_name: str) -> bool:
        return field_name in self.model_fields_set


class VideoImportCreate(CatalogFields):
    """Import request. Exactly one of target_url, magnet_uri or a torrent file is expected."""

    target_url: Optional[str] = None
    magnet_uri: Optional[str] = None
    name: Optional[str] = Field(default=None, max_length=120)
    description: Optional[str] = None
    support: Optional[str] = None
    category: Optional[int] = None
    licence: Optional[int] = None
    language: Optional[str] = None
    privacy: Optional[VideoPrivacy] = None
    nsfw: Optional[bool] = None
    comments_enabled: Optional[bool] = None
    download_enabled: Optional[bool] = None
    wait_transcoding: Optional[bool] = None
    tags: Optional[List[str]] = None
    originally_published_at: Optional[datetime] = None


__all__ = ["ScheduleUpdate", "VideoCreate", "VideoUpdate", "VideoImportCreate"]

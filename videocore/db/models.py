from __future__ import annotations

import enum
from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import BIGINT
from sqlalchemy.orm import Mapped, mapped_column, relationship

from videocore.core.db import Base


class VideoState(enum.IntEnum):
    published = 1
    to_transcode = 2
    to_import = 3


class VideoPrivacy(enum.IntEnum):
    public = 1
    unlisted = 2
    private = 3
    internal = 4


class ThumbnailType(enum.IntEnum):
    miniature = 1
    preview = 2


class ThumbnailOrigin(str, enum.Enum):
    uploaded = "uploaded"
    generated = "generated"
    fetched = "fetched"


class VideoImportState(enum.IntEnum):
    pending = 1
    success = 2
    failed = 3


class BlacklistType(str, enum.Enum):
    manual = "manual"
    auto = "auto"


class ActivityType(str, enum.Enum):
    create = "create"
    update = "update"
    delete = "delete"
    view = "view"
    channel_change = "channel_change"


video_tags = Table(
    "video_tags",
    Base.metadata,
    Column("video_id", ForeignKey("videos.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class VideoChannel(Base):
    __tablename__ = "video_channels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    videos: Mapped[List["Video"]] = relationship(back_populates="channel")


class Video(Base):
    __tablename__ = "videos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uuid: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    support: Mapped[str | None] = mapped_column(Text, nullable=True)
    channel_id: Mapped[int] = mapped_column(ForeignKey("video_channels.id", ondelete="CASCADE"), nullable=False)
    privacy: Mapped[VideoPrivacy] = mapped_column(Enum(VideoPrivacy), nullable=False)
    category: Mapped[int | None] = mapped_column(Integer, nullable=True)
    licence: Mapped[int | None] = mapped_column(Integer, nullable=True)
    language: Mapped[str | None] = mapped_column(String(16), nullable=True)
    nsfw: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    comments_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    download_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    wait_transcoding: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    state: Mapped[VideoState] = mapped_column(Enum(VideoState), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_live: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    remote: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    views: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    originally_published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    channel: Mapped[VideoChannel] = relationship(back_populates="videos")
    files: Mapped[List["VideoFile"]] = relationship(back_populates="video", passive_deletes=True)
    thumbnails: Mapped[List["Thumbnail"]] = relationship(back_populates="video", passive_deletes=True)
    tags: Mapped[List["Tag"]] = relationship(secondary=video_tags, passive_deletes=True)
    schedule: Mapped[Optional["ScheduleVideoUpdate"]] = relationship(uselist=False, passive_deletes=True)
    blacklist: Mapped[Optional["VideoBlacklist"]] = relationship(uselist=False, passive_deletes=True)


class VideoFile(Base):
    __tablename__ = "video_files"
    __table_args__ = (Index("ix_video_files_video_id", "video_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    video_id: Mapped[int] = mapped_column(ForeignKey("videos.id", ondelete="CASCADE"), nullable=False)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    extname: Mapped[str] = mapped_column(String(16), nullable=False)
    size: Mapped[int] = mapped_column(BIGINT, nullable=False)
    resolution: Mapped[int] = mapped_column(Integer, nullable=False)
    fps: Mapped[float | None] = mapped_column(Float, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    info_hash: Mapped[str | None] = mapped_column(String(40), nullable=True)
    torrent_filename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    video: Mapped[Video] = relationship(back_populates="files")


class Thumbnail(Base):
    __tablename__ = "thumbnails"
    __table_args__ = (UniqueConstraint("video_id", "type", name="uq_thumbnails_video_type"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    video_id: Mapped[int] = mapped_column(ForeignKey("videos.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[ThumbnailType] = mapped_column(Enum(ThumbnailType), nullable=False)
    origin: Mapped[ThumbnailOrigin] = mapped_column(Enum(ThumbnailOrigin), nullable=False)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    automatically_generated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    video: Mapped[Video] = relationship(back_populates="thumbnails")


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)


class VideoCaption(Base):
    __tablename__ = "video_captions"
    __table_args__ = (UniqueConstraint("video_id", "language", name="uq_video_captions_video_language"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    video_id: Mapped[int] = mapped_column(ForeignKey("videos.id", ondelete="CASCADE"), nullable=False)
    language: Mapped[str] = mapped_column(String(16), nullable=False)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class VideoImport(Base):
    __tablename__ = "video_imports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    video_id: Mapped[int | None] = mapped_column(ForeignKey("videos.id", ondelete="SET NULL"), nullable=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    target_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    magnet_uri: Mapped[str | None] = mapped_column(Text, nullable=True)
    torrent_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    state: Mapped[VideoImportState] = mapped_column(Enum(VideoImportState), nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class ScheduleVideoUpdate(Base):
    __tablename__ = "schedule_video_updates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    video_id: Mapped[int] = mapped_column(ForeignKey("videos.id", ondelete="CASCADE"), unique=True, nullable=False)
    update_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    privacy: Mapped[VideoPrivacy | None] = mapped_column(Enum(VideoPrivacy), nullable=True)


class VideoBlacklist(Base):
    __tablename__ = "video_blacklists"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    video_id: Mapped[int] = mapped_column(ForeignKey("videos.id", ondelete="CASCADE"), unique=True, nullable=False)
    type: Mapped[BlacklistType] = mapped_column(Enum(BlacklistType), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    unfederated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class FederationActivity(Base):
    __tablename__ = "federation_activities"
    __table_args__ = (Index("ix_federation_activities_video_uuid", "video_uuid"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    video_uuid: Mapped[str] = mapped_column(String(36), nullable=False)
    activity_type: Mapped[ActivityType] = mapped_column(Enum(ActivityType), nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


__all__ = [
    "VideoState",
    "VideoPrivacy",
    "ThumbnailType",
    "ThumbnailOrigin",
    "VideoImportState",
    "BlacklistType",
    "ActivityType",
    "video_tags",
    "VideoChannel",
    "Video",
    "VideoFile",
    "Thumbnail",
    "Tag",
    "VideoCaption",
    "VideoImport",
    "ScheduleVideoUpdate",
    "VideoBlacklist",
    "FederationActivity",
]

"""Mapping between domain descriptors and ORM rows.

Rows are rebuilt from descriptors on every transaction attempt and never
carried across sessions. Relationships are loaded explicitly; nothing here
relies on lazy loading.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from videocore.db.models import (
    ScheduleVideoUpdate,
    Tag,
    Thumbnail,
    Video,
    VideoChannel,
    VideoFile,
    video_tags,
)
from videocore.domain.descriptors import (
    ScheduledVisibilityChange,
    ThumbnailArtifact,
    VideoDescriptor,
    VideoFileRecord,
)

MAX_TAGS = 5

DESCRIPTOR_COLUMNS = (
    "uuid",
    "url",
    "name",
    "description",
    "support",
    "channel_id",
    "privacy",
    "category",
    "licence",
    "language",
    "nsfw",
    "comments_enabled",
    "download_enabled",
    "wait_transcoding",
    "state",
    "duration",
    "is_live",
    "remote",
    "originally_published_at",
    "published_at",
)


def video_row_from_descriptor(video: VideoDescriptor) -> Video:
    return Video(**{column: getattr(video, column) for column in DESCRIPTOR_COLUMNS})


def apply_descriptor(row: Video, video: VideoDescriptor) -> None:
    for column in DESCRIPTOR_COLUMNS:
        setattr(row, column, getattr(video, column))


def descriptor_from_row(row: Video) -> VideoDescriptor:
    """Build a descriptor from a row loaded with ``load_video_row``."""
    schedule = None
    if row.schedule is not None:
        schedule = ScheduledVisibilityChange(update_at=row.schedule.update_at, privacy=row.schedule.privacy)
    return VideoDescriptor(
        **{column: getattr(row, column) for column in DESCRIPTOR_COLUMNS},
        id=row.id,
        blacklisted=row.blacklist is not None,
        tags=sorted(tag.name for tag in row.tags),
        schedule_update=schedule,
    )


def file_row_from_record(record: VideoFileRecord) -> VideoFile:
    return VideoFile(
        video_id=record.video_id,
        filename=record.filename,
        extname=record.extname,
        size=record.size,
        resolution=record.resolution,
        fps=record.fps,
        metadata_json=record.metadata,
        info_hash=record.info_hash,
        torrent_filename=record.torrent_filename,
    )


def file_record_from_row(row: VideoFile) -> VideoFileRecord:
    return VideoFileRecord(
        id=row.id,
        video_id=row.video_id,
        filename=row.filename,
        extname=row.extname,
        size=row.size,
        resolution=row.resolution,
        fps=row.fps,
        metadata=dict(row.metadata_json or {}),
        info_hash=row.info_hash,
        torrent_filename=row.torrent_filename,
    )


async def load_video_row(session: AsyncSession, video_id: int) -> Optional[Video]:
    stmt = (
        select(Video)
        .where(Video.id == video_id)
        .options(selectinload(Video.tags), selectinload(Video.schedule), selectinload(Video.blacklist))
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def load_video_descriptor(session: AsyncSession, video_id: int) -> Optional[VideoDescriptor]:
    row = await load_video_row(session, video_id)
    if row is None:
        return None
    return descriptor_from_row(row)


def normalise_tags(tags: Optional[Iterable[str]]) -> List[str]:
    seen: List[str] = []
    for raw in tags or ():
        name = raw.strip()
        if name and name not in seen:
            seen.append(name)
    return seen[:MAX_TAGS]


async def set_video_tags(session: AsyncSession, video_id: int, tags: Optional[Iterable[str]]) -> List[str]:
    names = normalise_tags(tags)
    await session.execute(delete(video_tags).where(video_tags.c.video_id == video_id))
    for name in names:
        tag = (await session.execute(select(Tag).where(Tag.name == name))).scalar_one_or_none()
        if tag is None:
            tag = Tag(name=name)
            session.add(tag)
            await session.flush()
        await session.execute(insert(video_tags).values(video_id=video_id, tag_id=tag.id))
    return names


async def add_thumbnail(session: AsyncSession, video_id: int, artifact: Optional[ThumbnailArtifact]) -> None:
    """Attach ``artifact``, replacing any thumbnail of the same type."""
    if artifact is None:
        return
    await session.execute(
        delete(Thumbnail).where(Thumbnail.video_id == video_id, Thumbnail.type == artifact.type)
    )
    session.add(
        Thumbnail(
            video_id=video_id,
            type=artifact.type,
            origin=artifact.origin,
            filename=artifact.filename,
            automatically_generated=artifact.automatically_generated,
        )
    )


async def upsert_schedule(session: AsyncSession, video_id: int, schedule: ScheduledVisibilityChange) -> None:
    row = (
        await session.execute(select(ScheduleVideoUpdate).where(ScheduleVideoUpdate.video_id == video_id))
    ).scalar_one_or_none()
    if row is None:
        session.add(ScheduleVideoUpdate(video_id=video_id, update_at=schedule.update_at, privacy=schedule.privacy))
        return
    row.update_at = schedule.update_at
    row.privacy = schedule.privacy


async def delete_schedule(session: AsyncSession, video_id: int) -> None:
    await session.execute(delete(ScheduleVideoUpdate).where(ScheduleVideoUpdate.video_id == video_id))


async def mark_channel_updated(session: AsyncSession, channel_id: int, now: datetime) -> None:
    channel = await session.get(VideoChannel, channel_id)
    if channel is not None:
        channel.updated_at = now


__all__ = [
    "DESCRIPTOR_COLUMNS",
    "video_row_from_descriptor",
    "apply_descriptor",
    "descriptor_from_row",
    "file_row_from_record",
    "file_record_from_row",
    "load_video_row",
    "load_video_descriptor",
    "normalise_tags",
    "set_video_tags",
    "add_thumbnail",
    "upsert_schedule",
    "delete_schedule",
    "mark_channel_updated",
]

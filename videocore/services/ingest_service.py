from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional
from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from videocore.core.background import BackgroundRunner
from videocore.core.config import Settings
from videocore.core.constants import DEFAULT_AUDIO_RESOLUTION
from videocore.core.db import run_transaction
from videocore.core.errors import VideoNotFoundError
from videocore.core.jobs import JobDispatcher, MergeAudioTranscodePayload, OptimizeTranscodePayload, TranscodePayload
from videocore.core.logging import get_logger
from videocore.core.storage import Storage
from videocore.db.models import (
    ScheduleVideoUpdate,
    Thumbnail,
    Video,
    VideoBlacklist,
    VideoCaption,
    VideoFile,
    VideoImport,
    VideoState,
    video_tags,
)
from videocore.domain.descriptors import (
    Requester,
    ScheduledVisibilityChange,
    ThumbnailArtifact,
    UploadedFile,
    VideoDescriptor,
    VideoFileRecord,
    VideoRef,
)
from videocore.ingest.artifacts import ArtifactPipeline, ThumbnailUploads
from videocore.ingest.filenames import normalise_extname
from videocore.schemas import ScheduleUpdate, VideoCreate, VideoUpdate

from .blacklist import AutoBlacklistPolicy
from .federation import Federation, FederationNotifier
from .records import (
    add_thumbnail,
    apply_descriptor,
    delete_schedule,
    file_row_from_record,
    load_video_descriptor,
    mark_channel_updated,
    set_video_tags,
    upsert_schedule,
    video_row_from_descriptor,
)
from .torrent_stage import TorrentStage
from .views import ViewAccumulator, ViewOutcome

# Fields a patch may clear with an explicit null.
NULLABLE_UPDATE_FIELDS = ("description", "support", "category", "licence", "language")
REQUIRED_UPDATE_FIELDS = ("name", "nsfw", "comments_enabled", "download_enabled", "wait_transcoding")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def schedule_from_request(schedule: Optional[ScheduleUpdate]) -> Optional[ScheduledVisibilityChange]:
    if schedule is None:
        return None
    return ScheduledVisibilityChange(update_at=schedule.update_at, privacy=schedule.privacy)


class IngestCoordinator:
    """Owns the transaction boundary for adding, updating and viewing videos."""

    def __init__(
        self,
        settings: Settings,
        storage: Storage,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        artifacts: ArtifactPipeline,
        torrent_stage: TorrentStage,
        federation_notifier: FederationNotifier,
        federation: Federation,
        dispatcher: JobDispatcher,
        views: ViewAccumulator,
        blacklist: AutoBlacklistPolicy,
        runner: BackgroundRunner,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.storage = storage
        self.session_factory = session_factory
        self.artifacts = artifacts
        self.torrent_stage = torrent_stage
        self.federation_notifier = federation_notifier
        self.federation = federation
        self.dispatcher = dispatcher
        self.views = views
        self.blacklist = blacklist
        self.runner = runner
        self.clock = clock
        self.logger = get_logger(component="ingest_coordinator")

    def build_local_descriptor(self, info: VideoCreate, channel_id: int) -> VideoDescriptor:
        video_uuid = str(uuid4())
        return VideoDescriptor(
            uuid=video_uuid,
            url=self.settings.local_video_url(video_uuid),
            name=info.name,
            channel_id=channel_id,
            privacy=info.privacy,
            state=VideoState.to_transcode if self.settings.transcoding_enabled else VideoState.published,
            description=info.description,
            support=info.support,
            category=info.category,
            licence=info.licence,
            language=info.language,
            nsfw=info.nsfw,
            comments_enabled=info.comments_enabled,
            download_enabled=info.download_enabled,
            wait_transcoding=info.wait_transcoding,
            originally_published_at=info.originally_published_at,
            published_at=self.clock(),
            schedule_update=schedule_from_request(info.schedule_update),
        )

    @staticmethod
    def build_transcode_payload(video: VideoDescriptor, file: VideoFileRecord) -> TranscodePayload:
        if file.is_audio():
            return MergeAudioTranscodePayload(video_uuid=video.uuid, resolution=DEFAULT_AUDIO_RESOLUTION)
        return OptimizeTranscodePayload(video_uuid=video.uuid, resolution=file.resolution)

    async def add_video(
        self,
        upload: UploadedFile,
        info: VideoCreate,
        channel_id: int,
        requester: Requester,
        thumbnails: Optional[ThumbnailUploads] = None,
    ) -> VideoRef:
        video = self.build_local_descriptor(info, channel_id)

        technical = await self.artifacts.compute_technical_metadata(upload.path)
        video.duration = technical.duration

        extname = normalise_extname(upload.filename)
        file = VideoFileRecord(
            extname=extname,
            size=upload.size,
            resolution=technical.resolution,
            fps=technical.fps,
            metadata=technical.metadata,
            filename=self.artifacts.generate_filename(video, technical.resolution, extname),
        )

        destination = self.storage.video_file_path(file.filename)
        await asyncio.to_thread(self.storage.move, upload.path, destination)
        # A retried request must find the file where the first attempt left it.
        upload.path = destination
        upload.filename = file.filename

        miniature, preview = await self.artifacts.build_thumbnails(
            video,
            thumbnails or ThumbnailUploads(),
            self.artifacts.from_media(destination, video.duration),
        )

        video_snapshot = video.snapshot()
        file_snapshot = file.snapshot()

        def restore() -> None:
            video.restore(video_snapshot)
            file.restore(file_snapshot)

        async def body(session: AsyncSession) -> None:
            row = video_row_from_descriptor(video)
            session.add(row)
            await session.flush()
            video.id = row.id

            await add_thumbnail(session, row.id, miniature)
            await add_thumbnail(session, row.id, preview)

            file.video_id = row.id
            file_row = file_row_from_record(file)
            session.add(file_row)
            await session.flush()
            file.id = file_row.id

            video.tags = await set_video_tags(session, row.id, info.tags)

            if video.schedule_update is not None:
                await upsert_schedule(session, row.id, video.schedule_update)

            await mark_channel_updated(session, channel_id, self.clock())
            await self.blacklist.apply(session, video, requester, is_remote=False, is_new=True)

        try:
            await run_transaction(
                self.session_factory, body, settings=self.settings, on_rollback=restore, name="add_video"
            )
        except Exception:
            self._discard_files(destination, miniature, preview)
            raise
        self.logger.info("video_created", video_uuid=video.uuid, name=video.name, state=video.state.name)

        self.runner.submit(
            self._torrent_then_federate(video.snapshot(), file.snapshot()),
            name="torrent_and_federate",
            video_uuid=video.uuid,
        )

        if video.state == VideoState.to_transcode:
            await self.dispatcher.enqueue(self.build_transcode_payload(video, file), wait=True)

        return VideoRef(id=video.id, uuid=video.uuid)

    def _discard_files(self, video_path: Path, *artifacts: Optional[ThumbnailArtifact]) -> None:
        """Remove what add_video put in storage for a video that was never committed."""
        paths = [video_path] + [artifact.path for artifact in artifacts if artifact is not None]
        for path in paths:
            self.storage.remove(path)
        self.logger.warning("video_files_discarded", paths=[str(path) for path in paths])

    async def _torrent_then_federate(self, video: VideoDescriptor, file: VideoFileRecord) -> None:
        try:
            await self.torrent_stage.create_torrent(video, file)
        except Exception:
            self.logger.exception("torrent_creation_failed", video_uuid=video.uuid)
        # Federation only starts once the torrent stage is over.
        await self.federation_notifier.notify_and_federate(video.id, is_new=True)

    async def add_video_resumable(
        self,
        upload: UploadedFile,
        channel_id: int,
        requester: Requester,
    ) -> VideoRef:
        """Finish a resumable upload: its form fields live in a metadata sidecar."""
        metadata = await asyncio.to_thread(self.storage.read_resumable_metadata, upload.path)
        await asyncio.to_thread(self.storage.delete_resumable_metadata, upload.path)

        previewfile = metadata.pop("previewfile", None)
        upload.filename = metadata.pop("filename", None) or upload.filename
        info = VideoCreate.model_validate(metadata)
        uploads = ThumbnailUploads(previewfile=Path(previewfile) if previewfile else None)
        return await self.add_video(upload, info, channel_id, requester, uploads)

    async def update_video(
        self,
        video: VideoDescriptor,
        patch: VideoUpdate,
        *,
        requester: Requester,
        channel_id: Optional[int] = None,
        thumbnails: Optional[ThumbnailUploads] = None,
    ) -> VideoDescriptor:
        """Apply ``patch`` to ``video`` and return it.

        ``video`` is mutated in place. When the update fails, every field is
        put back to what it was on entry before the error propagates.
        """
        snapshot = video.snapshot()
        was_confidential = video.is_confidential()
        had_privacy_for_federation = video.has_privacy_for_federation()

        miniature, preview = await self.artifacts.build_thumbnails(video, thumbnails or ThumbnailUploads(), None)

        is_new_video = False

        async def body(session: AsyncSession) -> None:
            nonlocal is_new_video
            is_new_video = False

            for field_name in REQUIRED_UPDATE_FIELDS:
                value = getattr(patch, field_name)
                if patch.is_set(field_name) and value is not None:
                    setattr(video, field_name, value)
            for field_name in NULLABLE_UPDATE_FIELDS:
                if patch.is_set(field_name):
                    setattr(video, field_name, getattr(patch, field_name))
            if patch.originally_published_at is not None:
                video.originally_published_at = patch.originally_published_at

            if patch.privacy is not None:
                is_new_video = video.is_new_video(patch.privacy)
                video.set_privacy(patch.privacy, now=self.clock())
                if had_privacy_for_federation and not video.has_privacy_for_federation():
                    await self.federation.retract(session, video)

            old_channel_id = video.channel_id
            channel_changed = channel_id is not None and channel_id != old_channel_id
            if channel_changed:
                video.channel_id = channel_id

            row = await session.get(Video, video.id)
            if row is None:
                raise VideoNotFoundError(f"video {video.uuid} does not exist")
            apply_descriptor(row, video)
            await session.flush()

            await add_thumbnail(session, video.id, miniature)
            await add_thumbnail(session, video.id, preview)

            if patch.is_set("tags"):
                video.tags = await set_video_tags(session, video.id, patch.tags)

            if channel_changed and had_privacy_for_federation:
                await self.federation.change_channel(session, video, old_channel_id)

            if patch.is_set("schedule_update"):
                if patch.schedule_update is not None:
                    video.schedule_update = schedule_from_request(patch.schedule_update)
                    await upsert_schedule(session, video.id, video.schedule_update)
                else:
                    video.schedule_update = None
                    await delete_schedule(session, video.id)

            await self.blacklist.apply(session, video, requester, is_remote=False, is_new=False)

        await run_transaction(
            self.session_factory,
            body,
            settings=self.settings,
            on_rollback=lambda: video.restore(snapshot),
            name="update_video",
        )
        self.logger.info("video_updated", video_uuid=video.uuid, is_new_video=is_new_video)

        self.runner.submit(
            self.federation_notifier.notify_and_federate(video.id, is_new=is_new_video, notify=was_confidential),
            name="federate_update",
            video_uuid=video.uuid,
        )
        return video

    async def view_video(self, video: VideoDescriptor, viewer_key: str) -> ViewOutcome:
        return await self.views.record(video, viewer_key)

    async def remove_video(self, video: VideoDescriptor) -> None:
        had_privacy_for_federation = video.has_privacy_for_federation()
        leftovers: List[Path] = []

        async def body(session: AsyncSession) -> None:
            leftovers.clear()
            files = (await session.execute(select(VideoFile).where(VideoFile.video_id == video.id))).scalars().all()
            for file in files:
                leftovers.append(self.storage.video_file_path(file.filename))
                if file.torrent_filename:
                    leftovers.append(self.storage.torrent_path(file.torrent_filename))
            thumbnail_names = (
                await session.execute(select(Thumbnail.filename).where(Thumbnail.video_id == video.id))
            ).scalars().all()
            leftovers.extend(self.storage.thumbnail_path(name) for name in thumbnail_names)
            caption_names = (
                await session.execute(select(VideoCaption.filename).where(VideoCaption.video_id == video.id))
            ).scalars().all()
            leftovers.extend(self.storage.caption_path(name) for name in caption_names)

            if had_privacy_for_federation:
                await self.federation.retract(session, video)

            for model in (VideoFile, Thumbnail, VideoCaption, ScheduleVideoUpdate, VideoBlacklist, VideoImport):
                await session.execute(delete(model).where(model.video_id == video.id))
            await session.execute(delete(video_tags).where(video_tags.c.video_id == video.id))
            result = await session.execute(delete(Video).where(Video.id == video.id))
            if result.rowcount == 0:
                raise VideoNotFoundError(f"video {video.uuid} does not exist")

        await run_transaction(self.session_factory, body, settings=self.settings, name="remove_video")
        for path in leftovers:
            await asyncio.to_thread(self.storage.remove, path)
        self.logger.info("video_removed", video_uuid=video.uuid)

    async def load_video(self, video_id: int) -> VideoDescriptor:
        async def body(session: AsyncSession) -> Optional[VideoDescriptor]:
            return await load_video_descriptor(session, video_id)

        video = await run_transaction(self.session_factory, body, settings=self.settings, name="load_video")
        if video is None:
            raise VideoNotFoundError(f"video {video_id} does not exist")
        return video

    async def get_video_file_metadata(self, file_id: int) -> dict:
        async def body(session: AsyncSession) -> Optional[VideoFile]:
            return await session.get(VideoFile, file_id)

        row = await run_transaction(self.session_factory, body, settings=self.settings, name="load_video_file")
        if row is None:
            raise VideoNotFoundError(f"video file {file_id} does not exist")
        return dict(row.metadata_json or {})


__all__ = ["IngestCoordinator", "utcnow", "schedule_from_request"]

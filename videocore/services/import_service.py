from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar, assert_never
from uuid import uuid4

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from videocore.core.config import Settings
from videocore.core.db import run_transaction
from videocore.core.errors import ExternalFetchError, IncorrectFilesInTorrentError, ValidationError
from videocore.core.jobs import (
    ImportPayload,
    JobDispatcher,
    JobHandle,
    MagnetImportPayload,
    RemoteUrlImportPayload,
    TorrentFileImportPayload,
)
from videocore.core.logging import get_logger
from videocore.core.storage import Storage
from videocore.db.models import VideoCaption, VideoImport, VideoImportState, VideoPrivacy, VideoState
from videocore.domain.descriptors import Requester, UploadedFile, VideoDescriptor
from videocore.domain.sources import ImportSource, MagnetSource, TargetUrlSource, TorrentFileSource
from videocore.ingest.artifacts import ArtifactPipeline, ThumbnailUploads
from videocore.ingest.extractor import ExtractedInfo, ExtractedSubtitle, MediaExtractor
from videocore.ingest.filenames import generate_caption_filename, secure_torrent_name
from videocore.ingest.torrents import decode_magnet_name, parse_torrent_file
from videocore.schemas import VideoImportCreate

from .blacklist import AutoBlacklistPolicy
from .ingest_service import utcnow
from .records import add_thumbnail, mark_channel_updated, set_video_tags, video_row_from_descriptor

DEFAULT_IMPORT_NAME = "Unknown name"
DEFAULT_REMOTE_EXT = "mp4"

T = TypeVar("T")


def first_set(*values: Optional[T], default: T) -> T:
    for value in values:
        if value is not None:
            return value
    return default


@dataclass(slots=True)
class ImportResult:
    video: VideoDescriptor
    video_import_id: int
    job: JobHandle


class ImportResolver:
    """Turns a torrent file, a magnet URI or a remote URL into a pending import."""

    def __init__(
        self,
        settings: Settings,
        storage: Storage,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        artifacts: ArtifactPipeline,
        extractor: MediaExtractor,
        dispatcher: JobDispatcher,
        blacklist: AutoBlacklistPolicy,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.storage = storage
        self.session_factory = session_factory
        self.artifacts = artifacts
        self.extractor = extractor
        self.dispatcher = dispatcher
        self.blacklist = blacklist
        self.clock = clock
        self.logger = get_logger(component="import_resolver")

    @staticmethod
    def select_source(request: VideoImportCreate, torrent_file: Optional[UploadedFile]) -> ImportSource:
        sources: List[ImportSource] = []
        if torrent_file is not None:
            sources.append(TorrentFileSource(path=torrent_file.path, original_name=torrent_file.filename))
        if request.magnet_uri:
            sources.append(MagnetSource(magnet_uri=request.magnet_uri))
        if request.target_url:
            sources.append(TargetUrlSource(target_url=request.target_url))
        if len(sources) != 1:
            raise ValidationError(
                "An import needs exactly one of a torrent file, a magnet URI or a target URL.",
                code="import_source_count",
            )
        return sources[0]

    async def resolve(
        self,
        request: VideoImportCreate,
        *,
        channel_id: int,
        requester: Requester,
        torrent_file: Optional[UploadedFile] = None,
        thumbnails: Optional[ThumbnailUploads] = None,
    ) -> ImportResult:
        uploads = thumbnails or ThumbnailUploads()
        source = self.select_source(request, torrent_file)

        extracted: Optional[ExtractedInfo] = None
        match source:
            case TorrentFileSource():
                source, working_name = await self._prepare_torrent(source, uploads)
            case MagnetSource(magnet_uri=magnet_uri):
                working_name = decode_magnet_name(magnet_uri)
            case TargetUrlSource(target_url=target_url):
                extracted = await self._fetch_remote_info(target_url)
                working_name = extracted.name
            case _:
                assert_never(source)

        video = self.build_descriptor(request, channel_id, working_name, extracted)

        fallback = None
        if isinstance(source, TargetUrlSource) and extracted is not None and extracted.thumbnail_url:
            fallback = self.artifacts.from_url(extracted.thumbnail_url)
        miniature, preview = await self.artifacts.build_thumbnails(video, uploads, fallback)

        tags = request.tags
        if tags is None and extracted is not None:
            tags = extracted.tags

        snapshot = video.snapshot()

        async def body(session: AsyncSession) -> int:
            row = video_row_from_descriptor(video)
            session.add(row)
            await session.flush()
            video.id = row.id

            await add_thumbnail(session, row.id, miniature)
            await add_thumbnail(session, row.id, preview)

            await self.blacklist.apply(session, video, requester, is_remote=False, is_new=True)
            video.tags = await set_video_tags(session, row.id, tags)

            video_import = VideoImport(
                video_id=row.id,
                user_id=requester.user_id,
                state=VideoImportState.pending,
                **self.import_attributes(source),
            )
            session.add(video_import)

            if self.settings.mark_channel_updated_on_import:
                await mark_channel_updated(session, channel_id, self.clock())

            await session.flush()
            return video_import.id

        video_import_id = await run_transaction(
            self.session_factory,
            body,
            settings=self.settings,
            on_rollback=lambda: video.restore(snapshot),
            name="create_import",
        )
        self.logger.info("video_import_created", video_uuid=video.uuid, video_import_id=video_import_id)

        if isinstance(source, TargetUrlSource):
            await self._import_subtitles(video, source.target_url)

        job = await self.dispatcher.enqueue(self.build_payload(source, video_import_id, extracted), wait=True)
        return ImportResult(video=video, video_import_id=video_import_id, job=job)

    def build_descriptor(
        self,
        request: VideoImportCreate,
        channel_id: int,
        working_name: Optional[str],
        extracted: Optional[ExtractedInfo],
    ) -> VideoDescriptor:
        info = extracted or ExtractedInfo()
        video_uuid = str(uuid4())
        return VideoDescriptor(
            uuid=video_uuid,
            url=self.settings.local_video_url(video_uuid),
            name=first_set(request.name, working_name, default=DEFAULT_IMPORT_NAME),
            channel_id=channel_id,
            privacy=first_set(request.privacy, default=VideoPrivacy.private),
            state=VideoState.to_import,
            remote=False,
            description=first_set(request.description, info.description, default=None),
            support=request.support,
            category=first_set(request.category, info.category, default=None),
            licence=first_set(request.licence, info.licence, default=None),
            language=first_set(request.language, info.language, default=None),
            nsfw=first_set(request.nsfw, info.nsfw, default=False),
            comments_enabled=first_set(request.comments_enabled, default=True),
            download_enabled=first_set(request.download_enabled, default=True),
            wait_transcoding=first_set(request.wait_transcoding, default=False),
            duration=0,
            originally_published_at=first_set(
                request.originally_published_at, info.originally_published_at, default=None
            ),
            published_at=self.clock(),
        )

    @staticmethod
    def import_attributes(source: ImportSource) -> Dict[str, Any]:
        match source:
            case TorrentFileSource(original_name=original_name):
                return {"torrent_name": original_name}
            case MagnetSource(magnet_uri=magnet_uri):
                return {"magnet_uri": magnet_uri}
            case TargetUrlSource(target_url=target_url):
                return {"target_url": target_url}
            case _:
                assert_never(source)

    @staticmethod
    def build_payload(source: ImportSource, video_import_id: int, extracted: Optional[ExtractedInfo]) -> ImportPayload:
        match source:
            case TorrentFileSource(original_name=original_name):
                return TorrentFileImportPayload(video_import_id=video_import_id, torrent_name=original_name)
            case MagnetSource(magnet_uri=magnet_uri):
                return MagnetImportPayload(video_import_id=video_import_id, magnet_uri=magnet_uri)
            case TargetUrlSource():
                ext = (extracted.ext if extracted else None) or DEFAULT_REMOTE_EXT
                return RemoteUrlImportPayload(video_import_id=video_import_id, file_ext=f".{ext.lstrip('.')}")
            case _:
                assert_never(source)

    async def _prepare_torrent(
        self, source: TorrentFileSource, uploads: ThumbnailUploads
    ) -> Tuple[TorrentFileSource, Optional[str]]:
        destination = self.storage.torrent_path(secure_torrent_name(source.original_name))
        await asyncio.to_thread(self.storage.move, source.path, destination)
        moved = TorrentFileSource(path=destination, original_name=source.original_name)

        try:
            parsed = await asyncio.to_thread(parse_torrent_file, destination)
        except ValidationError:
            self._clean_up_request_files(destination, uploads)
            raise

        if parsed.file_count != 1:
            self._clean_up_request_files(destination, uploads)
            raise IncorrectFilesInTorrentError("Torrents with only 1 file are supported.")
        return moved, parsed.name

    def _clean_up_request_files(self, torrent_path: Path, uploads: ThumbnailUploads) -> None:
        self.storage.remove(torrent_path)
        for path in (uploads.thumbnailfile, uploads.previewfile):
            if path is not None:
                self.storage.remove(path)

    async def _fetch_remote_info(self, target_url: str) -> ExtractedInfo:
        try:
            return await asyncio.to_thread(self.extractor.get_info, target_url)
        except ExternalFetchError:
            self.logger.info("remote_info_unavailable", target_url=target_url)
            raise

    async def _import_subtitles(self, video: VideoDescriptor, target_url: str) -> int:
        try:
            subtitles = await asyncio.to_thread(self.extractor.get_subtitles, target_url, self.storage.tmp_path(""))
        except Exception as exc:
            self.logger.warning("subtitles_unavailable", target_url=target_url, error=str(exc))
            return 0

        self.logger.info("subtitles_found", target_url=target_url, count=len(subtitles))
        imported = 0
        for subtitle in subtitles:
            try:
                await self._import_subtitle(video, subtitle)
            except Exception as exc:
                self.logger.warning(
                    "subtitle_import_failed",
                    video_uuid=video.uuid,
                    language=subtitle.language,
                    error=str(exc),
                )
                continue
            imported += 1
        return imported

    async def _import_subtitle(self, video: VideoDescriptor, subtitle: ExtractedSubtitle) -> None:
        filename = generate_caption_filename(subtitle.language)
        await asyncio.to_thread(self.storage.move, subtitle.path, self.storage.caption_path(filename))

        async def body(session: AsyncSession) -> None:
            await session.execute(
                delete(VideoCaption).where(
                    VideoCaption.video_id == video.id,
                    VideoCaption.language == subtitle.language,
                )
            )
            session.add(VideoCaption(video_id=video.id, language=subtitle.language, filename=filename))

        await run_transaction(self.session_factory, body, settings=self.settings, name="insert_caption")


__all__ = ["ImportResolver", "ImportResult", "first_set"]

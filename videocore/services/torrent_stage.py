from __future__ import annotations

import asyncio
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from videocore.core.config import Settings
from videocore.core.db import run_transaction
from videocore.core.logging import get_logger
from videocore.core.storage import Storage
from videocore.db.models import VideoFile
from videocore.domain.descriptors import VideoDescriptor, VideoFileRecord
from videocore.ingest.filenames import generate_torrent_filename
from videocore.ingest.torrents import TorrentBuilder

from .records import file_record_from_row


class TorrentStage:
    def __init__(
        self,
        settings: Settings,
        storage: Storage,
        session_factory: async_sessionmaker[AsyncSession],
        builder: TorrentBuilder,
    ):
        self.settings = settings
        self.storage = storage
        self.session_factory = session_factory
        self.builder = builder
        self.logger = get_logger(component="torrent_stage")

    def webseed_url(self, file: VideoFileRecord) -> str:
        return f"{self.settings.webserver_url.rstrip('/')}/static/webseed/{file.filename}"

    async def create_torrent(self, video: VideoDescriptor, file: VideoFileRecord) -> Optional[VideoFileRecord]:
        """Build the torrent for ``file`` and store its info hash.

        The file row is reloaded after the (slow) build. When it has been
        deleted meanwhile, the new torrent is discarded and ``None`` returned.
        """
        torrent_filename = generate_torrent_filename(video.uuid, file.resolution)
        destination = self.storage.torrent_path(torrent_filename)
        info_hash = await asyncio.to_thread(
            self.builder.build,
            source=self.storage.video_file_path(file.filename),
            destination=destination,
            name=f"{video.name} {file.resolution}p{file.extname}",
            comment=video.url,
            webseed=self.webseed_url(file),
        )

        async def attach(session: AsyncSession) -> Optional[VideoFileRecord]:
            row = await session.get(VideoFile, file.id)
            if row is None:
                return None
            row.info_hash = info_hash
            row.torrent_filename = torrent_filename
            await session.flush()
            return file_record_from_row(row)

        updated = await run_transaction(self.session_factory, attach, settings=self.settings, name="attach_torrent")
        if updated is None:
            self.storage.remove(destination)
            self.logger.info("torrent_discarded", video_uuid=video.uuid, file_id=file.id)
            return None

        self.logger.info("torrent_created", video_uuid=video.uuid, file_id=file.id, info_hash=info_hash)
        return updated


__all__ = ["TorrentStage"]

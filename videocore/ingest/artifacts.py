from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional, Tuple

from videocore.core.config import Settings
from videocore.core.constants import THUMBNAIL_SIZES
from videocore.core.errors import ValidationError
from videocore.core.logging import get_logger
from videocore.core.storage import Storage
from videocore.db.models import ThumbnailOrigin, ThumbnailType
from videocore.domain.descriptors import TechnicalMetadata, ThumbnailArtifact, VideoDescriptor

from .filenames import generate_image_filename, generate_video_filename
from .probe import MediaProbe, probe_media
from .thumbnails import fetch_from_url, generate_from_media, process_image

__all__ = ["ThumbnailUploads", "ThumbnailFallback", "ArtifactPipeline"]

ThumbnailFallback = Callable[[ThumbnailType], Awaitable[Optional[ThumbnailArtifact]]]


@dataclass(slots=True)
class ThumbnailUploads:
    thumbnailfile: Optional[Path] = None
    previewfile: Optional[Path] = None

    def for_type(self, thumbnail_type: ThumbnailType) -> Optional[Path]:
        if thumbnail_type == ThumbnailType.miniature:
            return self.thumbnailfile
        return self.previewfile


class ArtifactPipeline:
    """Derives technical metadata and miniature/preview images before commit."""

    def __init__(
        self,
        settings: Settings,
        storage: Storage,
        *,
        probe: MediaProbe = probe_media,
        frame_grabber: Callable[..., Path] = generate_from_media,
        image_fetcher: Callable[..., Path] = fetch_from_url,
    ):
        self.settings = settings
        self.storage = storage
        self.probe = probe
        self.frame_grabber = frame_grabber
        self.image_fetcher = image_fetcher
        self.logger = get_logger(component="artifact_pipeline")

    async def compute_technical_metadata(self, path: Path) -> TechnicalMetadata:
        return await asyncio.to_thread(self.probe, path)

    @staticmethod
    def generate_filename(video: VideoDescriptor, resolution: int, extname: str) -> str:
        return generate_video_filename(video.uuid, resolution, extname)

    async def build_thumbnails(
        self,
        video: VideoDescriptor,
        uploads: ThumbnailUploads,
        fallback: Optional[ThumbnailFallback] = None,
    ) -> Tuple[Optional[ThumbnailArtifact], Optional[ThumbnailArtifact]]:
        """Return ``(miniature, preview)``.

        Each slot prefers the uploaded image. Without one the fallback runs;
        a failing fallback leaves the slot empty.
        """
        results = []
        for thumbnail_type in (ThumbnailType.miniature, ThumbnailType.preview):
            uploaded = uploads.for_type(thumbnail_type)
            if uploaded is not None:
                results.append(await self.from_upload(uploaded, thumbnail_type))
                continue
            if fallback is None:
                results.append(None)
                continue
            try:
                results.append(await fallback(thumbnail_type))
            except Exception as exc:
                self.logger.warning(
                    "thumbnail_fallback_failed",
                    video_uuid=video.uuid,
                    thumbnail_type=thumbnail_type.name,
                    error=str(exc),
                )
                results.append(None)
        return results[0], results[1]

    async def from_upload(self, source: Path, thumbnail_type: ThumbnailType) -> ThumbnailArtifact:
        filename = generate_image_filename()
        destination = self.storage.thumbnail_path(filename)
        try:
            await asyncio.to_thread(process_image, source, destination, THUMBNAIL_SIZES[thumbnail_type])
        except RuntimeError as exc:
            raise ValidationError(str(exc), code="invalid_thumbnail_file") from exc
        return ThumbnailArtifact(
            type=thumbnail_type,
            origin=ThumbnailOrigin.uploaded,
            filename=filename,
            path=destination,
            automatically_generated=False,
        )

    def from_media(self, video_path: Path, duration: int) -> ThumbnailFallback:
        async def generate(thumbnail_type: ThumbnailType) -> ThumbnailArtifact:
            filename = generate_image_filename()
            destination = self.storage.thumbnail_path(filename)
            await asyncio.to_thread(
                self.frame_grabber,
                video_path,
                destination,
                THUMBNAIL_SIZES[thumbnail_type],
                timestamp_s=duration / 2.0,
                tmp_dir=self.storage.tmp_path(""),
            )
            return ThumbnailArtifact(
                type=thumbnail_type,
                origin=ThumbnailOrigin.generated,
                filename=filename,
                path=destination,
                automatically_generated=True,
            )

        return generate

    def from_url(self, url: str) -> ThumbnailFallback:
        async def fetch(thumbnail_type: ThumbnailType) -> ThumbnailArtifact:
            filename = generate_image_filename()
            destination = self.storage.thumbnail_path(filename)
            await asyncio.to_thread(
                self.image_fetcher,
                url,
                destination,
                THUMBNAIL_SIZES[thumbnail_type],
                tmp_dir=self.storage.tmp_path(""),
                timeout_s=self.settings.thumbnail_fetch_timeout_s,
            )
            return ThumbnailArtifact(
                type=thumbnail_type,
                origin=ThumbnailOrigin.fetched,
                filename=filename,
                path=destination,
                automatically_generated=True,
            )

        return fetch

"""Domain value objects shared by the coordinator, the resolver and the workers."""

from videocore.domain.descriptors import (
    CONFIDENTIAL_PRIVACIES,
    FEDERATION_PRIVACIES,
    Requester,
    ScheduledVisibilityChange,
    Snapshottable,
    TechnicalMetadata,
    ThumbnailArtifact,
    UploadedFile,
    VideoDescriptor,
    VideoFileRecord,
    VideoRef,
)
from videocore.domain.sources import ImportSource, MagnetSource, TargetUrlSource, TorrentFileSource

__all__ = [
    "CONFIDENTIAL_PRIVACIES",
    "FEDERATION_PRIVACIES",
    "Requester",
    "ScheduledVisibilityChange",
    "Snapshottable",
    "TechnicalMetadata",
    "ThumbnailArtifact",
    "UploadedFile",
    "VideoDescriptor",
    "VideoFileRecord",
    "VideoRef",
    "ImportSource",
    "MagnetSource",
    "TargetUrlSource",
    "TorrentFileSource",
]

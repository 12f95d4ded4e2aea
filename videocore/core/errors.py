"""Error taxonomy shared by the ingestion operations.

Every error carries a stable ``code`` so callers (CLI, workers, an HTTP layer)
can map failures without parsing messages.
"""

from __future__ import annotations


class VideoCoreError(Exception):
    code = "internal_error"

    def __init__(self, message: str | None = None, *, code: str | None = None):
        if code is not None:
            self.code = code
        super().__init__(message or self.code)


class ValidationError(VideoCoreError):
    """Malformed or contradictory input. Raised before any side effect."""

    code = "validation_error"


class IncorrectFilesInTorrentError(ValidationError):
    code = "incorrect_files_in_torrent"


class MediaProbeError(ValidationError):
    code = "media_probe_failed"


class TransientPersistenceError(VideoCoreError):
    """A conflicting transaction that kept failing after the bounded retries."""

    code = "transaction_conflict"


class ExternalFetchError(VideoCoreError):
    code = "cannot_fetch_remote_information"


class VideoNotFoundError(VideoCoreError, LookupError):
    code = "video_not_found"


class UnhandledJobError(VideoCoreError):
    """A job type with neither a registered handler nor a configured consumer."""

    code = "job_without_handler"


class DetachedChainError(VideoCoreError):
    """Failure of a post-commit chain. Logged and recorded, never raised to callers."""

    code = "detached_chain_failed"

    def __init__(self, chain: str, cause: BaseException):
        self.chain = chain
        self.cause = cause
        super().__init__(f"{chain}: {cause!r}")


__all__ = [
    "VideoCoreError",
    "ValidationError",
    "IncorrectFilesInTorrentError",
    "MediaProbeError",
    "TransientPersistenceError",
    "ExternalFetchError",
    "VideoNotFoundError",
    "UnhandledJobError",
    "DetachedChainError",
]

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Annotated, Callable, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, Field, TypeAdapter
from redis import Redis
from rq import Queue, Retry

from .background import BackgroundRunner
from .config import Settings
from .logging import get_logger

RQ_QUEUE_NAME = "videocore-jobs"


class OptimizeTranscodePayload(BaseModel):
    type: Literal["optimize"] = "optimize"
    video_uuid: str
    resolution: int
    is_new_video: bool = True


class MergeAudioTranscodePayload(BaseModel):
    type: Literal["merge-audio"] = "merge-audio"
    video_uuid: str
    resolution: int
    is_new_video: bool = True


class TorrentFileImportPayload(BaseModel):
    type: Literal["torrent-file"] = "torrent-file"
    video_import_id: int
    torrent_name: str


class MagnetImportPayload(BaseModel):
    type: Literal["magnet-uri"] = "magnet-uri"
    video_import_id: int
    magnet_uri: str


class RemoteUrlImportPayload(BaseModel):
    type: Literal["remote-url"] = "remote-url"
    video_import_id: int
    file_ext: str


TranscodePayload = Union[OptimizeTranscodePayload, MergeAudioTranscodePayload]
ImportPayload = Union[TorrentFileImportPayload, MagnetImportPayload, RemoteUrlImportPayload]
JobPayload = Annotated[Union[TranscodePayload, ImportPayload], Field(discriminator="type")]

_payload_adapter: TypeAdapter[JobPayload] = TypeAdapter(JobPayload)


def parse_job_payload(raw: str) -> JobPayload:
    return _payload_adapter.validate_json(raw)


@dataclass(slots=True, frozen=True)
class JobHandle:
    job_id: str
    job_type: str
    acknowledged: bool


class BaseJobBackend(ABC):
    @abstractmethod
    async def enqueue(self, job_id: str, payload: JobPayload) -> None: ...


class ImmediateJobBackend(BaseJobBackend):
    async def enqueue(self, job_id: str, payload: JobPayload) -> None:
        from videocore.workers.tasks import run_job

        await asyncio.to_thread(run_job, payload.model_dump_json())


class RQJobBackend(BaseJobBackend):
    def __init__(self, queue: Queue, settings: Settings):
        self.queue = queue
        self.settings = settings

    def _retry(self) -> Retry | None:
        if self.settings.job_max_retries <= 0:
            return None
        delay = self.settings.job_retry_initial_delay_s
        intervals = []
        for _ in range(self.settings.job_max_retries):
            intervals.append(int(round(delay)))
            delay *= self.settings.job_retry_backoff_base
        return Retry(max=self.settings.job_max_retries, interval=intervals)

    def job_target(self, payload: JobPayload) -> Union[str, Callable[[str], None]]:
        """The configured consumer path, or the local worker entry point."""
        consumer = self.settings.job_consumers.get(payload.type)
        if consumer:
            return consumer
        from videocore.workers.tasks import run_job

        return run_job

    async def enqueue(self, job_id: str, payload: JobPayload) -> None:  # pragma: no cover - requires redis
        await asyncio.to_thread(
            self.queue.enqueue,
            self.job_target(payload),
            payload.model_dump_json(),
            job_id=job_id,
            retry=self._retry(),
        )


def get_job_backend(settings: Settings) -> BaseJobBackend:
    backend = settings.normalized_job_backend
    if backend == "immediate":
        return ImmediateJobBackend()
    if backend == "rq":  # pragma: no cover - requires redis
        connection = Redis.from_url(settings.redis_url)
        return RQJobBackend(Queue(RQ_QUEUE_NAME, connection=connection), settings)
    raise ValueError(f"Unsupported job backend: {settings.job_queue_backend}")


class JobDispatcher:
    """Hands job payloads to the queue backend.

    ``wait=True`` returns only once the backend acknowledged the job; errors
    propagate to the caller. ``wait=False`` hands off through the background
    runner and never raises.
    """

    def __init__(self, backend: BaseJobBackend, runner: BackgroundRunner):
        self.backend = backend
        self.runner = runner
        self.logger = get_logger(component="job_dispatcher")

    async def enqueue(self, payload: JobPayload, *, wait: bool = True) -> JobHandle:
        job_id = uuid4().hex
        if wait:
            await self.backend.enqueue(job_id, payload)
            self.logger.info("job_enqueued", job_id=job_id, job_type=payload.type)
            return JobHandle(job_id=job_id, job_type=payload.type, acknowledged=True)

        self.runner.submit(
            self.backend.enqueue(job_id, payload),
            name=f"enqueue:{payload.type}",
            job_id=job_id,
        )
        return JobHandle(job_id=job_id, job_type=payload.type, acknowledged=False)


__all__ = [
    "OptimizeTranscodePayload",
    "MergeAudioTranscodePayload",
    "TorrentFileImportPayload",
    "MagnetImportPayload",
    "RemoteUrlImportPayload",
    "TranscodePayload",
    "ImportPayload",
    "JobPayload",
    "parse_job_payload",
    "JobHandle",
    "BaseJobBackend",
    "ImmediateJobBackend",
    "RQJobBackend",
    "get_job_backend",
    "JobDispatcher",
]

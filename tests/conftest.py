import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from videocore.bootstrap import Services, create_services
from videocore.core.config import Settings, get_settings
from videocore.core.db import Base, create_engine, lifespan
from videocore.core.jobs import BaseJobBackend
from videocore.core.storage import LocalStorage
from videocore.db.models import VideoChannel
from videocore.domain.descriptors import TechnicalMetadata, UploadedFile, VideoDescriptor
from videocore.ingest.artifacts import ArtifactPipeline
from videocore.ingest.extractor import ExtractedInfo, ExtractedSubtitle
from videocore.services.blacklist import AutoBlacklistPolicy
from videocore.services.views import InMemoryLiveViewAggregator, MemoryViewStore


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "no_default_env: disable the default videocore environment bootstrap fixture",
    )


@pytest.fixture(autouse=True)
def configure_environment(request, monkeypatch, tmp_path):
    if request.node.get_closest_marker("no_default_env"):
        get_settings.cache_clear()
        yield None
        get_settings.cache_clear()
        return

    db_path = tmp_path / "videocore_test.db"
    monkeypatch.setenv("VIDEOCORE_ENV", "test")
    monkeypatch.setenv("VIDEOCORE_LOG_LEVEL", "debug")
    monkeypatch.setenv("VIDEOCORE_DB_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("VIDEOCORE_STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("VIDEOCORE_WEBSERVER_URL", "https://videos.example.test")
    monkeypatch.setenv("VIDEOCORE_JOB_BACKEND", "inline")
    monkeypatch.setenv("VIDEOCORE_TRANSACTION_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("VIDEOCORE_TRANSACTION_RETRY_DELAY_S", "0")

    get_settings.cache_clear()
    settings = get_settings()

    async def _setup() -> None:
        engine = create_engine(settings)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()

    asyncio.run(_setup())

    yield settings

    get_settings.cache_clear()


def video_technical(resolution: int = 720, fps: Optional[float] = 30.0, duration: int = 12) -> TechnicalMetadata:
    return TechnicalMetadata(
        audio_only=fps is None,
        resolution=resolution,
        fps=fps,
        duration=duration,
        metadata={"format": {"format_name": "mp4"}, "streams": []},
    )


class FakeProbe:
    def __init__(self, technical: Optional[TechnicalMetadata] = None):
        self.technical = technical or video_technical()
        self.calls: List[Path] = []

    def __call__(self, path: Path) -> TechnicalMetadata:
        self.calls.append(path)
        return self.technical


class RecordingFrameGrabber:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[Path] = []

    def __call__(self, video_path, destination, size, *, timestamp_s, tmp_dir):
        self.calls.append(video_path)
        if self.fail:
            raise RuntimeError("ffmpeg could not grab a frame")
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(b"jpeg")
        return destination


class RecordingImageFetcher:
    def __init__(self, fail_with: Optional[Exception] = None):
        self.fail_with = fail_with
        self.urls: List[str] = []

    def __call__(self, url, destination, size, *, tmp_dir, timeout_s):
        self.urls.append(url)
        if self.fail_with is not None:
            raise self.fail_with
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(b"jpeg")
        return destination


class RecordingJobBackend(BaseJobBackend):
    def __init__(self) -> None:
        self.jobs: List[Any] = []

    async def enqueue(self, job_id: str, payload) -> None:
        self.jobs.append(payload)


class RecordingTorrentBuilder:
    def __init__(self, timeline: List[str], info_hash: str = "0123456789abcdef0123456789abcdef01234567"):
        self.timeline = timeline
        self.info_hash = info_hash
        self.calls: List[dict] = []

    def build(self, *, source, destination, name, comment, webseed) -> str:
        self.calls.append({"source": source, "destination": destination, "name": name, "webseed": webseed})
        self.timeline.append("torrent")
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(b"d8:announce0:e")
        return self.info_hash


class RecordingFederation:
    def __init__(self, timeline: List[str]) -> None:
        self.timeline = timeline
        self.calls: List[tuple] = []

    async def propagate(self, session: AsyncSession, video: VideoDescriptor, *, is_new: bool) -> None:
        self.calls.append(("propagate", video.uuid, is_new))
        self.timeline.append("propagate")

    async def retract(self, session: AsyncSession, video: VideoDescriptor) -> None:
        self.calls.append(("retract", video.uuid, session.in_transaction()))

    async def change_channel(self, session: AsyncSession, video: VideoDescriptor, old_channel_id: int) -> None:
        self.calls.append(("change_channel", video.uuid, old_channel_id))

    async def send_view(self, session: AsyncSession, video: VideoDescriptor) -> None:
        self.calls.append(("send_view", video.uuid))

    def names(self) -> List[str]:
        return [call[0] for call in self.calls]


class RecordingNotifier:
    def __init__(self) -> None:
        self.events: List[tuple] = []

    async def notify(self, event: str, video: VideoDescriptor) -> None:
        self.events.append((event, video.uuid))


class FakeExtractor:
    def __init__(
        self,
        info: Optional[ExtractedInfo] = None,
        *,
        error: Optional[Exception] = None,
        subtitles: Optional[List[ExtractedSubtitle]] = None,
        subtitles_error: Optional[Exception] = None,
    ):
        self.info = info or ExtractedInfo(name="Remote clip")
        self.error = error
        self.subtitles = subtitles or []
        self.subtitles_error = subtitles_error
        self.info_calls: List[str] = []

    def get_info(self, url: str) -> ExtractedInfo:
        self.info_calls.append(url)
        if self.error is not None:
            raise self.error
        return self.info

    def get_subtitles(self, url: str, dest_dir: Path) -> List[ExtractedSubtitle]:
        if self.subtitles_error is not None:
            raise self.subtitles_error
        return self.subtitles


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FlakyBlacklistPolicy(AutoBlacklistPolicy):
    """Raises a transient database error on the first ``failures`` calls."""

    def __init__(self, settings: Settings, *, failures: int, transient: bool = True):
        super().__init__(settings)
        self.remaining = failures
        self.transient = transient
        self.calls = 0

    async def apply(self, session, video, requester, *, is_remote, is_new):
        self.calls += 1
        if self.remaining > 0:
            self.remaining -= 1
            if self.transient:
                raise OperationalError("UPDATE videos", {}, Exception("database is locked"))
            raise RuntimeError("blacklist backend exploded")
        return await super().apply(session, video, requester, is_remote=is_remote, is_new=is_new)


@dataclass
class Harness:
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    services: Services
    storage: LocalStorage
    probe: FakeProbe
    frame_grabber: RecordingFrameGrabber
    image_fetcher: RecordingImageFetcher
    jobs: RecordingJobBackend
    torrent_builder: RecordingTorrentBuilder
    extractor: FakeExtractor
    federation: RecordingFederation
    notifier: RecordingNotifier
    view_store: MemoryViewStore
    live: InMemoryLiveViewAggregator
    clock: FakeClock
    timeline: List[str]
    uploads_dir: Path = field(default=Path("."))

    @property
    def coordinator(self):
        return self.services.coordinator

    @property
    def resolver(self):
        return self.services.resolver

    async def create_channel(self, name: str = "main") -> int:
        async with self.session_factory() as session:
            async with session.begin():
                channel = VideoChannel(name=name)
                session.add(channel)
                await session.flush()
                return channel.id

    async def count(self, model) -> int:
        async with self.session_factory() as session:
            return (await session.execute(select(func.count()).select_from(model))).scalar_one()

    async def rows(self, model) -> list:
        async with self.session_factory() as session:
            return list((await session.execute(select(model))).scalars().all())

    def upload(self, filename: str = "clip.mp4", content: bytes = b"\x00" * 64) -> UploadedFile:
        path = self.uploads_dir / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return UploadedFile(path=path, filename=filename, size=len(content))


@pytest.fixture()
def run_scenario(configure_environment, tmp_path):
    """Run an async scenario against a fully wired set of services with fakes."""

    def run(
        scenario: Callable[[Harness], Awaitable[Any]],
        *,
        settings_update: Optional[dict] = None,
        probe: Optional[FakeProbe] = None,
        frame_grabber: Optional[RecordingFrameGrabber] = None,
        image_fetcher: Optional[RecordingImageFetcher] = None,
        extractor: Optional[FakeExtractor] = None,
    ) -> Any:
        settings = configure_environment
        if settings_update:
            settings = settings.model_copy(update=settings_update)

        async def main() -> Any:
            async with lifespan(settings) as state:
                storage = LocalStorage(Path(settings.storage_root))
                harness_probe = probe or FakeProbe()
                grabber = frame_grabber or RecordingFrameGrabber()
                fetcher = image_fetcher or RecordingImageFetcher()
                timeline: List[str] = []
                jobs = RecordingJobBackend()
                builder = RecordingTorrentBuilder(timeline)
                fake_extractor = extractor or FakeExtractor()
                federation = RecordingFederation(timeline)
                notifier = RecordingNotifier()
                clock = FakeClock()
                view_store = MemoryViewStore(clock=clock)
                live = InMemoryLiveViewAggregator()
                artifacts = ArtifactPipeline(
                    settings,
                    storage,
                    probe=harness_probe,
                    frame_grabber=grabber,
                    image_fetcher=fetcher,
                )
                services = create_services(
                    settings,
                    state["session_factory"],
                    storage=storage,
                    artifacts=artifacts,
                    job_backend=jobs,
                    torrent_builder=builder,
                    extractor=fake_extractor,
                    federation=federation,
                    notifier=notifier,
                    view_store=view_store,
                    live_aggregator=live,
                )
                harness = Harness(
                    settings=settings,
                    session_factory=state["session_factory"],
                    services=services,
                    storage=storage,
                    probe=harness_probe,
                    frame_grabber=grabber,
                    image_fetcher=fetcher,
                    jobs=jobs,
                    torrent_builder=builder,
                    extractor=fake_extractor,
                    federation=federation,
                    notifier=notifier,
                    view_store=view_store,
                    live=live,
                    clock=clock,
                    timeline=timeline,
                    uploads_dir=tmp_path / "uploads",
                )
                try:
                    return await scenario(harness)
                finally:
                    await services.runner.drain()

        return asyncio.run(main())

    return run

from __future__ import annotations

import enum
import time
from collections import Counter
from typing import Callable, Dict, Protocol, Tuple

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from videocore.core.config import Settings
from videocore.core.db import run_transaction
from videocore.core.logging import get_logger
from videocore.domain.descriptors import VideoDescriptor

from .federation import Federation


class ViewOutcome(str, enum.Enum):
    recorded = "recorded"
    already_recorded = "already_recorded"


class ViewStore(Protocol):
    async def is_view_recorded(self, viewer_key: str, video_uuid: str) -> bool: ...

    async def record_view(self, viewer_key: str, video_uuid: str, expiry_s: int) -> None: ...

    async def add_video_view(self, video_id: int) -> int: ...


class LiveViewAggregator(Protocol):
    async def add_view_to(self, video_id: int) -> None: ...


class MemoryViewStore:
    """Process-local view store, suitable for a single worker and for tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._seen: Dict[Tuple[str, str], float] = {}
        self.counters: Counter[int] = Counter()

    async def is_view_recorded(self, viewer_key: str, video_uuid: str) -> bool:
        expires_at = self._seen.get((viewer_key, video_uuid))
        if expires_at is None:
            return False
        if expires_at <= self.clock():
            del self._seen[(viewer_key, video_uuid)]
            return False
        return True

    async def record_view(self, viewer_key: str, video_uuid: str, expiry_s: int) -> None:
        self._seen[(viewer_key, video_uuid)] = self.clock() + expiry_s

    async def add_video_view(self, video_id: int) -> int:
        self.counters[video_id] += 1
        return self.counters[video_id]


class RedisViewStore:
    def __init__(self, client: Redis, prefix: str = "videocore"):
        self.client = client
        self.prefix = prefix

    def _view_key(self, viewer_key: str, video_uuid: str) -> str:
        return f"{self.prefix}:view:{viewer_key}:{video_uuid}"

    async def is_view_recorded(self, viewer_key: str, video_uuid: str) -> bool:  # pragma: no cover - requires redis
        return bool(await self.client.exists(self._view_key(viewer_key, video_uuid)))

    async def record_view(self, viewer_key: str, video_uuid: str, expiry_s: int) -> None:  # pragma: no cover
        await self.client.set(self._view_key(viewer_key, video_uuid), "1", ex=expiry_s)

    async def add_video_view(self, video_id: int) -> int:  # pragma: no cover - requires redis
        return int(await self.client.incr(f"{self.prefix}:video-views:{video_id}"))


class InMemoryLiveViewAggregator:
    """Collects live views; a live manager drains them on its own schedule."""

    def __init__(self) -> None:
        self.counts: Counter[int] = Counter()

    async def add_view_to(self, video_id: int) -> None:
        self.counts[video_id] += 1

    def drain(self) -> Dict[int, int]:
        counts = dict(self.counts)
        self.counts.clear()
        return counts


def get_view_store(settings: Settings) -> ViewStore:
    if settings.view_store_backend == "redis":  # pragma: no cover - requires redis
        return RedisViewStore(Redis.from_url(settings.redis_url))
    return MemoryViewStore()


class ViewAccumulator:
    def __init__(
        self,
        settings: Settings,
        view_store: ViewStore,
        live_aggregator: LiveViewAggregator,
        session_factory: async_sessionmaker[AsyncSession],
        federation: Federation,
    ):
        self.settings = settings
        self.view_store = view_store
        self.live_aggregator = live_aggregator
        self.session_factory = session_factory
        self.federation = federation
        self.logger = get_logger(component="view_accumulator")

    async def record(self, video: VideoDescriptor, viewer_key: str) -> ViewOutcome:
        # Check and set are separate calls; a concurrent duplicate may count once more.
        if await self.view_store.is_view_recorded(viewer_key, video.uuid):
            self.logger.debug("view_already_recorded", video_uuid=video.uuid)
            return ViewOutcome.already_recorded

        expiry = self.settings.live_view_expiry_seconds if video.is_live else self.settings.view_expiry_seconds
        await self.view_store.record_view(viewer_key, video.uuid, expiry)

        federate_view = True
        if video.is_live and video.is_owned():
            # The live manager federates these views itself.
            await self.live_aggregator.add_view_to(video.id)
            federate_view = False

        if not video.is_live:
            await self.view_store.add_video_view(video.id)

        if federate_view:
            async def send(session: AsyncSession) -> None:
                await self.federation.send_view(session, video)

            await run_transaction(self.session_factory, send, settings=self.settings, name="send_view")

        return ViewOutcome.recorded


__all__ = [
    "ViewOutcome",
    "ViewStore",
    "LiveViewAggregator",
    "MemoryViewStore",
    "RedisViewStore",
    "InMemoryLiveViewAggregator",
    "get_view_store",
    "ViewAccumulator",
]

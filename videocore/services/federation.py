"""Post-commit propagation to peers and local subscribers."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Optional, Protocol, TypeVar

from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from videocore.core.config import Settings
from videocore.core.db import run_transaction
from videocore.core.logging import get_logger
from videocore.db.models import ActivityType, FederationActivity, VideoPrivacy, VideoState
from videocore.domain.descriptors import VideoDescriptor

from .records import load_video_descriptor

T = TypeVar("T")

NOTIFIER_RETRYABLE = (RedisError, ConnectionError, TimeoutError)


class Federation(Protocol):
    async def propagate(self, session: AsyncSession, video: VideoDescriptor, *, is_new: bool) -> None: ...

    async def retract(self, session: AsyncSession, video: VideoDescriptor) -> None: ...

    async def change_channel(self, session: AsyncSession, video: VideoDescriptor, old_channel_id: int) -> None: ...

    async def send_view(self, session: AsyncSession, video: VideoDescriptor) -> None: ...


class Notifier(Protocol):
    async def notify(self, event: str, video: VideoDescriptor) -> None: ...


def activity_payload(video: VideoDescriptor, **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "uuid": video.uuid,
        "url": video.url,
        "name": video.name,
        "privacy": video.privacy.name,
        "channel_id": video.channel_id,
    }
    payload.update(extra)
    return payload


class OutboxFederation:
    """Records activities in the outbox table inside the caller's transaction.

    Delivery to peers happens elsewhere; writing the same activity twice is
    harmless for the consumer, which keys on the video uuid.
    """

    def __init__(self) -> None:
        self.logger = get_logger(component="federation")

    async def _record(self, session: AsyncSession, video: VideoDescriptor, activity: ActivityType, payload: dict) -> None:
        session.add(FederationActivity(video_uuid=video.uuid, activity_type=activity, payload=payload))
        await session.flush()
        self.logger.debug("federation_activity_recorded", video_uuid=video.uuid, activity=activity.value)

    async def propagate(self, session: AsyncSession, video: VideoDescriptor, *, is_new: bool) -> None:
        activity = ActivityType.create if is_new else ActivityType.update
        await self._record(session, video, activity, activity_payload(video))

    async def retract(self, session: AsyncSession, video: VideoDescriptor) -> None:
        await self._record(session, video, ActivityType.delete, activity_payload(video))

    async def change_channel(self, session: AsyncSession, video: VideoDescriptor, old_channel_id: int) -> None:
        await self._record(
            session,
            video,
            ActivityType.channel_change,
            activity_payload(video, old_channel_id=old_channel_id),
        )

    async def send_view(self, session: AsyncSession, video: VideoDescriptor) -> None:
        await self._record(session, video, ActivityType.view, {"uuid": video.uuid})


class LogNotifier:
    def __init__(self) -> None:
        self.logger = get_logger(component="notifier")

    async def notify(self, event: str, video: VideoDescriptor) -> None:
        self.logger.info("subscriber_notification", notification=event, video_uuid=video.uuid, channel_id=video.channel_id)


class RedisNotifier:
    """Publishes subscriber notifications on a Redis pub/sub channel."""

    def __init__(self, client: Redis, channel: str):
        self.client = client
        self.channel = channel

    async def notify(self, event: str, video: VideoDescriptor) -> None:  # pragma: no cover - requires redis
        message = json.dumps({"event": event, **activity_payload(video)})
        await self.client.publish(self.channel, message)


def get_notifier(settings: Settings) -> Notifier:
    if settings.notifier_backend == "redis":  # pragma: no cover - requires redis
        return RedisNotifier(Redis.from_url(settings.redis_url), settings.notifier_channel)
    return LogNotifier()


def should_federate(video: VideoDescriptor) -> bool:
    if not video.has_privacy_for_federation() or video.blacklisted:
        return False
    return video.state == VideoState.published or not video.wait_transcoding


def should_notify_new_video(video: VideoDescriptor) -> bool:
    return video.privacy == VideoPrivacy.public and video.state == VideoState.published and not video.blacklisted


class FederationNotifier:
    """Best-effort chain run after commit: reload, notify, federate."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        federation: Federation,
        notifier: Notifier,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.federation = federation
        self.notifier = notifier
        self.logger = get_logger(component="federation_notifier")

    async def federate_if_needed(self, session: AsyncSession, video: VideoDescriptor, *, is_new: bool) -> bool:
        if not should_federate(video):
            return False
        await self.federation.propagate(session, video, is_new=is_new)
        return True

    async def notify_on_new_video_if_needed(self, video: VideoDescriptor) -> None:
        if should_notify_new_video(video):
            await self.notifier.notify("new_video", video)

    async def notify_and_federate(self, video_id: int, *, is_new: bool, notify: bool = True) -> None:
        async def load(session: AsyncSession) -> Optional[VideoDescriptor]:
            return await load_video_descriptor(session, video_id)

        video = await run_transaction(self.session_factory, load, settings=self.settings, name="reload_video")
        if video is None:
            self.logger.info("federation_skipped_missing_video", video_id=video_id)
            return

        if notify:
            await self._retry_stage("notify", lambda: self.notify_on_new_video_if_needed(video))

        async def federate(session: AsyncSession) -> bool:
            return await self.federate_if_needed(session, video, is_new=is_new)

        federated = await run_transaction(self.session_factory, federate, settings=self.settings, name="federate_video")
        self.logger.info("video_federation_done", video_uuid=video.uuid, federated=federated, is_new=is_new)

    async def _retry_stage(self, stage: str, fn: Callable[[], Awaitable[T]]) -> T:
        max_attempts = max(self.settings.transaction_max_attempts, 1)
        attempt = 0
        while True:
            attempt += 1
            try:
                return await fn()
            except NOTIFIER_RETRYABLE as exc:
                if attempt >= max_attempts:
                    raise
                self.logger.warning("stage_retry", stage=stage, attempt=attempt, error=str(exc))
                await asyncio.sleep(self.settings.transaction_retry_delay_s * attempt)


__all__ = [
    "Federation",
    "Notifier",
    "OutboxFederation",
    "LogNotifier",
    "RedisNotifier",
    "get_notifier",
    "should_federate",
    "should_notify_new_video",
    "FederationNotifier",
]

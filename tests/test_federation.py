from __future__ import annotations

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from videocore.core.db import run_transaction
from videocore.db.models import ActivityType, FederationActivity, VideoPrivacy, VideoState
from videocore.domain.descriptors import Requester, VideoDescriptor
from videocore.schemas import VideoCreate
from videocore.services.federation import (
    FederationNotifier,
    OutboxFederation,
    should_federate,
    should_notify_new_video,
)


def _video(**overrides) -> VideoDescriptor:
    fields = dict(
        uuid="9a3c1d4e-0b6f-4a2e-8c7d-5e1f2a3b4c5d",
        url="https://videos.example.test/videos/watch/9a3c1d4e-0b6f-4a2e-8c7d-5e1f2a3b4c5d",
        name="Clip",
        channel_id=1,
        privacy=VideoPrivacy.public,
        state=VideoState.published,
    )
    fields.update(overrides)
    return VideoDescriptor(**fields)


@pytest.mark.parametrize(
    "overrides, expected",
    [
        ({}, True),
        ({"privacy": VideoPrivacy.unlisted}, True),
        ({"privacy": VideoPrivacy.private}, False),
        ({"privacy": VideoPrivacy.internal}, False),
        ({"blacklisted": True}, False),
        ({"state": VideoState.to_transcode, "wait_transcoding": True}, False),
        ({"state": VideoState.to_transcode, "wait_transcoding": False}, True),
    ],
)
def test_should_federate(overrides, expected):
    assert should_federate(_video(**overrides)) is expected


def test_only_public_published_videos_notify():
    assert should_notify_new_video(_video()) is True
    assert should_notify_new_video(_video(privacy=VideoPrivacy.unlisted)) is False
    assert should_notify_new_video(_video(state=VideoState.to_transcode)) is False
    assert should_notify_new_video(_video(blacklisted=True)) is False


def test_outbox_records_activities(run_scenario):
    async def scenario(h):
        outbox = OutboxFederation()
        video = _video()

        async def body(session):
            await outbox.propagate(session, video, is_new=True)
            await outbox.propagate(session, video, is_new=False)
            await outbox.change_channel(session, video, old_channel_id=5)
            await outbox.send_view(session, video)
            await outbox.retract(session, video)

        await run_transaction(h.session_factory, body, settings=h.settings)

        rows = sorted(await h.rows(FederationActivity), key=lambda row: row.id)
        assert [row.activity_type for row in rows] == [
            ActivityType.create,
            ActivityType.update,
            ActivityType.channel_change,
            ActivityType.view,
            ActivityType.delete,
        ]
        assert rows[0].payload["privacy"] == "public"
        assert rows[2].payload["old_channel_id"] == 5
        assert rows[3].payload == {"uuid": video.uuid}

    run_scenario(scenario)


class FlakyNotifier:
    def __init__(self, failures: int):
        self.remaining = failures
        self.events = []

    async def notify(self, event, video):
        if self.remaining > 0:
            self.remaining -= 1
            raise RedisConnectionError("connection refused")
        self.events.append((event, video.uuid))


def test_notify_stage_is_retried(run_scenario):
    async def scenario(h):
        channel_id = await h.create_channel()
        ref = await h.coordinator.add_video(
            h.upload(), VideoCreate(name="Fresh", privacy=VideoPrivacy.public), channel_id, Requester(user_id=1)
        )
        await h.services.runner.drain()

        notifier = FlakyNotifier(failures=2)
        chain = FederationNotifier(h.settings, h.session_factory, h.federation, notifier)
        await chain.notify_and_federate(ref.id, is_new=False)

        assert notifier.events == [("new_video", ref.uuid)]
        assert ("propagate", ref.uuid, False) in h.federation.calls

    run_scenario(scenario, settings_update={"transcoding_enabled": False})


def test_missing_video_is_skipped(run_scenario):
    async def scenario(h):
        chain = FederationNotifier(h.settings, h.session_factory, h.federation, FlakyNotifier(failures=0))
        await chain.notify_and_federate(12345, is_new=True)
        assert h.federation.calls == []

    run_scenario(scenario)

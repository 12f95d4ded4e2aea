from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeProbe, FlakyBlacklistPolicy, RecordingFrameGrabber, video_technical
from videocore.core.errors import TransientPersistenceError, VideoNotFoundError
from videocore.core.jobs import MergeAudioTranscodePayload, OptimizeTranscodePayload
from videocore.db.models import (
    BlacklistType,
    ScheduleVideoUpdate,
    Tag,
    Thumbnail,
    ThumbnailOrigin,
    Video,
    VideoBlacklist,
    VideoChannel,
    VideoFile,
    VideoPrivacy,
    VideoState,
)
from videocore.domain.descriptors import Requester
from videocore.schemas import ScheduleUpdate, VideoCreate

REQUESTER = Requester(user_id=7)


def test_add_video_commits_video_and_file_together(run_scenario):
    async def scenario(h):
        channel_id = await h.create_channel()
        upload = h.upload("holiday.MP4")
        original_path = upload.path

        ref = await h.coordinator.add_video(
            upload,
            VideoCreate(name="Holiday", tags=["beach", "sun", "beach"]),
            channel_id,
            REQUESTER,
        )
        await h.services.runner.drain()

        videos = await h.rows(Video)
        files = await h.rows(VideoFile)
        assert len(videos) == 1 and len(files) == 1
        video, file = videos[0], files[0]
        assert video.id == ref.id and video.uuid == ref.uuid
        assert video.url == f"https://videos.example.test/videos/watch/{ref.uuid}"
        assert video.state == VideoState.to_transcode
        assert video.duration == 12
        assert file.video_id == video.id
        assert file.filename == f"{ref.uuid}-720.mp4"
        assert file.resolution == 720 and file.fps == 30.0

        assert not original_path.exists()
        assert upload.path == h.storage.video_file_path(file.filename)
        assert upload.path.exists()

        assert sorted(tag.name for tag in await h.rows(Tag)) == ["beach", "sun"]
        thumbnails = await h.rows(Thumbnail)
        assert sorted(t.type.name for t in thumbnails) == ["miniature", "preview"]
        assert all(t.origin == ThumbnailOrigin.generated and t.automatically_generated for t in thumbnails)
        return ref

    run_scenario(scenario)


def test_add_video_enqueues_optimize_job_and_runs_chain_in_order(run_scenario):
    async def scenario(h):
        channel_id = await h.create_channel()
        ref = await h.coordinator.add_video(h.upload(), VideoCreate(name="Clip"), channel_id, REQUESTER)

        assert h.jobs.jobs == [OptimizeTranscodePayload(video_uuid=ref.uuid, resolution=720)]

        await h.services.runner.drain()
        assert h.timeline == ["torrent", "propagate"]
        assert ("propagate", ref.uuid, True) in h.federation.calls
        # Still transcoding, so subscribers are not told yet.
        assert h.notifier.events == []

        file = (await h.rows(VideoFile))[0]
        assert file.info_hash == h.torrent_builder.info_hash
        assert file.torrent_filename == f"{ref.uuid}-720.torrent"
        assert h.torrent_builder.calls[0]["webseed"].endswith(f"/static/webseed/{file.filename}")

    run_scenario(scenario)


def test_audio_only_upload_enqueues_merge_audio_job(run_scenario):
    async def scenario(h):
        channel_id = await h.create_channel()
        ref = await h.coordinator.add_video(h.upload("song.mp3"), VideoCreate(name="Song"), channel_id, REQUESTER)

        assert h.jobs.jobs == [MergeAudioTranscodePayload(video_uuid=ref.uuid, resolution=480)]
        file = (await h.rows(VideoFile))[0]
        assert file.resolution == 480
        assert file.fps is None
        assert file.filename == f"{ref.uuid}-480.mp3"

    run_scenario(scenario, probe=FakeProbe(video_technical(resolution=480, fps=None, duration=200)))


def test_transcoding_disabled_publishes_and_notifies_without_job(run_scenario):
    async def scenario(h):
        channel_id = await h.create_channel()
        ref = await h.coordinator.add_video(h.upload(), VideoCreate(name="Direct"), channel_id, REQUESTER)
        await h.services.runner.drain()

        assert h.jobs.jobs == []
        assert (await h.rows(Video))[0].state == VideoState.published
        assert h.notifier.events == [("new_video", ref.uuid)]

    run_scenario(scenario, settings_update={"transcoding_enabled": False})


def test_add_video_marks_channel_updated_and_stores_schedule(run_scenario):
    fixed_now = datetime(2030, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    update_at = datetime(2030, 2, 1, tzinfo=timezone.utc)

    async def scenario(h):
        h.coordinator.clock = lambda: fixed_now
        channel_id = await h.create_channel()
        info = VideoCreate(
            name="Later",
            privacy=VideoPrivacy.private,
            schedule_update=ScheduleUpdate(update_at=update_at, privacy=VideoPrivacy.public),
        )
        await h.coordinator.add_video(h.upload(), info, channel_id, REQUESTER)

        channel = (await h.rows(VideoChannel))[0]
        assert channel.updated_at.year == 2030
        schedules = await h.rows(ScheduleVideoUpdate)
        assert len(schedules) == 1
        assert schedules[0].privacy == VideoPrivacy.public

    run_scenario(scenario)


def test_transient_conflict_is_retried_with_clean_state(run_scenario):
    async def scenario(h):
        flaky = FlakyBlacklistPolicy(h.settings, failures=2)
        h.coordinator.blacklist = flaky
        channel_id = await h.create_channel()

        ref = await h.coordinator.add_video(h.upload(), VideoCreate(name="Retry"), channel_id, REQUESTER)

        assert flaky.calls == 3
        assert await h.count(Video) == 1
        assert await h.count(VideoFile) == 1
        assert (await h.rows(Video))[0].id == ref.id
        assert len(h.jobs.jobs) == 1

    run_scenario(scenario)


def test_exhausted_retries_leave_nothing_behind(run_scenario):
    async def scenario(h):
        h.coordinator.blacklist = FlakyBlacklistPolicy(h.settings, failures=10)
        channel_id = await h.create_channel()

        upload = h.upload()
        with pytest.raises(TransientPersistenceError):
            await h.coordinator.add_video(upload, VideoCreate(name="Doomed"), channel_id, REQUESTER)

        assert await h.count(Video) == 0
        assert await h.count(VideoFile) == 0
        assert h.jobs.jobs == []
        assert h.timeline == []
        assert not upload.path.exists()
        assert list(h.storage.video_file_path("x").parent.iterdir()) == []
        assert list(h.storage.thumbnail_path("x").parent.iterdir()) == []

    run_scenario(scenario)


def test_non_transient_failure_rolls_back_without_retry(run_scenario):
    async def scenario(h):
        flaky = FlakyBlacklistPolicy(h.settings, failures=1, transient=False)
        h.coordinator.blacklist = flaky
        channel_id = await h.create_channel()

        upload = h.upload()
        with pytest.raises(RuntimeError):
            await h.coordinator.add_video(upload, VideoCreate(name="Broken"), channel_id, REQUESTER)

        assert flaky.calls == 1
        assert await h.count(Video) == 0
        assert await h.count(VideoFile) == 0
        assert not upload.path.exists()
        assert list(h.storage.thumbnail_path("x").parent.iterdir()) == []

    run_scenario(scenario)


def test_auto_blacklist_flags_new_video_and_blocks_federation(run_scenario):
    async def scenario(h):
        channel_id = await h.create_channel()
        await h.coordinator.add_video(h.upload(), VideoCreate(name="Review me"), channel_id, REQUESTER)
        await h.services.runner.drain()

        blacklists = await h.rows(VideoBlacklist)
        assert len(blacklists) == 1
        assert blacklists[0].type == BlacklistType.auto
        assert blacklists[0].unfederated is True
        assert "propagate" not in h.federation.names()

    run_scenario(scenario, settings_update={"auto_blacklist_enabled": True})


def test_auto_blacklist_skipped_for_bypass_right(run_scenario):
    async def scenario(h):
        channel_id = await h.create_channel()
        moderator = Requester(user_id=1, can_bypass_blacklist=True)
        await h.coordinator.add_video(h.upload(), VideoCreate(name="Trusted"), channel_id, moderator)
        assert await h.count(VideoBlacklist) == 0

    run_scenario(scenario, settings_update={"auto_blacklist_enabled": True})


def test_thumbnail_generation_failure_does_not_abort_upload(run_scenario):
    async def scenario(h):
        channel_id = await h.create_channel()
        await h.coordinator.add_video(h.upload(), VideoCreate(name="No frames"), channel_id, REQUESTER)

        assert await h.count(Video) == 1
        assert await h.count(Thumbnail) == 0

    run_scenario(scenario, frame_grabber=RecordingFrameGrabber(fail=True))


def test_add_video_resumable_reads_and_deletes_metadata(run_scenario):
    async def scenario(h):
        channel_id = await h.create_channel()
        upload = h.upload("chunked-upload-token")
        meta_path = upload.path.with_name(upload.path.name + ".META")
        meta_path.write_text(json.dumps({"name": "Resumed", "filename": "resumed.webm", "privacy": 2}))

        ref = await h.coordinator.add_video_resumable(upload, channel_id, REQUESTER)

        assert not meta_path.exists()
        video = (await h.rows(Video))[0]
        assert video.name == "Resumed"
        assert video.privacy == VideoPrivacy.unlisted
        assert (await h.rows(VideoFile))[0].filename == f"{ref.uuid}-720.webm"

    run_scenario(scenario)


def test_load_video_and_file_metadata(run_scenario):
    async def scenario(h):
        channel_id = await h.create_channel()
        ref = await h.coordinator.add_video(
            h.upload(), VideoCreate(name="Loaded", tags=["one"]), channel_id, REQUESTER
        )
        video = await h.coordinator.load_video(ref.id)
        assert video.uuid == ref.uuid
        assert video.tags == ["one"]
        assert video.blacklisted is False

        file = (await h.rows(VideoFile))[0]
        assert await h.coordinator.get_video_file_metadata(file.id) == {
            "format": {"format_name": "mp4"},
            "streams": [],
        }

        with pytest.raises(VideoNotFoundError):
            await h.coordinator.load_video(ref.id + 100)
        with pytest.raises(VideoNotFoundError):
            await h.coordinator.get_video_file_metadata(file.id + 100)

    run_scenario(scenario)


def test_remove_video_deletes_rows_files_and_retracts(run_scenario):
    async def scenario(h):
        channel_id = await h.create_channel()
        ref = await h.coordinator.add_video(
            h.upload(), VideoCreate(name="Gone", tags=["x"]), channel_id, REQUESTER
        )
        await h.services.runner.drain()
        file = (await h.rows(VideoFile))[0]
        video_path = h.storage.video_file_path(file.filename)
        torrent_path = h.storage.torrent_path(file.torrent_filename)
        assert video_path.exists() and torrent_path.exists()

        video = await h.coordinator.load_video(ref.id)
        await h.coordinator.remove_video(video)

        assert await h.count(Video) == 0
        assert await h.count(VideoFile) == 0
        assert await h.count(Thumbnail) == 0
        assert not video_path.exists()
        assert not torrent_path.exists()
        assert ("retract", ref.uuid, True) in h.federation.calls

        with pytest.raises(VideoNotFoundError):
            await h.coordinator.remove_video(video)

    run_scenario(scenario)

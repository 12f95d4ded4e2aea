from __future__ import annotations

from sqlalchemy import delete

from videocore.db.models import VideoFile
from videocore.domain.descriptors import Requester
from videocore.ingest.filenames import generate_torrent_filename
from videocore.schemas import VideoCreate
from videocore.services.records import file_record_from_row, load_video_descriptor

REQUESTER = Requester(user_id=3)


async def _add_video(h):
    channel_id = await h.create_channel()
    ref = await h.coordinator.add_video(h.upload(), VideoCreate(name="Seeded"), channel_id, REQUESTER)
    await h.services.runner.drain()
    async with h.session_factory() as session:
        video = await load_video_descriptor(session, ref.id)
    file = file_record_from_row((await h.rows(VideoFile))[0])
    return video, file


def test_create_torrent_attaches_info_hash_and_webseed(run_scenario):
    async def scenario(h):
        video, file = await _add_video(h)
        stage = h.coordinator.torrent_stage

        updated = await stage.create_torrent(video, file)

        assert updated is not None
        assert updated.info_hash == h.torrent_builder.info_hash
        assert updated.torrent_filename == generate_torrent_filename(video.uuid, file.resolution)
        assert h.storage.torrent_path(updated.torrent_filename).exists()
        call = h.torrent_builder.calls[-1]
        assert call["source"] == h.storage.video_file_path(file.filename)
        assert call["webseed"] == f"https://videos.example.test/static/webseed/{file.filename}"
        assert call["name"] == "Seeded 720p.mp4"

    run_scenario(scenario)


def test_create_torrent_discards_result_when_file_was_deleted(run_scenario):
    async def scenario(h):
        video, file = await _add_video(h)
        async with h.session_factory() as session:
            async with session.begin():
                await session.execute(delete(VideoFile).where(VideoFile.id == file.id))

        result = await h.coordinator.torrent_stage.create_torrent(video, file)

        assert result is None
        assert not h.storage.torrent_path(generate_torrent_filename(video.uuid, file.resolution)).exists()
        assert await h.count(VideoFile) == 0

    run_scenario(scenario)

from __future__ import annotations

import pytest

from videocore.core.errors import MediaProbeError
from videocore.ingest.probe import parse_technical_metadata


def _stream(**overrides):
    stream = {
        "codec_type": "video",
        "codec_name": "h264",
        "width": 1920,
        "height": 1080,
        "avg_frame_rate": "30000/1001",
        "r_frame_rate": "30000/1001",
    }
    stream.update(overrides)
    return stream


def test_resolution_is_the_smaller_dimension():
    raw = {"format": {"duration": "61.6"}, "streams": [_stream(width=720, height=1280)]}

    technical = parse_technical_metadata(raw)

    assert technical.audio_only is False
    assert technical.resolution == 720
    assert technical.fps == pytest.approx(30.0)
    assert technical.duration == 62
    assert technical.metadata["format"] == {"duration": "61.6"}


def test_audio_only_file_uses_default_resolution():
    raw = {
        "format": {"duration": "180"},
        "streams": [{"codec_type": "audio", "codec_name": "mp3", "channels": 2}],
    }

    technical = parse_technical_metadata(raw)

    assert technical.audio_only is True
    assert technical.resolution == 480
    assert technical.fps is None
    assert technical.duration == 180


def test_cover_art_does_not_count_as_video():
    raw = {
        "format": {"duration": "200.2"},
        "streams": [
            {"codec_type": "audio", "codec_name": "aac"},
            _stream(codec_name="mjpeg", width=500, height=500, disposition={"attached_pic": 1}),
        ],
    }

    assert parse_technical_metadata(raw).audio_only is True


def test_default_stream_wins_over_larger_one():
    raw = {
        "format": {},
        "streams": [
            _stream(width=3840, height=2160),
            _stream(width=1280, height=720, disposition={"default": 1}),
        ],
    }

    assert parse_technical_metadata(raw).resolution == 720


def test_frame_rate_falls_back_to_r_frame_rate():
    raw = {"format": {}, "streams": [_stream(avg_frame_rate="0/0", r_frame_rate="25/1")]}

    assert parse_technical_metadata(raw).fps == pytest.approx(25.0)


def test_missing_duration_is_zero():
    raw = {"format": {"duration": "N/A"}, "streams": [_stream()]}

    assert parse_technical_metadata(raw).duration == 0


def test_video_stream_without_dimensions_is_rejected():
    raw = {"format": {}, "streams": [_stream(width=None, height=None)]}

    with pytest.raises(MediaProbeError):
        parse_technical_metadata(raw)

from __future__ import annotations

import pytest
from pydantic import ValidationError

from videocore.schemas import VideoCreate, VideoImportCreate, VideoUpdate


def test_unknown_category_is_rejected():
    with pytest.raises(ValidationError):
        VideoCreate(name="Clip", category=99)


def test_unknown_licence_is_rejected_on_import():
    with pytest.raises(ValidationError):
        VideoImportCreate(magnet_uri="magnet:?xt=urn:btih:abc", licence=42)


def test_update_tracks_explicit_nulls():
    patch = VideoUpdate.model_validate({"description": None, "category": 2})

    assert patch.is_set("description")
    assert patch.is_set("category")
    assert not patch.is_set("schedule_update")

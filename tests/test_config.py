from __future__ import annotations

import pytest

from videocore.core.config import Settings, get_settings


@pytest.mark.no_default_env
def test_legacy_env_aliases_are_honoured(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("VIDEOCORE_ENV", "staging")
    monkeypatch.setenv("VIDEOCORE_DB_URL", "sqlite+aiosqlite:///./alias.db")
    monkeypatch.setenv("VIDEOCORE_JOB_BACKEND", "rq")
    # get_settings copies aliases into os.environ; register the targets so they are restored.
    for target in ("VIDEOCORE_ENVIRONMENT", "VIDEOCORE_DATABASE_URL", "VIDEOCORE_JOB_QUEUE_BACKEND"):
        monkeypatch.setenv(target, "")

    settings = get_settings()

    assert settings.environment == "staging"
    assert settings.database_url == "sqlite+aiosqlite:///./alias.db"
    assert settings.job_queue_backend == "rq"
    assert settings.normalized_job_backend == "rq"


@pytest.mark.no_default_env
def test_defaults(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("VIDEOCORE_ENV", "VIDEOCORE_ENVIRONMENT", "VIDEOCORE_JOB_BACKEND", "VIDEOCORE_JOB_QUEUE_BACKEND"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings()

    assert settings.normalized_job_backend == "immediate"
    assert settings.transcoding_enabled is True
    assert settings.auto_blacklist_enabled is False
    assert settings.mark_channel_updated_on_import is False
    assert settings.view_expiry_seconds == 3600
    assert settings.live_view_expiry_seconds == 10


def test_local_video_url_ignores_trailing_slash(configure_environment):
    settings = configure_environment.model_copy(update={"webserver_url": "https://videos.example.test/"})

    assert settings.local_video_url("abc") == "https://videos.example.test/videos/watch/abc"


def test_inline_backend_is_normalised(configure_environment):
    assert configure_environment.job_queue_backend == "inline"
    assert configure_environment.normalized_job_backend == "immediate"

import pytest
from pydantic import ValidationError

from app.config import Settings

STRONG_SECRET = "Zq8vK3xP7mW2nR5tY9bL4cF6hJ1gD0sAeUiOpQwErTy"


def test_empty_cron_secret_fails_closed(monkeypatch):
    monkeypatch.setenv("CRON_SECRET", "")

    with pytest.raises(ValidationError, match="cron_secret|CRON_SECRET"):
        Settings()


def test_short_cron_secret_fails_closed(monkeypatch):
    monkeypatch.setenv("CRON_SECRET", "s3cr3t")

    with pytest.raises(ValidationError, match="at least 32"):
        Settings()


def test_placeholder_cron_secret_fails_closed(monkeypatch):
    monkeypatch.setenv("CRON_SECRET", "changeme-changeme-changeme-changeme")

    with pytest.raises(ValidationError, match="placeholder"):
        Settings()


def test_low_entropy_cron_secret_fails_closed(monkeypatch):
    monkeypatch.setenv("CRON_SECRET", "ab" * 20)

    with pytest.raises(ValidationError, match="entropy"):
        Settings()


def test_cron_secret_with_stray_whitespace_fails_closed(monkeypatch):
    monkeypatch.setenv("CRON_SECRET", STRONG_SECRET + "\n")

    with pytest.raises(ValidationError, match="whitespace"):
        Settings()


def test_strong_cron_secret_passes(monkeypatch):
    monkeypatch.setenv("CRON_SECRET", STRONG_SECRET)

    assert Settings().cron_secret == STRONG_SECRET


def test_cron_secret_may_be_left_unset(monkeypatch):
    monkeypatch.delenv("CRON_SECRET", raising=False)

    assert Settings(_env_file=None).cron_secret is None


def test_defaults(monkeypatch):
    monkeypatch.delenv("CRON_SECRET", raising=False)

    settings = Settings(_env_file=None)

    assert settings.timezone_offset_hours == -5
    assert settings.nearby_radius_km == 10.0
    assert settings.messages_dir.name == "messages"
    assert settings.resolved_push_endpoint == "http://localhost:3000/api/notifications/send"

"""Application configuration."""
from collections import Counter
from functools import lru_cache
import math
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "Tribe"
    debug: bool = False
    log_level: str = "INFO"
    site_url: str = "http://localhost:3000"

    # Database
    database_url: str = "sqlite:///./tribe.db"

    # Cron trigger
    cron_secret: str | None = None
    timezone_offset_hours: float = -5  # Colombia (UTC-5)

    # Push gateway
    push_endpoint: str | None = None
    push_api_key: str | None = None

    # Email
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from_email: str = "notifications@tribe.app"

    delivery_timeout_seconds: float = 10.0
    nearby_radius_km: float = 10.0

    # Paths
    base_dir: Path = Path(__file__).parent
    messages_dir: Path = base_dir / "configs" / "messages"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @field_validator("cron_secret")
    @classmethod
    def validate_cron_secret(cls, value: str | None) -> str | None:
        """Guard the dispatch trigger: this bearer alone can fan notifications out to every user."""
        if value is None:
            return None

        if not value:
            raise ValueError("CRON_SECRET must not be empty.")

        if value != value.strip():
            # Compared verbatim against the Authorization header
            raise ValueError("CRON_SECRET must not have leading or trailing whitespace.")

        if len(value) < 32:
            raise ValueError("CRON_SECRET must be at least 32 characters.")

        weak_values = {"changeme", "changeme-in-production", "secret", "password", "test"}
        lowered = value.lower()
        if lowered in weak_values or "changeme" in lowered:
            raise ValueError("CRON_SECRET must not be a placeholder value.")

        counts = Counter(value)
        entropy_per_char = -sum((count / len(value)) * math.log2(count / len(value)) for count in counts.values())
        estimated_entropy_bits = entropy_per_char * len(value)
        if estimated_entropy_bits < 100:
            raise ValueError("CRON_SECRET entropy is too low; use a cryptographically random value.")

        return value

    @property
    def resolved_push_endpoint(self) -> str:
        """Push gateway URL, defaulting to the web app's send route."""
        return self.push_endpoint or f"{self.site_url.rstrip('/')}/api/notifications/send"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

from functools import lru_cache
from pathlib import Path
from typing import Annotated, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="Planning Poker API", description="Human readable service name")
    environment: str = Field(default="development", description="Deployment environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    cors_origins: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1",
            "http://127.0.0.1:5173",
        ],
        description="List of allowed CORS origins",
    )
    cors_allow_origin_regex: str | None = Field(
        default=r"^https?://(localhost|127\.0\.0\.1|0\.0\.0\.0|\[::1\])(:\d+)?$",
        description="Optional regular expression that matches allowed CORS origins",
    )

    max_rooms: int = Field(default=1000, description="Maximum number of concurrent rooms")
    max_users: int = Field(default=5000, description="Maximum number of users across all rooms")
    max_users_per_room: int = Field(
        default=50, description="Maximum number of connected members in a single room"
    )
    max_sessions: int = Field(
        default=10000, description="Maximum number of live websocket connections"
    )
    disconnect_grace_period_seconds: float = Field(
        default=300.0,
        description="How long a disconnected participant may come back and keep their identity.",
    )
    maintenance_interval_seconds: float = Field(
        default=60.0,
        description="Interval of the periodic maintenance sweep; 0 disables the timer.",
    )
    usage_warning_ratio: float = Field(
        default=0.8,
        description="Fraction of a capacity limit above which the sweeper logs a warning.",
    )
    broadcast_send_timeout_seconds: float = Field(
        default=5.0,
        description="Per-recipient timeout for state broadcasts.",
    )

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):  # type: ignore[override]
        if v in (None, "", Ellipsis):
            return []
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, (list, tuple, set)):
            return [str(origin) for origin in v]
        return v

    @field_validator("max_rooms", "max_users", "max_users_per_room", "max_sessions")
    @classmethod
    def ensure_positive_limit(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("capacity limits must be positive")
        return value

    @field_validator("disconnect_grace_period_seconds", "maintenance_interval_seconds")
    @classmethod
    def ensure_non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("durations cannot be negative")
        return value

    @field_validator("usage_warning_ratio")
    @classmethod
    def ensure_ratio(cls, value: float) -> float:
        if not 0 < value <= 1:
            raise ValueError("usage_warning_ratio must be within (0, 1]")
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()

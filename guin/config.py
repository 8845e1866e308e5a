from __future__ import annotations

from typing import Any, List

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(RuntimeError):
    """Raised when the process environment cannot produce valid Settings."""


def _split_origins(raw: Any) -> List[str]:
    """
    Normalize CORS allow origins from env.

    Supports:
      - "*" or empty (allow all)
      - comma-separated string: "https://a.com, https://b.com"
    """
    s = ("" if raw is None else str(raw)).strip()
    if not s or s == "*":
        return ["*"]

    parts = [p.strip() for p in s.split(",")]
    parts = [p for p in parts if p]
    return parts or ["*"]


class Settings(BaseSettings):
    """
    Process configuration.

    PORT is the only required value; everything else has a local-dev default.
    Build one instance at startup (see load_settings) and pass it down;
    handlers never read os.environ themselves.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # Service identity
    app_name: str = Field(default="", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Server runtime (uvicorn)
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(..., ge=1, le=65535, alias="PORT")
    shutdown_timeout: float = Field(default=5.0, gt=0, alias="SHUTDOWN_TIMEOUT")

    # CORS (comma-separated; kept as a string so env values are not parsed as JSON)
    cors_allow_origins: str = Field(default="*", alias="CORS_ALLOW_ORIGINS")

    database_url: str = Field(default="sqlite:///./data/guin.sqlite", alias="DATABASE_URL")

    @field_validator("log_level", mode="before")
    @classmethod
    def _norm_log_level(cls, v: Any) -> str:
        s = ("" if v is None else str(v)).strip().upper()
        return s or "INFO"

    @field_validator("host", mode="before")
    @classmethod
    def _norm_host(cls, v: Any) -> str:
        s = ("" if v is None else str(v)).strip()
        return s or "0.0.0.0"

    @field_validator("app_name", mode="before")
    @classmethod
    def _norm_app_name(cls, v: Any) -> str:
        return ("" if v is None else str(v)).strip()

    @field_validator("database_url", mode="before")
    @classmethod
    def _norm_database_url(cls, v: Any) -> str:
        s = ("" if v is None else str(v)).strip()
        return s or "sqlite:///./data/guin.sqlite"

    @property
    def cors_origins_list(self) -> List[str]:
        return _split_origins(self.cors_allow_origins)


def load_settings(**overrides: Any) -> Settings:
    """
    Read Settings from the environment (and .env).

    Any validation problem, a missing PORT included, surfaces as
    ConfigurationError so the caller can stop before anything is bound.
    """
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        problems = []
        for err in exc.errors():
            loc = ".".join(str(x) for x in err.get("loc", ())) or "settings"
            problems.append(f"{loc}: {err.get('msg', 'invalid value')}")
        raise ConfigurationError(
            "Invalid configuration (check environment / .env): " + "; ".join(problems)
        ) from exc

"""Channel configuration loading and validation."""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar, Dict, Iterable, Literal

import yaml
from pydantic import BaseModel, Field, NonNegativeFloat, NonNegativeInt, PositiveInt
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_LOCATIONS: tuple[Path, ...] = (
    Path("/etc/courier/channel.yaml"),
    Path("/etc/courier/channel.yml"),
    Path("./config/channel.yaml"),
    Path("./config/channel.yml"),
)


class ReconnectSettings(BaseModel):
    """Retry budget applied when the backend drops the connection."""

    max_retries: NonNegativeInt = Field(
        default=5,
        description="Reconnect attempts allowed before the session is closed.",
    )
    delay_ms: NonNegativeInt = Field(
        default=3000,
        description="Delay (milliseconds) before each reconnect attempt.",
    )
    backoff: Literal["constant", "exponential"] = Field(
        default="constant",
        description="Constant delay, or exponential growth from delay_ms.",
    )
    max_delay_ms: NonNegativeInt = Field(
        default=30000,
        description="Upper bound for exponential backoff (milliseconds).",
    )
    jitter: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Jitter factor applied to the reconnect delay (0.0-1.0).",
    )


class RateLimitSettings(BaseModel):
    """Fixed-window throttle applied per recipient."""

    max_requests: PositiveInt = Field(
        default=30,
        description="Sends admitted per recipient inside one window.",
    )
    window_ms: PositiveInt = Field(
        default=1000,
        description="Window length in milliseconds.",
    )
    idle_eviction_seconds: NonNegativeFloat = Field(
        default=60.0,
        description="Forget recipients idle for this long after their window ended (0 disables).",
    )


class ChannelSettings(BaseSettings):
    """Validated settings for one channel session."""

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="COURIER_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Session
    auth_data: str | None = Field(
        default=None,
        description="Serialized backend credentials (JSON auth state).",
        repr=False,
    )
    reconnect: ReconnectSettings = Field(default_factory=ReconnectSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    group_suffix: str = Field(
        default="@g.us",
        description="Conversation ids ending with this suffix are groups.",
    )
    open_timeout_seconds: NonNegativeFloat = Field(
        default=30.0,
        description="Seconds initialize() waits for the transport to report open (0 = don't wait).",
    )
    handler_timeout_seconds: NonNegativeFloat = Field(
        default=0.0,
        description="Upper bound for a single inbound handler call (0 = unbounded).",
    )

    # Transport
    transport: Literal["dummy", "websocket"] = Field(
        default="websocket",
        description="Transport implementation to use.",
    )
    bridge_ws_url: str = Field(
        default="ws://localhost:3001",
        description="WebSocket endpoint of the messaging bridge.",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum log level for the channel process.",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        if isinstance(value, str):
            return value.upper()
        return value

    config_path: Path | None = Field(
        default=None,
        description="Resolved path to the on-disk config that seeded the settings.",
        exclude=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[ChannelSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            cls._file_settings_source,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @staticmethod
    def _file_settings_source(settings_cls: type[ChannelSettings] | None = None) -> Dict[str, Any]:
        for path in ChannelSettings._resolve_candidate_paths():
            data = ChannelSettings._load_file(path)
            if data is not None:
                data.setdefault("config_path", path)
                return data
        return {}

    @staticmethod
    def _resolve_candidate_paths() -> Iterable[Path]:
        explicit = os.getenv("COURIER_CONFIG_FILE")
        if explicit:
            yield Path(explicit).expanduser()
        yield from DEFAULT_CONFIG_LOCATIONS

    @staticmethod
    def _load_file(path: Path) -> Dict[str, Any] | None:
        if not path.is_file():
            return None
        suffix = path.suffix.lower()
        try:
            with path.open("r", encoding="utf-8") as handle:
                if suffix in {".yaml", ".yml"}:
                    raw = yaml.safe_load(handle)
                elif suffix == ".json":
                    raw = json.load(handle)
                else:
                    return None
        except OSError as exc:
            raise RuntimeError(f"Failed to read channel config file {path}") from exc
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise ValueError(f"Invalid channel config file {path}") from exc

        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ValueError(f"Channel config file {path} must contain a mapping at top level.")
        return raw


@lru_cache()
def get_settings() -> ChannelSettings:
    """Return memoized channel settings."""

    return ChannelSettings()

"""Client configuration loading and validation."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar, Dict, Iterable, Literal

import yaml
from pydantic import AnyUrl, Field, NonNegativeInt, PositiveFloat
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_LOCATIONS: tuple[Path, ...] = (
    Path("./config/client.yaml"),
    Path("./config/client.yml"),
)
YAML_SUFFIXES = frozenset({".yaml", ".yml"})


class ClientSettings(BaseSettings):
    """Validated settings for the RPC connection."""

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="SURREAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Endpoint + selection
    url: AnyUrl = Field(
        default="http://localhost:8000",
        description="Server base URL; http(s) is rewritten to ws(s) and /rpc is appended.",
    )
    namespace: str | None = Field(
        default=None,
        description="Namespace selected with `use` after every (re)connect.",
    )
    database: str | None = Field(
        default=None,
        description="Database selected with `use` after every (re)connect.",
    )
    transport: Literal["memory", "websocket"] = Field(
        default="websocket",
        description="Socket transport implementation to use.",
    )

    # Reliability
    reconnect_delay_seconds: PositiveFloat = Field(
        default=2.5,
        description="Fixed delay before each reconnection attempt.",
    )
    reconnect_max_attempts: NonNegativeInt = Field(
        default=10,
        description="Reconnection attempts before giving up (0 retries forever).",
    )
    live_buffer_max: NonNegativeInt = Field(
        default=0,
        description="Cap on notifications buffered per unclaimed live query (0 is unbounded).",
    )
    open_timeout_seconds: PositiveFloat = Field(
        default=10.0,
        description="Timeout for the WebSocket opening handshake.",
    )
    ping_interval_seconds: PositiveFloat | None = Field(
        default=20.0,
        description="WebSocket keep-alive ping interval; None disables pings.",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum log level for the entry script.",
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
        settings_cls: type[ClientSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            cls._yaml_settings_source,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @staticmethod
    def _yaml_settings_source(settings_cls: type[ClientSettings] | None = None) -> Dict[str, Any]:
        candidates: Iterable[Path] = ClientSettings._resolve_candidate_paths()

        for path in candidates:
            data = ClientSettings._load_file(path)
            if data is not None:
                data.setdefault("config_path", path)
                return data
        return {}

    @staticmethod
    def _resolve_candidate_paths() -> Iterable[Path]:
        explicit = os.getenv("SURREAL_CLIENT_CONFIG_FILE")
        if explicit:
            yield Path(explicit).expanduser()
        yield from DEFAULT_CONFIG_LOCATIONS

    @staticmethod
    def _load_file(path: Path) -> Dict[str, Any] | None:
        if not path.is_file() or path.suffix.lower() not in YAML_SUFFIXES:
            return None
        try:
            with path.open("r", encoding="utf-8") as handle:
                raw = yaml.safe_load(handle)
        except OSError as exc:
            raise RuntimeError(f"Failed to read client config file {path}") from exc
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid client config file {path}") from exc

        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ValueError(f"Client config file {path} must contain a mapping at top level.")
        return raw


@lru_cache()
def get_settings() -> ClientSettings:
    """Return memoized client settings."""

    return ClientSettings()

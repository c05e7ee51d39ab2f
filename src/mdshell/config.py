"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (MDSHELL__ORIGIN__URL=https://docs.example.com)
  2. mdshell.yaml           (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional; all fields have sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("mdshell")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "cache.db")


def _find_config_file() -> str | None:
    """Return the path of the first mdshell.yaml found, or None."""
    candidates = [
        Path("mdshell.yaml"),
        Path(platformdirs.user_config_dir("mdshell")) / "mdshell.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class ServerSettings(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8080


class OriginSettings(BaseModel):
    url: str = "http://127.0.0.1:8000"


class InterceptSettings(BaseModel):
    pattern: str = r"\.md$"
    cache_name: str = "markdown-cache"
    # Serve an existing entry when a reload's origin fetch fails
    stale_fallback: bool = True
    dedupe_inflight: bool = False


class FetcherSettings(BaseModel):
    origin_timeout_seconds: float = 30.0
    manifest_timeout_seconds: float = 10.0
    shell_timeout_seconds: float = 10.0
    user_agent: str = "mdshell/1.0"


class CacheSettings(BaseModel):
    db_path: str = _DEFAULT_DB_PATH
    max_entries: int = 0  # 0 disables eviction


class TranscoderSettings(BaseModel):
    max_front_matter_lines: int = 200


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: MDSHELL__SERVER__PORT=9090
        env_prefix="MDSHELL__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    server: ServerSettings = ServerSettings()
    origin: OriginSettings = OriginSettings()
    intercept: InterceptSettings = InterceptSettings()
    fetcher: FetcherSettings = FetcherSettings()
    cache: CacheSettings = CacheSettings()
    transcoder: TranscoderSettings = TranscoderSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )

"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (NOTIONSITE__NOTION__TOKEN=secret_...)
  2. notionsite.yaml        (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional. Only the Notion token is needed to serve pages,
and it is checked at the first backend call, not at startup.
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

DEFAULT_CACHE_TTL_SECONDS = 300


def _find_config_file() -> str | None:
    """Return the path of the first notionsite.yaml found, or None."""
    candidates = [
        Path("notionsite.yaml"),
        Path(platformdirs.user_config_dir("notionsite")) / "notionsite.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class NotionSettings(BaseModel):
    token: str | None = None
    database_id: str | None = None
    home_page_id: str | None = None
    slug_property: str = "Slug"
    published_property: str = "Published"
    description_property: str = "Description"
    api_base_url: str = "https://api.notion.com/v1"
    api_version: str = "2022-06-28"
    page_size: int = 100
    child_fetch_concurrency: int = 6
    max_block_depth: int = 32
    max_retries: int = 3
    timeout_seconds: float = 30.0


class CacheSettings(BaseModel):
    # 0 disables caching entirely
    ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS

    @field_validator("ttl_seconds", mode="before")
    @classmethod
    def fallback_on_invalid_ttl(cls, v: Any) -> float:
        try:
            ttl = float(v)
        except (TypeError, ValueError):
            return DEFAULT_CACHE_TTL_SECONDS
        if not math.isfinite(ttl) or ttl < 0:
            return DEFAULT_CACHE_TTL_SECONDS
        return ttl


class SiteSettings(BaseModel):
    url: str = "https://aex.design"
    name: str = "Aex Designs"
    description: str = "Designing for the internet, on the internet."
    hostnames: list[str] = ["aex.design", "www.aex.design"]
    route_map_path: str = "content/route-map.json"
    revalidate_secret: str | None = None
    # Top-level sections whose descendants are listed under the section's
    # child-page link on the home page.
    expandable_parents: list[str] = ["onchain", "offchain", "digitaldesignassets", "archive"]
    static_paths: list[str] = ["/typeplayground"]

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        v = v.strip()
        return v[:-1] if v.endswith("/") else v


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3000


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: NOTIONSITE__CACHE__TTL_SECONDS=60
        env_prefix="NOTIONSITE__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    notion: NotionSettings = NotionSettings()
    cache: CacheSettings = CacheSettings()
    site: SiteSettings = SiteSettings()
    server: ServerSettings = ServerSettings()
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

import datetime
import logging
import os
import pathlib
import typing

import pydantic
import yaml
from pydantic import Field, HttpUrl

from . import __version__

logger = logging.getLogger(__name__)

TOKEN_ENV_VARS = ("GHLATEST_GITHUB_TOKEN", "GITHUB_TOKEN")

# common settings
MODEL_CONFIG = pydantic.ConfigDict(
    # don't accept unknown keys
    extra="forbid",
    # all fields are immutable
    frozen=True,
    # read inline doc strings
    use_attribute_docstrings=True,
)


class Settings(pydantic.BaseModel):
    """ghlatest settings

    ::

      api_url: https://api.github.com
      per_page: 30
      max_pages: 10
      cache_ttl: 300
      cache_file: ~/.cache/ghlatest/releases.json
    """

    model_config = MODEL_CONFIG

    api_url: HttpUrl = Field(default="https://api.github.com", validate_default=True)
    """Base URL of the API, change for GitHub Enterprise"""

    per_page: int = Field(default=30, ge=1, le=100)
    """Releases requested per page"""

    max_pages: int = Field(default=10, ge=1)
    """Default upper bound of pages scanned per resolution"""

    cache_ttl: float = Field(default=300.0, ge=0)
    """Seconds a resolution result is served without asking the API"""

    cache_file: pathlib.Path | None = None
    """Persist the cache to this JSON file"""

    http_timeout: float = Field(default=30.0, gt=0)
    """Timeout of a single HTTP request in seconds"""

    max_attempts: int = Field(default=4, ge=1)
    """Attempts per page for rate limited and transport failures"""

    backoff_factor: float = Field(default=1.0, ge=0)
    """Factor for exponential backoff between attempts"""

    max_backoff: float = Field(default=60.0, ge=0)
    """Maximum exponential backoff in seconds"""

    max_rate_limit_wait: float = Field(default=300.0, ge=0)
    """Give up instead of waiting longer than this for a rate limit reset"""

    user_agent: str = f"ghlatest/{__version__}"
    """User-Agent header sent with every request"""

    @pydantic.field_validator("cache_file", mode="after")
    @classmethod
    def expand_cache_file(cls, v: pathlib.Path | None) -> pathlib.Path | None:
        if v is None:
            return None
        return v.expanduser()

    @property
    def cache_ttl_delta(self) -> datetime.timedelta:
        return datetime.timedelta(seconds=self.cache_ttl)

    def with_overrides(self, **overrides: typing.Any) -> "Settings":
        """Return a validated copy, ``None`` values leave a field unchanged"""
        updates = {k: v for k, v in overrides.items() if v is not None}
        if not updates:
            return self
        return type(self).model_validate({**self.model_dump(mode="json"), **updates})


def parse_settings(raw_yaml: str) -> Settings:
    """Parse settings from a raw YAML string"""
    parsed: dict[str, typing.Any] | None = yaml.safe_load(raw_yaml)
    if parsed is None:
        return Settings()
    if not isinstance(parsed, dict):
        raise ValueError(f"expected a mapping of settings, got {type(parsed).__name__}")
    return Settings(**parsed)


def load(settings_file: pathlib.Path | None) -> Settings:
    """Load settings from a YAML file, defaults if it does not exist"""
    if settings_file is None or not settings_file.is_file():
        logger.debug("no settings file %s, using defaults", settings_file)
        return Settings()
    logger.debug("loading settings from %s", settings_file)
    return parse_settings(settings_file.read_text(encoding="utf-8"))


def token_from_env(environ: typing.Mapping[str, str] = os.environ) -> str | None:
    """Return the first API token found in the environment"""
    for name in TOKEN_ENV_VARS:
        value = environ.get(name)
        if value:
            return value
    return None

import datetime
import pathlib

import pydantic
import pytest

from ghlatest import settings


def test_defaults() -> None:
    s = settings.Settings()
    assert str(s.api_url) == "https://api.github.com/"
    assert s.per_page == 30
    assert s.max_pages == 10
    assert s.cache_ttl_delta == datetime.timedelta(minutes=5)
    assert s.cache_file is None
    assert s.user_agent.startswith("ghlatest/")


def test_parse_settings() -> None:
    s = settings.parse_settings(
        """
api_url: https://ghe.example.com/api/v3
per_page: 100
cache_ttl: 60
cache_file: ~/releases.json
max_attempts: 2
"""
    )
    assert str(s.api_url) == "https://ghe.example.com/api/v3"
    assert s.per_page == 100
    assert s.cache_ttl == 60.0
    assert s.cache_file == pathlib.Path("~/releases.json").expanduser()
    assert s.max_attempts == 2


def test_parse_empty() -> None:
    assert settings.parse_settings("") == settings.Settings()


@pytest.mark.parametrize(
    "raw",
    [
        "per_page: 500",
        "unknown_key: 1",
        "api_url: not a url",
        "max_attempts: 0",
    ],
)
def test_parse_invalid(raw: str) -> None:
    with pytest.raises(pydantic.ValidationError):
        settings.parse_settings(raw)


def test_parse_not_a_mapping() -> None:
    with pytest.raises(ValueError):
        settings.parse_settings("- a\n- b\n")


def test_frozen() -> None:
    s = settings.Settings()
    with pytest.raises(pydantic.ValidationError):
        s.per_page = 10  # type: ignore[misc]


def test_load(tmp_path: pathlib.Path) -> None:
    assert settings.load(None) == settings.Settings()
    assert settings.load(tmp_path / "missing.yaml") == settings.Settings()
    settings_file = tmp_path / "settings.yaml"
    settings_file.write_text("max_pages: 3\n")
    assert settings.load(settings_file).max_pages == 3


def test_with_overrides(tmp_path: pathlib.Path) -> None:
    s = settings.Settings(max_pages=3)
    assert s.with_overrides(cache_file=None) is s
    updated = s.with_overrides(
        cache_file=tmp_path / "c.json", api_url="https://ghe.example.com/api/v3"
    )
    assert updated.cache_file == tmp_path / "c.json"
    assert str(updated.api_url) == "https://ghe.example.com/api/v3"
    assert updated.max_pages == 3
    with pytest.raises(pydantic.ValidationError):
        s.with_overrides(api_url="nope")


@pytest.mark.parametrize(
    "environ,expected",
    [
        ({}, None),
        ({"GITHUB_TOKEN": "a"}, "a"),
        ({"GHLATEST_GITHUB_TOKEN": "b", "GITHUB_TOKEN": "a"}, "b"),
        ({"GHLATEST_GITHUB_TOKEN": "", "GITHUB_TOKEN": "a"}, "a"),
    ],
)
def test_token_from_env(environ: dict[str, str], expected: str | None) -> None:
    assert settings.token_from_env(environ) == expected

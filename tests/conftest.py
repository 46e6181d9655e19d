import datetime
import logging
import pathlib
import typing

import pytest
import requests_mock
from click.testing import CliRunner

from ghlatest import cache, github, resolver
from ghlatest.candidate import RepositoryIdentity


class FakeClock:
    """Wall clock that only moves when told to"""

    def __init__(self, now: datetime.datetime | None = None) -> None:
        self.now = now or datetime.datetime(2024, 6, 1, 12, 0, tzinfo=datetime.UTC)

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += datetime.timedelta(seconds=seconds)


@pytest.fixture
def identity() -> RepositoryIdentity:
    return RepositoryIdentity(owner="octo", name="widget")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def release_cache(clock: FakeClock) -> cache.ReleaseCache:
    return cache.ReleaseCache(clock=clock)


@pytest.fixture
def client() -> github.GitHubClient:
    return github.GitHubClient("secret-token")


@pytest.fixture
def gh_resolver(
    client: github.GitHubClient,
    release_cache: cache.ReleaseCache,
    clock: FakeClock,
    sleeps: list[float],
) -> resolver.Resolver:
    return resolver.Resolver(
        client,
        release_cache,
        max_attempts=3,
        clock=clock,
        sleep=sleeps.append,
    )


@pytest.fixture
def requests_mocker() -> typing.Generator[requests_mock.Mocker, None, None]:
    with requests_mock.Mocker() as r:
        yield r


@pytest.fixture(autouse=True)
def restore_root_logger() -> typing.Generator[None, None, None]:
    """Drop handlers the command line setup adds to the root logger"""
    root = logging.getLogger()
    handlers = list(root.handlers)
    yield
    for handler in list(root.handlers):
        # pytest's own capture handlers are subclasses
        if handler not in handlers and type(handler) in (
            logging.StreamHandler,
            logging.FileHandler,
        ):
            root.removeHandler(handler)
            handler.close()


@pytest.fixture
def cli_runner(
    tmp_path: pathlib.Path,
) -> typing.Generator[CliRunner, None, None]:
    """Click CLI runner"""
    runner = CliRunner()
    with runner.isolated_filesystem(temp_dir=tmp_path):
        yield runner

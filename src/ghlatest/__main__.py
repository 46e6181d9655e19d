#!/usr/bin/env python3

import logging
import pathlib

import click
import pydantic
import yaml

from . import __version__, clickext, commands, context, log, settings

logger = logging.getLogger(__name__)


@click.group()
@click.version_option(__version__, prog_name="ghlatest")
@click.option(
    "-v",
    "--verbose",
    default=False,
    is_flag=True,
    help="report more detail to the console",
)
@click.option(
    "--log-file",
    type=clickext.ClickPath(),
    help="save detailed report of actions to file",
)
@click.option(
    "--settings-file",
    default=pathlib.Path("~/.config/ghlatest/settings.yaml"),
    type=clickext.ClickPath(),
    help="location of the application settings file",
)
@click.option(
    "--cache-file",
    type=clickext.ClickPath(dir_okay=False),
    help="persist resolution results to this JSON file",
)
@click.option(
    "--api-url",
    type=str,
    default=None,
    help="base URL of the GitHub API, for GitHub Enterprise",
)
@click.option(
    "--token",
    type=str,
    default=None,
    help="API token, defaults to $GHLATEST_GITHUB_TOKEN or $GITHUB_TOKEN",
)
@click.pass_context
def main(
    ctx: click.Context,
    verbose: bool,
    log_file: pathlib.Path | None,
    settings_file: pathlib.Path,
    cache_file: pathlib.Path | None,
    api_url: str | None,
    token: str | None,
) -> None:
    log.setup_logging(verbose=verbose, log_file=log_file)
    if log_file:
        logger.info("logging debug information to %s", log_file)

    settings_file = settings_file.expanduser()
    try:
        active_settings = settings.load(settings_file).with_overrides(
            cache_file=cache_file,
            api_url=api_url,
        )
    except (pydantic.ValidationError, yaml.YAMLError, ValueError) as err:
        ctx.fail(f"invalid settings in {settings_file}: {err}")

    logger.debug("settings file: %s", settings_file)
    logger.debug("api url: %s", active_settings.api_url)
    logger.debug("cache file: %s", active_settings.cache_file)

    if token is None:
        token = settings.token_from_env()
    if ctx.obj is None:
        ctx.obj = context.AppContext(active_settings=active_settings, token=token)


for cmd in commands.commands:
    main.add_command(cmd)


def invoke_main() -> None:
    # Wrapper for the click main command that ensures any exceptions
    # are logged with their traceback.
    try:
        main(auto_envvar_prefix="GHLATEST")
    except Exception as err:
        logger.exception(err)
        raise


if __name__ == "__main__":
    invoke_main()

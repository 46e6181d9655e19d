import datetime
import json
import logging
import typing

import click

from ghlatest import cache as release_cache
from ghlatest import candidate, clickext, context

logger = logging.getLogger(__name__)


@click.group()
def cache() -> None:
    """Inspect and manage cached resolution results.

    Results only outlive a single run when a cache file is configured with
    --cache-file or the cache_file setting.
    """


def _entry_info(
    entry: release_cache.CacheEntry, now: datetime.datetime
) -> dict[str, typing.Any]:
    return {
        "repository": str(entry.identity),
        "tag": entry.result.tag if entry.result is not None else None,
        "fetched_at": entry.fetched_at.isoformat(),
        "expires_at": entry.expires_at.isoformat(),
        "fresh": entry.is_fresh(now),
        "query": entry.query_key,
    }


@cache.command()
@click.option(
    "--json",
    "as_json",
    default=False,
    is_flag=True,
    help="print a JSON document",
)
@click.pass_obj
def show(appctx: context.AppContext, as_json: bool) -> None:
    """List cached results."""
    now = release_cache.utcnow()
    entries = [_entry_info(entry, now) for entry in appctx.cache.entries()]
    if as_json:
        click.echo(json.dumps(entries, indent=2))
        return
    if not entries:
        click.echo("cache is empty", err=True)
        return
    for info in entries:
        state = "fresh" if info["fresh"] else "stale"
        click.echo(
            f"{info['repository']}\t{info['tag'] or '(no match)'}\t"
            f"{state} until {info['expires_at']}"
        )


@cache.command()
@click.argument("repository", type=clickext.RepositoryType(), required=False)
@click.pass_obj
def clear(
    appctx: context.AppContext,
    repository: candidate.RepositoryIdentity | None,
) -> None:
    """Remove the cached result of REPOSITORY, or all results."""
    if repository is None:
        count = len(appctx.cache)
        appctx.cache.clear()
        logger.info("removed %d cache entries", count)
        click.echo(f"removed {count} cache entries")
        return
    if appctx.cache.invalidate(repository):
        click.echo(f"removed cache entry for {repository}")
    else:
        click.echo(f"no cache entry for {repository}", err=True)

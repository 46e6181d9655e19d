import logging
import re

import click

from ghlatest import candidate, clickext, context, reporting, resolver, versions

logger = logging.getLogger(__name__)


@click.command()
@click.option(
    "--pre/--no-pre",
    "include_prerelease",
    default=False,
    help="consider pre-releases",
)
@click.option(
    "--draft/--no-draft",
    "include_draft",
    default=False,
    help="consider draft releases (requires a token with push access)",
)
@click.option(
    "-c",
    "--constraint",
    "version_constraint",
    type=clickext.VersionConstraintType(),
    default=None,
    help="only consider versions matching this constraint, e.g. '>=1.2,<2'",
)
@click.option(
    "--max-pages",
    type=click.IntRange(min=1),
    default=None,
    help="maximum number of pages to scan [default: from settings]",
)
@click.option(
    "--fallback/--no-fallback",
    "fallback_to_published",
    default=False,
    help="use the most recently published release when no tag is a version",
)
@click.option(
    "--source",
    type=click.Choice([s.value for s in candidate.ReleaseSource]),
    default=candidate.ReleaseSource.RELEASES.value,
    show_default=True,
    help="list releases or plain tags",
)
@click.option(
    "--match",
    "tag_pattern",
    type=clickext.TagPatternType(),
    default=None,
    help="only consider tags matching this regular expression, its first group is the version",
)
@click.option(
    "--early-exit/--no-early-exit",
    default=True,
    show_default=True,
    help="stop paging once a page only holds releases older than the best match",
)
@click.option(
    "--json",
    "as_json",
    default=False,
    is_flag=True,
    help="print a JSON document instead of the tag",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="give up after this many seconds",
)
@click.argument("repository", type=clickext.RepositoryType())
@click.pass_context
def resolve(
    ctx: click.Context,
    repository: candidate.RepositoryIdentity,
    include_prerelease: bool,
    include_draft: bool,
    version_constraint: versions.VersionConstraint | None,
    max_pages: int | None,
    fallback_to_published: bool,
    source: str,
    tag_pattern: re.Pattern[str] | None,
    early_exit: bool,
    as_json: bool,
    timeout: float | None,
) -> None:
    """Print the latest release tag of REPOSITORY.

    REPOSITORY is "owner/name" or a repository URL such as
    "https://github.com/owner/name".

    Exit codes:
    - 0: a release was found
    - 1: no release matches
    - 2: the API lookup failed
    - 3: cancelled or timed out
    """
    appctx: context.AppContext = ctx.obj
    query = candidate.ResolutionQuery(
        identity=repository,
        include_prerelease=include_prerelease,
        include_draft=include_draft,
        version_constraint=version_constraint,
        max_pages=max_pages or appctx.settings.max_pages,
        fallback_to_published=fallback_to_published,
        early_exit=early_exit,
        source=candidate.ReleaseSource(source),
        tag_pattern=tag_pattern,
    )
    logger.debug("resolving %s with %s", repository, query.cache_key)

    outcome = appctx.resolver.resolve(query, timeout=timeout)

    if as_json:
        click.echo(reporting.to_json(outcome))
    else:
        match outcome:
            case resolver.Resolved():
                click.echo(outcome.candidate.tag)
                if outcome.warning:
                    click.echo(f"warning: {outcome.warning}", err=True)
            case _:
                click.echo(reporting.format_text(outcome), err=True)
    ctx.exit(reporting.exit_code(outcome))

import os
import pathlib
import re

import click

from . import candidate, errors, versions


class ClickPath(click.Path):
    """ClickPath that returns pathlib.Path"""

    def convert(
        self,
        value: str | os.PathLike[str],
        param: click.core.Parameter | None,
        ctx: click.core.Context | None,
    ) -> pathlib.Path:
        path = super().convert(value=value, param=param, ctx=ctx)
        if isinstance(path, bytes):
            return pathlib.Path(os.fsdecode(path))
        return pathlib.Path(path)


class RepositoryType(click.ParamType):
    """Repository as ``owner/name`` or URL, returns a RepositoryIdentity"""

    name = "repository"

    def convert(
        self,
        value: str | candidate.RepositoryIdentity,
        param: click.core.Parameter | None,
        ctx: click.core.Context | None,
    ) -> candidate.RepositoryIdentity:
        if isinstance(value, candidate.RepositoryIdentity):
            return value
        try:
            return candidate.RepositoryIdentity.parse(value)
        except ValueError as e:
            self.fail(f"Invalid repository '{value}' ({e})", param, ctx)


class VersionConstraintType(click.ParamType):
    """Version constraint type that returns a VersionConstraint"""

    name = "version_constraint"

    def convert(
        self,
        value: str | versions.VersionConstraint,
        param: click.core.Parameter | None,
        ctx: click.core.Context | None,
    ) -> versions.VersionConstraint:
        if isinstance(value, versions.VersionConstraint):
            return value
        try:
            return versions.VersionConstraint(value)
        except errors.ParseError as e:
            self.fail(f"Invalid version constraint '{value}' ({e.reason})", param, ctx)


class TagPatternType(click.ParamType):
    """Regular expression selecting tags, its first group is the version"""

    name = "tag_pattern"

    def convert(
        self,
        value: str | re.Pattern[str],
        param: click.core.Parameter | None,
        ctx: click.core.Context | None,
    ) -> re.Pattern[str]:
        if isinstance(value, re.Pattern):
            return value
        try:
            return re.compile(value)
        except re.error as e:
            self.fail(f"Invalid tag pattern '{value}' ({e})", param, ctx)

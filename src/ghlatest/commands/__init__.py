import click

from . import cache, resolve

commands: list[click.Command] = [
    cache.cache,
    resolve.resolve,
]

import contextlib
import contextvars
import logging
import typing

from .candidate import RepositoryIdentity

TERSE_LOG_FMT = "%(message)s"
VERBOSE_LOG_FMT = "%(asctime)s %(levelname)s:%(name)s:%(lineno)d: %(message)s"

repository_ctxvar: contextvars.ContextVar[RepositoryIdentity] = contextvars.ContextVar(
    "repository"
)


@contextlib.contextmanager
def repo_ctxvar_context(
    identity: RepositoryIdentity,
) -> typing.Generator[None, None, None]:
    """Context manager for repository_ctxvar"""
    token = repository_ctxvar.set(identity)
    try:
        yield None
    finally:
        repository_ctxvar.reset(token)


class GhLatestLogRecord(logging.LogRecord):
    """Logger record factory to add the repository from context var

    The class prepends f"{owner}/{name}: " to every log message if-and-only-if
    ``repository_ctxvar`` is set for the current context. The resolver sets
    it for the duration of a resolution.
    """

    def getMessage(self) -> str:  # noqa: N802
        msg = super().getMessage()
        try:
            identity = repository_ctxvar.get()
        except LookupError:
            return msg
        return f"{identity}: {msg}"


def setup_logging(
    verbose: bool = False,
    log_file: typing.Any = None,
) -> None:
    """Configure the root logger for command line use"""
    logging.setLogRecordFactory(GhLatestLogRecord)
    # Set the overall logger level to debug and allow the handlers to filter
    # messages at their own level.
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    stream_handler.setFormatter(
        logging.Formatter(VERBOSE_LOG_FMT if verbose else TERSE_LOG_FMT)
    )
    root.addHandler(stream_handler)
    if log_file:
        # Always log to the file at debug level
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(VERBOSE_LOG_FMT))
        root.addHandler(file_handler)

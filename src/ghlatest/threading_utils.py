"""Threading utilities for the ghlatest package."""

import contextlib
import threading
import time
import typing
from collections.abc import Callable

from .errors import ResolutionCancelled

# how often a waiter re-checks its cancellation event and deadline
_POLL_INTERVAL = 0.05


class _KeyState:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class KeyedLock:
    """Table of per-key mutual exclusion locks.

    Different keys never block each other. The table lock is only held to
    look up or retire a key's lock, never while the caller's work runs.
    Locks of keys nobody holds or waits for are removed from the table.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._keys: dict[typing.Hashable, _KeyState] = {}

    def in_flight(self, key: typing.Hashable) -> bool:
        """Return True while some caller holds or waits for *key*"""
        with self._lock:
            return key in self._keys

    @contextlib.contextmanager
    def hold(
        self,
        key: typing.Hashable,
        cancel: threading.Event | None = None,
        deadline: float | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> typing.Generator[bool, None, None]:
        """Hold the lock for *key*, yields True if the caller had to wait

        Raises :class:`~ghlatest.errors.ResolutionCancelled` when *cancel*
        is set or *deadline* (on the *monotonic* clock) passes while
        waiting.
        """
        with self._lock:
            state = self._keys.get(key)
            if state is None:
                state = self._keys[key] = _KeyState()
            state.users += 1
        try:
            waited = not state.lock.acquire(blocking=False)
            if waited:
                while not state.lock.acquire(timeout=_POLL_INTERVAL):
                    if cancel is not None and cancel.is_set():
                        raise ResolutionCancelled(f"cancelled waiting for {key}")
                    if deadline is not None and monotonic() >= deadline:
                        raise ResolutionCancelled(
                            f"deadline exceeded waiting for {key}"
                        )
            try:
                yield waited
            finally:
                state.lock.release()
        finally:
            with self._lock:
                state.users -= 1
                if state.users == 0:
                    del self._keys[key]

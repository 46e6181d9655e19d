from __future__ import annotations

import logging
import threading

from . import settings
from .cache import ReleaseCache
from .ratelimit import RateLimitState
from .resolver import Resolver

logger = logging.getLogger(__name__)


class AppContext:
    """State shared by the command line commands

    The resolver, with its HTTP session and cache, is only built when a
    command needs it.
    """

    def __init__(
        self,
        active_settings: settings.Settings | None = None,
        token: str | None = None,
        resolver: Resolver | None = None,
    ):
        if active_settings is None:
            active_settings = settings.Settings()
        self.settings = active_settings
        self.token = token
        self._resolver = resolver
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<AppContext api_url={self.settings.api_url} token={'set' if self.token else 'unset'}>"

    @property
    def resolver(self) -> Resolver:
        with self._lock:
            if self._resolver is None:
                logger.debug("creating resolver for %s", self.settings.api_url)
                self._resolver = Resolver.from_settings(self.settings, token=self.token)
            return self._resolver

    @property
    def cache(self) -> ReleaseCache:
        return self.resolver.cache

    @property
    def rate_limit(self) -> RateLimitState:
        return self.resolver.rate_limit

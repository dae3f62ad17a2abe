"""Process-wide services with an explicit start/shutdown lifecycle."""

import asyncio
import logging

from fastapi import Request

from backend.database import SessionLocal
from backend.services.answering import GeminiAnswerer
from backend.services.cache import CacheBackend, ReadThroughCache, build_cache_backend
from backend.services.change_feed import ChangeFeed
from backend.services.invalidator import CacheInvalidator
from backend.services.notification_hub import NotificationHub

logger = logging.getLogger(__name__)


class AppServices:
    def __init__(
        self,
        session_factory=SessionLocal,
        cache_backend: CacheBackend | None = None,
        answerer: GeminiAnswerer | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.cache = ReadThroughCache(cache_backend if cache_backend is not None else build_cache_backend())
        self.change_feed = ChangeFeed()
        self.invalidator = CacheInvalidator(self.cache)
        self.hub = NotificationHub()
        self.answerer = answerer if answerer is not None else GeminiAnswerer()
        self.started = False

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        if self.started:
            return

        self.change_feed.attach(self.session_factory)
        self.invalidator.register(self.change_feed)
        self.hub.register(self.change_feed)
        self.change_feed.start()
        if loop is not None:
            self.hub.bind_loop(loop)

        self.answerer.start()
        db = self.session_factory()
        try:
            self.answerer.refresh_directory(db)
        finally:
            db.close()

        self.started = True
        logger.info('Application services started.')

    def shutdown(self) -> None:
        if not self.started:
            return
        self.change_feed.stop()
        self.change_feed.detach()
        close = getattr(self.cache.backend, 'close', None)
        if close is not None:
            close()
        self.started = False
        logger.info('Application services stopped.')


def get_services(request: Request) -> AppServices:
    return request.app.state.services


def get_cache(request: Request) -> ReadThroughCache:
    return request.app.state.services.cache

"""Realtime push to connected clients, grouped into per-account rooms."""

import asyncio
import logging
from collections import defaultdict
from threading import Lock

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from backend.services.change_feed import INSERT, ChangeEvent, ChangeFeed

logger = logging.getLogger(__name__)


def patient_room(patient_id) -> str:
    return f'patient:{patient_id}'


class NotificationHub:
    def __init__(self) -> None:
        self._rooms: dict[str, set[WebSocket]] = defaultdict(set)
        self._lock = Lock()
        self._loop: asyncio.AbstractEventLoop | None = None

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def register(self, feed: ChangeFeed) -> None:
        feed.subscribe('reports', self.on_report_change)

    async def connect(self, room: str, websocket: WebSocket) -> None:
        await websocket.accept()
        with self._lock:
            self._rooms[room].add(websocket)
        logger.debug('Socket joined room %s', room)

    def disconnect(self, room: str, websocket: WebSocket) -> None:
        with self._lock:
            members = self._rooms.get(room)
            if members is None:
                return
            members.discard(websocket)
            if not members:
                del self._rooms[room]

    def connection_count(self, room: str) -> int:
        with self._lock:
            return len(self._rooms.get(room, ()))

    async def broadcast(self, room: str, message: dict) -> None:
        with self._lock:
            members = list(self._rooms.get(room, ()))

        for websocket in members:
            try:
                await websocket.send_json(message)
            except Exception:
                logger.warning('Dropping socket in room %s after a failed send.', room, exc_info=True)
                self.disconnect(room, websocket)

    def publish(self, room: str, event_name: str, payload) -> None:
        """Schedule a push from any thread; delivery is best effort."""
        if self._loop is None or self._loop.is_closed():
            logger.debug('Notification hub has no event loop; skipping %s for %s.', event_name, room)
            return

        message = {'event': event_name, 'data': jsonable_encoder(payload)}
        future = asyncio.run_coroutine_threadsafe(self.broadcast(room, message), self._loop)
        future.add_done_callback(self._log_failure)

    @staticmethod
    def _log_failure(future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error('Realtime notification failed: %s', error)

    def on_report_change(self, change: ChangeEvent) -> None:
        if change.operation_type != INSERT or not change.full_document:
            return
        report = change.full_document
        self.publish(patient_room(report.get('patient_id')), 'new_report', report)

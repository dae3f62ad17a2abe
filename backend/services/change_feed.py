"""Change notifications for committed writes.

``ChangeFeed`` listens to a session factory's flush and commit events and
publishes one ``ChangeEvent`` per inserted, updated or deleted row once the
transaction commits. Rolled-back work is never published.

Each collection (table) gets its own queue and worker thread, so events for
one collection are handled one at a time and in commit order, while
collections do not wait on each other. Subscriber failures are logged and
dropped; they never reach the code that made the write.
"""

import logging
import queue
from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock, Thread
from typing import Any, Callable

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

INSERT = 'insert'
UPDATE = 'update'
DELETE = 'delete'

_PENDING_KEY = 'pending_change_events'
_STOP = object()


@dataclass
class ChangeEvent:
    collection: str
    operation_type: str
    document_key: Any
    full_document: dict | None = field(default=None)


Subscriber = Callable[[ChangeEvent], None]


def snapshot(instance) -> dict:
    state = inspect(instance)
    return {attr.key: getattr(instance, attr.key) for attr in state.mapper.column_attrs}


def _document_key(instance):
    # Identity keys are assigned after after_flush runs; read the primary key columns instead.
    key = inspect(instance).mapper.primary_key_from_instance(instance)
    return key[0] if len(key) == 1 else tuple(key)


class ChangeFeed:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscriber]] = defaultdict(list)
        self._queues: dict[str, queue.Queue] = {}
        self._workers: dict[str, Thread] = {}
        self._lock = Lock()
        self._running = False
        self._attached: list = []

    def subscribe(self, collection: str, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers[collection].append(subscriber)

    def attach(self, session_factory) -> None:
        """Start observing sessions made by ``session_factory`` (a sessionmaker)."""
        event.listen(session_factory, 'after_flush', self._collect)
        event.listen(session_factory, 'after_commit', self._publish_pending)
        event.listen(session_factory, 'after_rollback', self._discard_pending)
        self._attached.append(session_factory)

    def detach(self) -> None:
        for session_factory in self._attached:
            event.remove(session_factory, 'after_flush', self._collect)
            event.remove(session_factory, 'after_commit', self._publish_pending)
            event.remove(session_factory, 'after_rollback', self._discard_pending)
        self._attached.clear()

    def start(self) -> None:
        with self._lock:
            self._running = True
            for collection in list(self._subscribers):
                self._ensure_worker(collection)

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            self._running = False
            workers = list(self._workers.items())
            self._workers.clear()

        for collection, _ in workers:
            self._queues[collection].put(_STOP)
        for _, worker in workers:
            worker.join(timeout)

    def join(self) -> None:
        """Block until every published event has been handled."""
        for event_queue in list(self._queues.values()):
            event_queue.join()

    def publish(self, change: ChangeEvent) -> None:
        with self._lock:
            if change.collection not in self._subscribers:
                return
            if not self._running:
                logger.warning('Change feed not running; dropping %s event for %s.', change.operation_type, change.collection)
                return
            event_queue = self._ensure_worker(change.collection)
        event_queue.put(change)

    def _ensure_worker(self, collection: str) -> queue.Queue:
        event_queue = self._queues.setdefault(collection, queue.Queue())
        if collection not in self._workers:
            worker = Thread(
                target=self._run,
                args=(collection, event_queue),
                name=f'change-feed-{collection}',
                daemon=True,
            )
            self._workers[collection] = worker
            worker.start()
        return event_queue

    def _run(self, collection: str, event_queue: queue.Queue) -> None:
        while True:
            change = event_queue.get()
            try:
                if change is _STOP:
                    return
                for subscriber in list(self._subscribers.get(collection, ())):
                    try:
                        subscriber(change)
                    except Exception:
                        logger.exception(
                            'Change subscriber %r failed for %s %s %s.',
                            subscriber,
                            collection,
                            change.operation_type,
                            change.document_key,
                        )
            finally:
                event_queue.task_done()

    def _collect(self, session: Session, flush_context) -> None:
        pending = session.info.setdefault(_PENDING_KEY, [])

        for instance in session.new:
            pending.append(ChangeEvent(
                collection=instance.__tablename__,
                operation_type=INSERT,
                document_key=_document_key(instance),
                full_document=snapshot(instance),
            ))
        for instance in session.dirty:
            if not session.is_modified(instance, include_collections=False):
                continue
            pending.append(ChangeEvent(
                collection=instance.__tablename__,
                operation_type=UPDATE,
                document_key=_document_key(instance),
                full_document=snapshot(instance),
            ))
        for instance in session.deleted:
            pending.append(ChangeEvent(
                collection=instance.__tablename__,
                operation_type=DELETE,
                document_key=_document_key(instance),
            ))

    def _publish_pending(self, session: Session) -> None:
        for change in session.info.pop(_PENDING_KEY, []):
            self.publish(change)

    def _discard_pending(self, session: Session) -> None:
        session.info.pop(_PENDING_KEY, None)

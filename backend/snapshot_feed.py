import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Iterable, Tuple

from sqlalchemy import event

logger = logging.getLogger(__name__)

CHANGED_TABLES_KEY = "snapshot_feed_changed_tables"


@dataclass(frozen=True)
class SnapshotNotification:
    collections: FrozenSet[str]


class Subscription:
    def __init__(self, feed: "SnapshotFeed", token: int):
        self._feed = feed
        self._token = token

    def unsubscribe(self) -> None:
        self._feed._remove(self._token)


class SnapshotFeed:
    """Pushes a notification to subscribers after each commit that touched their collections.

    Collections are table names. Subscribers re-read their data on
    notification; nothing mutable is shared with them.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counter = itertools.count(1)
        self._subscribers: Dict[int, Tuple[FrozenSet[str], Callable[[SnapshotNotification], None]]] = {}

    def subscribe(self, collections: Iterable[str], callback: Callable[[SnapshotNotification], None]) -> Subscription:
        token = next(self._counter)
        with self._lock:
            self._subscribers[token] = (frozenset(collections), callback)
        return Subscription(self, token)

    def _remove(self, token: int) -> None:
        with self._lock:
            self._subscribers.pop(token, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, collections: Iterable[str]) -> int:
        changed = frozenset(collections)
        if not changed:
            return 0
        with self._lock:
            targets = [cb for wanted, cb in self._subscribers.values() if wanted & changed]
        notification = SnapshotNotification(collections=changed)
        for callback in targets:
            try:
                callback(notification)
            except Exception as exc:
                logger.error("Snapshot subscriber failed for %s: %s", sorted(changed), exc)
        return len(targets)

    def _collect(self, session, flush_context, instances) -> None:
        touched = session.info.setdefault(CHANGED_TABLES_KEY, set())
        for obj in itertools.chain(session.new, session.dirty, session.deleted):
            table = getattr(obj, "__tablename__", None)
            if table:
                touched.add(table)

    def _after_commit(self, session) -> None:
        touched = session.info.pop(CHANGED_TABLES_KEY, None)
        if touched:
            self.publish(touched)

    def _after_rollback(self, session) -> None:
        session.info.pop(CHANGED_TABLES_KEY, None)

    def attach(self, target) -> None:
        """Listen on a ``sessionmaker`` (or ``Session`` class) for committed writes."""
        if event.contains(target, "after_commit", self._after_commit):
            return
        event.listen(target, "before_flush", self._collect)
        event.listen(target, "after_commit", self._after_commit)
        event.listen(target, "after_rollback", self._after_rollback)

    def detach(self, target) -> None:
        if not event.contains(target, "after_commit", self._after_commit):
            return
        event.remove(target, "before_flush", self._collect)
        event.remove(target, "after_commit", self._after_commit)
        event.remove(target, "after_rollback", self._after_rollback)


feed = SnapshotFeed()

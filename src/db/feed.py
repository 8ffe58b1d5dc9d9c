"""
Change feed: insert / update / delete events per (game, table), pushed to every subscriber.

Delivery is at-least-once and keeps the publish order per row; there is no ordering guarantee across tables.
`Feed` / `FeedSubscription` describe what the repository and the sessions rely on. `ChangeFeed` implements them
in process: it only reaches sessions of the same process and is what the tests run against. Lanes in separate
processes share a `RedisChangeFeed` (src/db/redis_feed.py).
"""

import logging
import queue
import threading
from collections import defaultdict
from typing import Iterator, Optional, Protocol

from src.core.models import ChangeEvent
from src.core.shared_types import Table

logger = logging.getLogger(__name__)

_CLOSED = object()


class FeedSubscription(Protocol):
    @property
    def delivered(self) -> int:
        ...

    @property
    def closed(self) -> bool:
        ...

    def listen(self) -> Iterator[ChangeEvent]:
        ...

    def close(self) -> None:
        ...


class Feed(Protocol):
    def subscribe(self, game_id: str, table: Table) -> FeedSubscription:
        ...

    def publish(self, game_id: str, event: ChangeEvent) -> int:
        ...

    def subscriber_count(self, game_id: str, table: Optional[Table] = None) -> int:
        ...


class Subscription:
    """Events for one (game, table) pair. Iterate `listen()` from a single listener; `close()` ends the iteration."""

    def __init__(self, feed: "ChangeFeed", game_id: str, table: Table) -> None:
        self.feed = feed
        self.game_id = game_id
        self.table = table
        self._queue: queue.Queue = queue.Queue()
        self._lock = threading.Lock()
        self._delivered = 0
        self._closed = False

    @property
    def delivered(self) -> int:
        """Number of events handed to this subscription so far."""
        with self._lock:
            return self._delivered

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, event: ChangeEvent) -> None:
        with self._lock:
            if self._closed:
                return
            self._delivered += 1
            self._queue.put(event)

    def listen(self) -> Iterator[ChangeEvent]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield item

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.feed.unsubscribe(self)
        self._queue.put(_CLOSED)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class ChangeFeed:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: dict[tuple[str, Table], list[Subscription]] = defaultdict(list)

    def subscribe(self, game_id: str, table: Table) -> Subscription:
        subscription = Subscription(self, game_id, table)
        with self._lock:
            self._subscriptions[(game_id, table)].append(subscription)
        logger.debug("Subscribed to %s of game %s", table, game_id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        key = (subscription.game_id, subscription.table)
        with self._lock:
            subscribers = self._subscriptions.get(key, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscriptions.pop(key, None)
        logger.debug("Unsubscribed from %s of game %s", subscription.table, subscription.game_id)

    def publish(self, game_id: str, event: ChangeEvent) -> int:
        """Push `event` to every subscriber of (game_id, event.table). Returns the number of subscribers reached."""
        with self._lock:
            subscribers = list(self._subscriptions.get((game_id, event.table), []))
        for subscription in subscribers:
            subscription.deliver(event)
        return len(subscribers)

    def subscriber_count(self, game_id: str, table: Optional[Table] = None) -> int:
        with self._lock:
            return sum(
                len(subs)
                for (sub_game, sub_table), subs in self._subscriptions.items()
                if sub_game == game_id and (table is None or sub_table == table)
            )

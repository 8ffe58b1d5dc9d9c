"""
Change feed over Redis pub/sub, for lanes running in separate processes.

One channel per (game, table). Events travel as JSON and are decoded back into ChangeEvents on arrival.
`RedisChangeFeed` offers the same subscribe / publish surface as the in-process `ChangeFeed`.
NOTE Redis pub/sub delivers only while a subscriber is connected: a session that lost its connection must reload().
"""

import json
import logging
import threading
from dataclasses import asdict
from datetime import datetime
from typing import Any, Iterator, Optional
from uuid import UUID

import redis

from src.core.config import REDIS_URL
from src.core.exceptions import TransientIOError
from src.core.models import ChangeEvent, PlayerModel, RollModel
from src.core.shared_types import ChangeOp, Table
from src.db.feed import ChangeFeed, Feed

logger = logging.getLogger(__name__)

# How long listen() waits on the socket before checking whether the subscription was closed.
_POLL_SECONDS = 0.1


def channel_name(game_id: str, table: Table) -> str:
    return f"scorecard:{game_id}:{table}"


def encode_event(event: ChangeEvent) -> str:
    record = {key: _encode_value(value) for key, value in asdict(event.record).items()}
    return json.dumps({"op": str(event.op), "table": str(event.table), "record": record})


def decode_event(payload: str | bytes) -> ChangeEvent:
    data = json.loads(payload)
    table = Table(data["table"])
    fields = data["record"]
    common = {
        "id": UUID(fields["id"]),
        "game_id": fields["game_id"],
        "created_at": datetime.fromisoformat(fields["created_at"]),
    }
    record: RollModel | PlayerModel
    if table == Table.ROLLS:
        record = RollModel(
            player_id=UUID(fields["player_id"]),
            frame=fields["frame"],
            roll=fields["roll"],
            pins=fields["pins"],
            **common,
        )
    elif table == Table.PLAYERS:
        record = PlayerModel(display_name=fields["display_name"], **common)
    else:
        raise ValueError(f"No change events are published for table {table}.")
    return ChangeEvent(op=ChangeOp(data["op"]), table=table, record=record)


def _encode_value(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class RedisSubscription:
    """One pub/sub connection on the channel of (game, table). Iterate `listen()` from a single listener thread."""

    def __init__(self, feed: "RedisChangeFeed", game_id: str, table: Table) -> None:
        self.feed = feed
        self.game_id = game_id
        self.table = table
        self.channel = channel_name(game_id, table)
        self._pubsub = feed.client.pubsub(ignore_subscribe_messages=True)
        self._pubsub.subscribe(self.channel)
        self._lock = threading.Lock()
        self._delivered = 0
        self._stop = threading.Event()
        self._listening = False
        self._released = False

    @property
    def delivered(self) -> int:
        """Number of events received on the channel so far."""
        with self._lock:
            return self._delivered

    @property
    def closed(self) -> bool:
        return self._stop.is_set()

    def listen(self) -> Iterator[ChangeEvent]:
        self._listening = True
        try:
            while not self._stop.is_set():
                try:
                    message = self._pubsub.get_message(timeout=_POLL_SECONDS)
                except redis.ConnectionError as exc:
                    logger.warning("Lost change feed on %s: %s", self.channel, exc)
                    return
                if message is None or message.get("type") != "message":
                    continue
                with self._lock:
                    self._delivered += 1
                yield decode_event(message["data"])
        finally:
            self._release()

    def close(self) -> None:
        """Stop listening. The listener (if any) releases the connection on its next poll."""
        self._stop.set()
        if not self._listening:
            self._release()

    def _release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
        try:
            self._pubsub.unsubscribe(self.channel)
        except redis.ConnectionError as exc:
            logger.debug("Could not unsubscribe from %s: %s", self.channel, exc)
        finally:
            self._pubsub.close()
        logger.debug("Unsubscribed from %s", self.channel)

    def __enter__(self) -> "RedisSubscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class RedisChangeFeed:
    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisChangeFeed":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def subscribe(self, game_id: str, table: Table) -> RedisSubscription:
        try:
            subscription = RedisSubscription(self, game_id, table)
        except redis.ConnectionError as exc:
            raise TransientIOError(
                f"Failed to subscribe to {channel_name(game_id, table)}: {exc}"
            ) from exc
        logger.debug("Subscribed to %s", subscription.channel)
        return subscription

    def publish(self, game_id: str, event: ChangeEvent) -> int:
        """Push `event` on the (game_id, event.table) channel. Returns the number of subscribers reached."""
        channel = channel_name(game_id, event.table)
        try:
            return self.client.publish(channel, encode_event(event))
        except redis.ConnectionError as exc:
            logger.warning("Failed to publish %s on %s: %s", event.op, channel, exc)
            raise TransientIOError(f"Failed to publish change on {channel}: {exc}") from exc

    def subscriber_count(self, game_id: str, table: Optional[Table] = None) -> int:
        tables = [table] if table is not None else [Table.PLAYERS, Table.ROLLS]
        counts = self.client.pubsub_numsub(*(channel_name(game_id, t) for t in tables))
        return sum(count for _, count in counts)


def feed_from_config() -> Feed:
    """Redis pub/sub when REDIS_URL is set, otherwise the in-process feed."""
    if REDIS_URL:
        logger.info("Change feed: Redis pub/sub")
        return RedisChangeFeed.from_url(REDIS_URL)
    logger.info("Change feed: in process (REDIS_URL not set)")
    return ChangeFeed()

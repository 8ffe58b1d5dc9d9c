"""Unit tests for src/db/feed.py"""

import threading

from src.core.models import ChangeEvent
from src.core.shared_types import ChangeOp, Table
from src.db.feed import ChangeFeed


def _roll_event(make_rolls, pins: int = 3) -> ChangeEvent:
    (roll,) = make_rolls({0: [pins]})
    return ChangeEvent(op=ChangeOp.INSERT, table=Table.ROLLS, record=roll)


def test_publish_reaches_matching_subscribers_only(make_rolls) -> None:
    feed = ChangeFeed()
    rolls = feed.subscribe("12345", Table.ROLLS)
    players = feed.subscribe("12345", Table.PLAYERS)
    other_game = feed.subscribe("54321", Table.ROLLS)

    event = _roll_event(make_rolls)
    assert feed.publish("12345", event) == 1

    assert rolls.delivered == 1
    assert players.delivered == 0
    assert other_game.delivered == 0


def test_events_keep_publish_order(make_rolls) -> None:
    feed = ChangeFeed()
    subscription = feed.subscribe("12345", Table.ROLLS)
    events = [_roll_event(make_rolls, pins) for pins in range(5)]
    for event in events:
        feed.publish("12345", event)
    subscription.close()
    assert list(subscription.listen()) == events


def test_close_unsubscribes_and_stops_listener(make_rolls) -> None:
    feed = ChangeFeed()
    received = []
    subscription = feed.subscribe("12345", Table.ROLLS)

    def listener() -> None:
        for event in subscription.listen():
            received.append(event)

    thread = threading.Thread(target=listener)
    thread.start()
    feed.publish("12345", _roll_event(make_rolls))
    subscription.close()
    thread.join(timeout=2)

    assert not thread.is_alive()
    assert len(received) == 1
    assert feed.subscriber_count("12345") == 0
    # Nothing is delivered after closing.
    assert feed.publish("12345", _roll_event(make_rolls)) == 0
    assert subscription.delivered == 1


def test_subscription_as_context_manager() -> None:
    feed = ChangeFeed()
    with feed.subscribe("12345", Table.PLAYERS) as subscription:
        assert feed.subscriber_count("12345", Table.PLAYERS) == 1
    assert subscription.closed
    assert feed.subscriber_count("12345") == 0

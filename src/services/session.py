"""
A client's live view of one game.

Opening a session loads a snapshot of the game and subscribes to its change feed. A background listener per
subscription forwards events into a bounded queue; the thread that owns the session drains that queue and merges
the events (reconciliation). Derivation therefore stays single-threaded per game, and nothing re-enters from a callback.

Input is applied optimistically: the turn moves on as soon as a roll is entered, before the write is acknowledged.
The scoreboard rebuilt after reconciliation is the source of truth and silently overrides any drift.
Always use the session as a context manager (or call close()) so the listeners and subscriptions are torn down.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Optional
from uuid import UUID

from src.api.models import (
    FrameResponse,
    PlayerScoreResponse,
    ScoreboardResponse,
    SelectionResponse,
)
from src.bowling.pins import max_pins, parse_pin_token, validate_pins
from src.bowling.scoreboard import Scoreboard
from src.bowling.turns import ActiveSelection, TurnSequencer
from src.core.config import FEED_QUEUE_SIZE
from src.core.exceptions import (
    ConflictError,
    GameError,
    NotFoundError,
    TransientIOError,
    ValidationError,
)
from src.core.models import ChangeEvent, RollModel
from src.core.shared_types import PINS_PER_RACK, ChangeOp, Table
from src.db.feed import Feed, FeedSubscription
from src.db.repository import ScorecardRepository

logger = logging.getLogger(__name__)

# How long a listener waits on a full queue before checking whether it should stop.
_LISTENER_POLL_SECONDS = 0.1
_SUBSCRIBED_TABLES = (Table.PLAYERS, Table.ROLLS)

Slot = tuple[UUID, int, int]  # (player id, frame index, roll index)


class GameSession:
    def __init__(
        self,
        repository: ScorecardRepository,
        feed: Feed,
        game_id: str,
        queue_size: int = FEED_QUEUE_SIZE,
    ) -> None:
        self.repo = repository
        self.feed = feed
        self.game_id = game_id
        self.turns = TurnSequencer()
        self._scoreboard: Optional[Scoreboard] = None
        self._events: queue.Queue[ChangeEvent] = queue.Queue(maxsize=queue_size)
        self._subscriptions: list[FeedSubscription] = []
        self._listeners: list[threading.Thread] = []
        self._applied = 0
        # Rolls this client entered that reconciliation has not confirmed yet.
        self._pending: dict[Slot, int] = {}

    # -- Lifecycle --
    def open(self) -> GameSession:
        if self._subscriptions:
            return self
        if self.repo.get_game(self.game_id) is None:
            raise NotFoundError(f"Game with {self.game_id=} not found.")

        try:
            # Subscribe before taking the snapshot: events racing the snapshot are merged twice, which is harmless.
            for table in _SUBSCRIBED_TABLES:
                subscription = self.feed.subscribe(self.game_id, table)
                listener = threading.Thread(
                    target=self._listen,
                    args=(subscription,),
                    name=f"feed-{table}-{self.game_id}",
                    daemon=True,
                )
                self._subscriptions.append(subscription)
                self._listeners.append(listener)
                listener.start()

            self._scoreboard = Scoreboard(
                self.game_id,
                players=self.repo.list_players(self.game_id),
                rolls=self.repo.list_rolls(self.game_id),
            )
        except GameError:
            self.close()
            raise

        self._reselect()
        logger.info("Session opened for game %s", self.game_id)
        return self

    def close(self) -> None:
        for subscription in self._subscriptions:
            subscription.close()
        for listener in self._listeners:
            listener.join(timeout=1.0)
            if listener.is_alive():
                logger.warning("Feed listener %s did not stop in time", listener.name)
        if self._subscriptions:
            logger.info("Session closed for game %s", self.game_id)
        self._subscriptions.clear()
        self._listeners.clear()

    @property
    def is_open(self) -> bool:
        return bool(self._subscriptions)

    def __enter__(self) -> GameSession:
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- Read side --
    @property
    def scoreboard(self) -> Scoreboard:
        if self._scoreboard is None:
            raise GameError("Session is not open.")
        return self._scoreboard

    @property
    def selection(self) -> Optional[ActiveSelection]:
        return self.turns.active

    def max_pins(self) -> int:
        """Legal-pins ceiling for the active selection (a full rack when nothing is selected)."""
        active = self.turns.active
        if active is None:
            return PINS_PER_RACK
        return max_pins(
            self._known_rolls(active.player_id, active.frame_index),
            active.frame_index,
            active.roll_index,
        )

    def to_response(self) -> ScoreboardResponse:
        selection = None
        if self.turns.active is not None:
            selection = SelectionResponse(
                player_id=self.turns.active.player_id,
                frame_index=self.turns.active.frame_index,
                roll_index=self.turns.active.roll_index,
                max_pins=self.max_pins(),
            )
        return scoreboard_response(self.scoreboard, selection)

    # -- Reconciliation --
    def drain(self, timeout: float = 0.0) -> int:
        """Merge every event waiting in the queue. With a timeout, wait that long for the first one. Returns the count merged."""
        merged = 0
        wait = timeout > 0
        while True:
            try:
                event = self._events.get(block=wait, timeout=timeout if wait else None)
            except queue.Empty:
                break
            self.scoreboard.apply(event)
            self._settle_pending(event)
            self._applied += 1
            merged += 1
            wait = False

        if merged:
            self._reselect()
        return merged

    def sync(self, timeout: float = 2.0) -> None:
        """Block until every event delivered to this session's subscriptions so far has been merged."""
        deadline = time.monotonic() + timeout
        while self._applied < self._delivered():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TransientIOError(
                    f"Timed out waiting for change feed of game {self.game_id}."
                )
            self.drain(timeout=min(remaining, _LISTENER_POLL_SECONDS))

    def reload(self) -> None:
        """Re-fetch the full snapshot from the store. Unconfirmed input is dropped: the snapshot wins."""
        self.scoreboard.reload(
            self.repo.list_players(self.game_id), self.repo.list_rolls(self.game_id)
        )
        self._pending.clear()
        self._reselect()

    # -- Input --
    def select(self, player_id: UUID, frame_index: int, roll_index: int) -> ActiveSelection:
        self._assert_player(player_id)
        return self.turns.select(player_id, frame_index, roll_index)

    def discard_selection(self) -> None:
        """Input surface closed without committing. In-flight writes are left alone."""
        self.turns.clear()

    def record_roll(self, pins: int) -> RollModel:
        """
        Record `pins` in the active slot.
        ----

        ----
        1. Reject illegal input before anything is written (ValidationError).
        2. Move the turn on immediately (optimistic).
        3. Write the roll. A failed write is reported by re-raising; the optimistic turn change is NOT rolled back,
           the next reconciliation closes the gap.
        """
        active = self.turns.active
        if active is None:
            raise ValidationError("No roll slot is selected.")

        frame_rolls = self._known_rolls(active.player_id, active.frame_index)
        validate_pins(frame_rolls, active.frame_index, active.roll_index, pins)

        slot = (active.player_id, active.frame_index, active.roll_index)
        self.turns.commit(pins, frame_rolls)
        self._pending[slot] = pins

        try:
            return self.repo.write_roll(
                self.game_id,
                active.player_id,
                active.frame_index + 1,
                active.roll_index + 1,
                pins,
            )
        except (TransientIOError, NotFoundError, ConflictError):
            self._pending.pop(slot, None)
            logger.exception(
                "Failed to record %d pins for player %s (frame %d, roll %d)",
                pins,
                active.player_id,
                active.frame_index + 1,
                active.roll_index + 1,
            )
            raise

    def record_token(self, token: str) -> RollModel:
        """Keyboard entry: digits, 'x' (strike), '/' (spare) or '-' (gutter)."""
        return self.record_roll(parse_pin_token(token, self.max_pins()))

    def reset_frame(self, player_id: UUID, frame_index: int) -> list[RollModel]:
        """Remove one frame of one player. The active selection is always cleared."""
        self._assert_player(player_id)
        self.turns.clear()
        self._drop_pending(player_id, frame_index)
        return self.repo.delete_rolls(self.game_id, player_id, frame_index + 1)

    def reset_player(self, player_id: UUID) -> list[RollModel]:
        """Remove every roll of one player. The active selection is always cleared."""
        self._assert_player(player_id)
        self.turns.clear()
        self._drop_pending(player_id)
        return self.repo.delete_rolls(self.game_id, player_id)

    # -- Internal helpers --
    def _listen(self, subscription: FeedSubscription) -> None:
        for event in subscription.listen():
            while not subscription.closed:
                try:
                    self._events.put(event, timeout=_LISTENER_POLL_SECONDS)
                    break
                except queue.Full:
                    continue

    def _delivered(self) -> int:
        return sum(subscription.delivered for subscription in self._subscriptions)

    def _reselect(self) -> None:
        self.turns.set_players(self.scoreboard.player_ids)
        self.turns.resume(self.scoreboard.cards())

    def _known_rolls(self, player_id: UUID, frame_index: int) -> dict[int, int]:
        """Rolls of a frame as reconciled so far, overlaid with this client's unconfirmed input."""
        rolls = dict(self.scoreboard.frame(player_id, frame_index).rolls)
        for (pending_player, pending_frame, roll_index), pins in self._pending.items():
            if pending_player == player_id and pending_frame == frame_index:
                rolls[roll_index] = pins
        return rolls

    def _settle_pending(self, event: ChangeEvent) -> None:
        """Once any change to a slot has been merged, the ledger speaks for it, whatever value it holds."""
        record = event.record
        if event.table == Table.ROLLS and isinstance(record, RollModel):
            self._pending.pop((record.player_id, record.frame_index, record.roll_index), None)
        elif event.table == Table.PLAYERS and event.op == ChangeOp.DELETE:
            self._drop_pending(record.id)

    def _drop_pending(self, player_id: UUID, frame_index: Optional[int] = None) -> None:
        for slot in list(self._pending):
            if slot[0] == player_id and (frame_index is None or slot[1] == frame_index):
                del self._pending[slot]

    def _assert_player(self, player_id: UUID) -> None:
        if self.scoreboard.player(player_id) is None:
            raise NotFoundError(f"Player with {player_id=} not found in game {self.game_id!r}.")


def scoreboard_response(
    scoreboard: Scoreboard, selection: Optional[SelectionResponse] = None
) -> ScoreboardResponse:
    """Convert a Scoreboard to a ScoreboardResponse"""
    players = []
    for player in scoreboard.players:
        card = scoreboard.card(player.id)
        players.append(
            PlayerScoreResponse(
                player_id=player.id,
                display_name=player.display_name,
                frames=[
                    FrameResponse(
                        frame_index=frame.index,
                        rolls=frame.ordered_pins,
                        frame_total=frame.frame_total,
                        running_total=frame.running_total,
                    )
                    for frame in card.frames
                ],
                total=card.total,
            )
        )
    return ScoreboardResponse(game_id=scoreboard.game_id, players=players, selection=selection)

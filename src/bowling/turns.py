"""
Turn Sequencer: decide which (player, frame, roll) slot accepts input next.

The transition is computed from the roll that was just committed, never by reading the store back:
the write for that roll may not be visible yet, locally or for other clients.
Once reconciliation confirms (or corrects) the roll set, the selection can always be re-derived with `first_open_slot`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Hashable, Mapping, Optional, Sequence

from src.bowling.frames import Scorecard
from src.core.exceptions import ValidationError
from src.core.shared_types import FRAME_COUNT, LAST_FRAME, PINS_PER_RACK

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Selection:
    """A slot in the sequencer's state space. `None` in its place means Idle (no players, or game finished)."""

    player_index: int
    frame_index: int
    roll_index: int


@dataclass(frozen=True)
class CommittedRoll:
    player_index: int
    frame_index: int
    roll_index: int
    pins: int


@dataclass(frozen=True)
class ActiveSelection:
    """The slot currently accepting input, named by player id rather than position."""

    player_id: Hashable
    frame_index: int
    roll_index: int


def advance(
    committed: CommittedRoll,
    player_count: int,
    frame_rolls: Optional[Mapping[int, int]] = None,
) -> Optional[Selection]:
    """
    Next slot after `committed`.
    ----

    ----
    Frames 0-8: a strike or a second ball ends the turn. The next player is up; the frame index only moves on
    when play wraps around to the first player again.

    Last frame: the second ball leads to a third only if the first two balls earned a bonus.
    The turn always ends after the third ball. Once the last player's turn in the last frame ends, the game is over (Idle).

    `frame_rolls` holds the rolls already known for the committed frame (roll index -> pins). Only the first ball of
    the last frame is read from it.
    """
    if player_count <= 0:
        return None

    player, frame, roll = committed.player_index, committed.frame_index, committed.roll_index

    if frame < LAST_FRAME:
        if (roll == 0 and committed.pins == PINS_PER_RACK) or roll >= 1:
            return _end_turn(committed, player_count)
        return Selection(player, frame, 1)

    if roll == 0:
        return Selection(player, frame, 1)

    if roll == 1:
        first = (frame_rolls or {}).get(0, 0)
        if first == PINS_PER_RACK or first + committed.pins == PINS_PER_RACK:
            return Selection(player, frame, 2)

    return _end_turn(committed, player_count)


def _end_turn(committed: CommittedRoll, player_count: int) -> Optional[Selection]:
    next_player = (committed.player_index + 1) % player_count
    wrapped = next_player == 0

    if committed.frame_index == LAST_FRAME:
        # The last frame is terminal for everyone.
        return None if wrapped else Selection(next_player, LAST_FRAME, 0)

    next_frame = committed.frame_index + 1 if wrapped else committed.frame_index
    return Selection(next_player, next_frame, 0)


def first_open_slot(cards: Sequence[Scorecard]) -> Optional[Selection]:
    """Initial state: players in bowling order, frames 0-9 in order, first unfilled roll of the first incomplete frame."""
    for player_index, card in enumerate(cards):
        for frame in card.frames:
            roll_index = frame.next_roll_index
            if roll_index is not None:
                return Selection(player_index, frame.index, roll_index)
    return None


class TurnSequencer:
    """The active selection of one client, kept in terms of player ids so a changing player list does not shift it."""

    def __init__(self, player_ids: Sequence[Hashable] = ()) -> None:
        self.player_ids: list[Hashable] = list(player_ids)
        self.active: Optional[ActiveSelection] = None

    @property
    def is_idle(self) -> bool:
        return self.active is None

    def set_players(self, player_ids: Sequence[Hashable]) -> None:
        """Bowling order changed (player joined or left). Drop a selection that points at a player who left."""
        self.player_ids = list(player_ids)
        if self.active is not None and self.active.player_id not in self.player_ids:
            logger.info("Selected player %s left the game; clearing selection.", self.active.player_id)
            self.active = None

    def select(self, player_id: Hashable, frame_index: int, roll_index: int) -> ActiveSelection:
        """Explicitly pick a slot (e.g. the user taps a cell to correct it)."""
        if player_id not in self.player_ids:
            raise ValidationError(f"Player {player_id} is not part of this game.")
        if not 0 <= frame_index < FRAME_COUNT:
            raise ValidationError(f"Frame index {frame_index} is outside 0-{LAST_FRAME}.")
        max_roll = 2 if frame_index == LAST_FRAME else 1
        if not 0 <= roll_index <= max_roll:
            raise ValidationError(
                f"Roll index {roll_index} is not available in frame {frame_index + 1}."
            )
        self.active = ActiveSelection(player_id, frame_index, roll_index)
        return self.active

    def clear(self) -> None:
        self.active = None

    def commit(
        self, pins: int, frame_rolls: Optional[Mapping[int, int]] = None
    ) -> Optional[ActiveSelection]:
        """Apply the transition for `pins` recorded in the active slot. Returns the new selection (None when idle)."""
        if self.active is None:
            raise ValidationError("No roll slot is selected.")

        committed = CommittedRoll(
            player_index=self.player_ids.index(self.active.player_id),
            frame_index=self.active.frame_index,
            roll_index=self.active.roll_index,
            pins=pins,
        )
        selection = advance(committed, len(self.player_ids), frame_rolls)
        self.active = self._to_active(selection)
        return self.active

    def resume(self, cards: Sequence[Scorecard]) -> Optional[ActiveSelection]:
        """Without a selection, pick the first open slot. `cards` are in the same order as `player_ids`."""
        if self.active is None:
            self.active = self._to_active(first_open_slot(cards))
        return self.active

    def _to_active(self, selection: Optional[Selection]) -> Optional[ActiveSelection]:
        if selection is None:
            return None
        return ActiveSelection(
            player_id=self.player_ids[selection.player_index],
            frame_index=selection.frame_index,
            roll_index=selection.roll_index,
        )

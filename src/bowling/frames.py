"""
Frame Builder: derive a player's ten frames and running totals from the set of rolls recorded for that player.

Frames and totals are never stored. They are recomputed from scratch every time the roll set changes,
so this must stay a pure function of its input: same rolls in (in any order) -> same frames out.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from src.core.models import RollModel
from src.core.shared_types import FRAME_COUNT, LAST_FRAME, PINS_PER_RACK

# Roll indices a frame can hold: two balls for frames 0-8, three for the last frame.
ROLLS_PER_FRAME = 2
ROLLS_IN_LAST_FRAME = 3


def rolls_allowed(frame_index: int) -> int:
    return ROLLS_IN_LAST_FRAME if frame_index == LAST_FRAME else ROLLS_PER_FRAME


@dataclass(frozen=True)
class Frame:
    """One scoring unit of a player. `rolls` maps roll index (0-based) to pins knocked down."""

    index: int
    rolls: dict[int, int] = field(default_factory=dict)
    frame_total: int = 0
    running_total: int = 0

    @property
    def is_last(self) -> bool:
        return self.index == LAST_FRAME

    def pins(self, roll_index: int) -> Optional[int]:
        return self.rolls.get(roll_index)

    @property
    def ordered_pins(self) -> list[int]:
        return [self.rolls[i] for i in sorted(self.rolls)]

    @property
    def is_strike(self) -> bool:
        return self.rolls.get(0) == PINS_PER_RACK

    @property
    def is_spare(self) -> bool:
        first, second = self.rolls.get(0), self.rolls.get(1)
        if first is None or second is None or first == PINS_PER_RACK:
            return False
        return first + second == PINS_PER_RACK

    @property
    def bonus_earned(self) -> bool:
        """Only meaningful for the last frame: a strike or spare there grants a third ball."""
        return self.is_last and (self.is_strike or self.is_spare)

    @property
    def required_rolls(self) -> list[int]:
        """Roll indices that must be filled before this frame is complete (given what is known so far)."""
        if not self.is_last:
            return [0] if self.is_strike else [0, 1]
        return [0, 1, 2] if self.bonus_earned else [0, 1]

    @property
    def is_complete(self) -> bool:
        return all(i in self.rolls for i in self.required_rolls)

    @property
    def next_roll_index(self) -> Optional[int]:
        """First unfilled roll slot, or None if the frame is complete."""
        return next((i for i in self.required_rolls if i not in self.rolls), None)

    def played_pins(self) -> list[int]:
        """Pins in roll order, as seen by an earlier frame looking ahead for its bonus."""
        if self.is_strike and not self.is_last:
            return [PINS_PER_RACK]
        return self.ordered_pins


@dataclass(frozen=True)
class Scorecard:
    """Derived scoring state of one player."""

    frames: tuple[Frame, ...]
    total: int

    def frame(self, frame_index: int) -> Frame:
        return self.frames[frame_index]

    @classmethod
    def empty(cls) -> Scorecard:
        return build_frames([])


def build_frames(rolls: Iterable[RollModel]) -> Scorecard:
    """
    Build the ten frames of a single player.
    ----

    ----
    1. Keep one roll per (frame, roll) slot. If two records share a slot, the latest write wins.
    2. Bucket by frame and order by roll index.
    3. Score every frame, looking ahead into later frames for strike / spare bonuses.
       Bonus rolls that have not been bowled yet count as 0. The total is then temporarily too low,
       and corrects itself once the rolls arrive.
    4. Accumulate running totals left to right.
    """
    buckets: list[dict[int, int]] = [{} for _ in range(FRAME_COUNT)]
    for (frame_index, roll_index), roll in sorted(_latest_per_slot(rolls).items()):
        buckets[frame_index][roll_index] = roll.pins

    unscored = [Frame(index=i, rolls=bucket) for i, bucket in enumerate(buckets)]

    frames: list[Frame] = []
    running_total = 0
    for frame in unscored:
        frame_total = _frame_total(unscored, frame.index)
        running_total += frame_total
        frames.append(
            Frame(
                index=frame.index,
                rolls=frame.rolls,
                frame_total=frame_total,
                running_total=running_total,
            )
        )
    return Scorecard(frames=tuple(frames), total=running_total)


def _latest_per_slot(rolls: Iterable[RollModel]) -> dict[tuple[int, int], RollModel]:
    """Last-write-wins per slot. Ties on created_at are broken on the id so every client picks the same record."""
    slots: dict[tuple[int, int], RollModel] = {}
    for roll in rolls:
        if not (0 <= roll.frame_index < FRAME_COUNT):
            continue
        if not (0 <= roll.roll_index < rolls_allowed(roll.frame_index)):
            continue
        key = (roll.frame_index, roll.roll_index)
        current = slots.get(key)
        if current is None or _write_order(roll) > _write_order(current):
            slots[key] = roll
    return slots


def _write_order(roll: RollModel) -> tuple:
    return (roll.created_at, str(roll.id))


def _frame_total(frames: list[Frame], index: int) -> int:
    frame = frames[index]

    # The last frame carries its own bonus balls: no lookahead.
    if frame.is_last:
        return sum(frame.ordered_pins)

    if frame.is_strike:
        return PINS_PER_RACK + sum(_following_pins(frames, index)[:2])

    if frame.is_spare:
        return PINS_PER_RACK + sum(_following_pins(frames, index)[:1])

    return sum(frame.ordered_pins)


def _following_pins(frames: list[Frame], index: int) -> list[int]:
    """All pins recorded after frame `index`, in bowling order."""
    pins: list[int] = []
    for frame in frames[index + 1 :]:
        pins.extend(frame.played_pins())
    return pins

"""
Legal-Pins Calculator: the highest pin count that may be recorded in a given roll slot.

Input gets rejected against this ceiling BEFORE anything is written, so the store never holds
two non-strike balls of the same rack adding up to more than 10.
"""

from typing import Mapping, Optional

from src.bowling.frames import rolls_allowed
from src.core.exceptions import ValidationError
from src.core.shared_types import FRAME_COUNT, LAST_FRAME, PINS_PER_RACK

PriorRolls = Mapping[int, int]  # roll index -> pins, for the frame being filled in

# Keyboard shortcuts for entering a roll
STRIKE_TOKEN = "x"
SPARE_TOKEN = "/"
GUTTER_TOKEN = "-"


def max_pins(prior_rolls: PriorRolls, frame_index: int, roll_index: int) -> int:
    """
    Ceiling for the next input.
    ----

    ----
    * roll index 0 (any frame): full rack.
    * frames 0-8, roll index 1: whatever the first ball left standing.
    * last frame, roll index 1: a first-ball strike re-racks the pins.
    * last frame, roll index 2: a fresh rack only when the balls before it just cleared every standing pin
      (two strikes, or a spare). After a strike and a non-strike, only the pins left by roll index 1 remain.
      Without a strike or spare in the first two balls there is no third ball: ceiling 0.

    NOTE if a prior roll of the frame is not known (yet), there is nothing to bound against: full rack.
    """
    _check_slot(frame_index, roll_index)

    if roll_index == 0:
        return PINS_PER_RACK

    first = prior_rolls.get(0)
    if first is None:
        return PINS_PER_RACK

    if frame_index < LAST_FRAME:
        return PINS_PER_RACK - first

    if roll_index == 1:
        return PINS_PER_RACK if first == PINS_PER_RACK else PINS_PER_RACK - first

    second = prior_rolls.get(1)
    if second is None:
        return PINS_PER_RACK

    if first == PINS_PER_RACK:
        # Strike, then the second ball either struck a fresh rack again or left pins standing.
        return PINS_PER_RACK if second == PINS_PER_RACK else PINS_PER_RACK - second

    if first + second == PINS_PER_RACK:
        return PINS_PER_RACK

    return 0


def is_slot_reachable(prior_rolls: PriorRolls, frame_index: int, roll_index: int) -> bool:
    """A roll slot can take input unless it is a bonus ball that was not earned, or follows a strike in frames 0-8."""
    _check_slot(frame_index, roll_index)
    first = prior_rolls.get(0)
    if frame_index < LAST_FRAME:
        return not (roll_index == 1 and first == PINS_PER_RACK)
    if roll_index < 2:
        return True
    second = prior_rolls.get(1)
    if first is None or second is None:
        return True
    return first == PINS_PER_RACK or first + second == PINS_PER_RACK


def validate_pins(
    frame_rolls: PriorRolls, frame_index: int, roll_index: int, pins: int
) -> int:
    """
    Raise ValidationError unless `pins` may be recorded in the slot. Returns the pins for convenience.

    `frame_rolls` may also hold rolls AFTER the slot (a correction of an earlier ball). Those must stay legal
    with the new value, e.g. 8 cannot replace the 3 of a 3-7 spare, and a strike cannot replace a first ball
    that already has a second one in frames 1-9.
    """
    prior_rolls = {index: value for index, value in frame_rolls.items() if index < roll_index}
    if not is_slot_reachable(prior_rolls, frame_index, roll_index):
        raise ValidationError(
            f"Roll {roll_index + 1} of frame {frame_index + 1} cannot be bowled."
        )
    ceiling = max_pins(prior_rolls, frame_index, roll_index)
    if not 0 <= pins <= ceiling:
        raise ValidationError(
            f"Cannot record {pins} pins in frame {frame_index + 1}, roll {roll_index + 1}. Allowed: 0-{ceiling}."
        )
    _check_later_rolls(frame_rolls, frame_index, roll_index, pins)
    return pins


def parse_pin_token(token: str, ceiling: int) -> int:
    """
    Turn a keypad / keyboard entry into a pin count.

    '0'-'9' are taken literally, 'x' is a strike, '/' completes a spare (i.e. takes every pin still standing)
    and '-' is a gutter ball.
    """
    value = token.strip().lower()
    pins: Optional[int] = None
    if value.isdigit() and len(value) <= 2:
        pins = int(value)
    elif value == STRIKE_TOKEN:
        pins = PINS_PER_RACK
    elif value == SPARE_TOKEN:
        pins = ceiling
    elif value == GUTTER_TOKEN:
        pins = 0

    if pins is None:
        raise ValidationError(f"Cannot interpret {token!r} as a number of pins.")
    if pins > ceiling:
        raise ValidationError(f"{pins} pins is above the allowed maximum of {ceiling}.")
    return pins


def _check_slot(frame_index: int, roll_index: int) -> None:
    if not 0 <= frame_index < FRAME_COUNT:
        raise ValidationError(f"Frame index {frame_index} is outside 0-{LAST_FRAME}.")
    if not 0 <= roll_index < rolls_allowed(frame_index):
        raise ValidationError(
            f"Roll index {roll_index} is not available in frame {frame_index + 1}."
        )


def _check_later_rolls(
    frame_rolls: PriorRolls, frame_index: int, roll_index: int, pins: int
) -> None:
    candidate = dict(frame_rolls)
    candidate[roll_index] = pins
    for later in sorted(index for index in frame_rolls if index > roll_index):
        if not is_slot_reachable(candidate, frame_index, later) or candidate[later] > max_pins(
            candidate, frame_index, later
        ):
            raise ValidationError(
                f"Cannot record {pins} pins in frame {frame_index + 1}, roll {roll_index + 1}: "
                f"roll {later + 1} ({candidate[later]} pins) is already recorded. Reset the frame first."
            )

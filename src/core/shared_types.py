"""
Type definitions used across layers
"""

from enum import StrEnum

# A player gets ten frames. Frames 0-8 take at most 2 balls, the last frame takes at most 3.
FRAME_COUNT = 10
LAST_FRAME = FRAME_COUNT - 1
PINS_PER_RACK = 10


class ChangeOp(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class Table(StrEnum):
    GAMES = "games"
    PLAYERS = "players"
    ROLLS = "rolls"

"""
Boundary layer data model(s).

These objects are used to communicate with the Service.
The domain layer (src/bowling), the persistence layer (src/db) and the service layer all exchange
these records instead of their own internal representations.

NOTE frame and roll numbers are stored 1-based (frame 1-10, roll 1-3), like the persisted table.
The domain layer works with 0-based indices and converts at the boundary.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from src.core.shared_types import ChangeOp, Table


@dataclass(frozen=True)
class GameModel:
    id: str
    created_at: datetime


@dataclass(frozen=True)
class PlayerModel:
    """A registered bowler. Bowling order is fixed by created_at."""

    id: UUID
    game_id: str
    display_name: str
    created_at: datetime


@dataclass(frozen=True)
class RollModel:
    """The only persisted scoring record. One per (game, player, frame, roll) slot."""

    id: UUID
    game_id: str
    player_id: UUID
    frame: int
    roll: int
    pins: int
    created_at: datetime

    @property
    def frame_index(self) -> int:
        return self.frame - 1

    @property
    def roll_index(self) -> int:
        return self.roll - 1


@dataclass(frozen=True)
class ChangeEvent:
    """One row change delivered by the change feed."""

    op: ChangeOp
    table: Table
    record: RollModel | PlayerModel

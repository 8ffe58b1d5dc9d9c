"""
Roll Reconciliation: the local, authoritative copy of a game's rolls, merged from change-feed events by roll id.

Merges must converge no matter in which order the events for a roll id are delivered:
* insert adds the roll if it is not known yet (a redelivered insert is a no-op),
* update replaces by id, or inserts if the insert was missed / arrives later,
* delete removes by id and remembers the id, so a late insert/update cannot bring the roll back.
Roll ids are never reused, which is what makes remembering deleted ids safe.
"""

import logging
from typing import Iterable, Iterator
from uuid import UUID

from src.core.models import ChangeEvent, RollModel
from src.core.shared_types import ChangeOp, Table

logger = logging.getLogger(__name__)


class RollLedger:
    """Rolls keyed by id. Every merge returns the ids of the players whose frames must be rebuilt."""

    def __init__(self, rolls: Iterable[RollModel] = ()) -> None:
        self._rolls: dict[UUID, RollModel] = {roll.id: roll for roll in rolls}
        self._deleted: set[UUID] = set()

    def __len__(self) -> int:
        return len(self._rolls)

    def __iter__(self) -> Iterator[RollModel]:
        return iter(self._rolls.values())

    def __contains__(self, roll_id: object) -> bool:
        return roll_id in self._rolls

    def get(self, roll_id: UUID) -> RollModel | None:
        return self._rolls.get(roll_id)

    def for_player(self, player_id: UUID) -> list[RollModel]:
        return [roll for roll in self._rolls.values() if roll.player_id == player_id]

    def player_ids(self) -> set[UUID]:
        return {roll.player_id for roll in self._rolls.values()}

    def apply(self, event: ChangeEvent) -> set[UUID]:
        if event.table != Table.ROLLS or not isinstance(event.record, RollModel):
            raise ValueError(f"Not a roll event: {event.table} / {type(event.record).__name__}")

        match event.op:
            case ChangeOp.INSERT:
                return self.insert(event.record)
            case ChangeOp.UPDATE:
                return self.update(event.record)
            case ChangeOp.DELETE:
                return self.delete(event.record.id)
        raise ValueError(f"Unknown change operation: {event.op!r}")

    def insert(self, roll: RollModel) -> set[UUID]:
        if roll.id in self._deleted or roll.id in self._rolls:
            logger.debug("Ignoring insert for known or deleted roll %s", roll.id)
            return set()
        self._rolls[roll.id] = roll
        return {roll.player_id}

    def update(self, roll: RollModel) -> set[UUID]:
        if roll.id in self._deleted:
            logger.debug("Ignoring update for deleted roll %s", roll.id)
            return set()
        previous = self._rolls.get(roll.id)
        self._rolls[roll.id] = roll
        if previous is None:
            return {roll.player_id}
        return {roll.player_id, previous.player_id}

    def delete(self, roll_id: UUID) -> set[UUID]:
        self._deleted.add(roll_id)
        previous = self._rolls.pop(roll_id, None)
        if previous is None:
            return set()
        return {previous.player_id}

    def replace_all(self, rolls: Iterable[RollModel]) -> set[UUID]:
        """
        Swap in a full snapshot (e.g. a re-fetch after a reset). Returns every player touched before or after.
        The snapshot already reflects every delete, so remembered deleted ids are forgotten.
        """
        affected = self.player_ids()
        self._deleted.clear()
        self._rolls = {roll.id: roll for roll in rolls}
        return affected | self.player_ids()

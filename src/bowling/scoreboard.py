"""
The derived scoreboard of one game: players in bowling order, each with a Scorecard built from the roll ledger.

Nothing here is persisted. The scoreboard is (re)built from the rolls and players the client knows about,
and every merged change-feed event re-runs the Frame Builder for the players it touched.
"""

import logging
from typing import Iterable, Optional
from uuid import UUID

from src.bowling.frames import Frame, Scorecard, build_frames
from src.bowling.reconciliation import RollLedger
from src.core.models import ChangeEvent, PlayerModel, RollModel
from src.core.shared_types import ChangeOp, Table

logger = logging.getLogger(__name__)


class Scoreboard:
    def __init__(
        self,
        game_id: str,
        players: Iterable[PlayerModel] = (),
        rolls: Iterable[RollModel] = (),
    ) -> None:
        self.game_id = game_id
        self._players: dict[UUID, PlayerModel] = {p.id: p for p in players}
        self._removed_players: set[UUID] = set()
        self.ledger = RollLedger(rolls)
        self._cards: dict[UUID, Scorecard] = {}
        self.rebuild(self.ledger.player_ids())

    # -- Read side --
    @property
    def players(self) -> list[PlayerModel]:
        """Fixed, cyclic bowling order: join time, then id."""
        return sorted(self._players.values(), key=lambda p: (p.created_at, str(p.id)))

    @property
    def player_ids(self) -> list[UUID]:
        return [player.id for player in self.players]

    def player(self, player_id: UUID) -> Optional[PlayerModel]:
        return self._players.get(player_id)

    def card(self, player_id: UUID) -> Scorecard:
        card = self._cards.get(player_id)
        return card if card is not None else Scorecard.empty()

    def cards(self) -> list[Scorecard]:
        """Scorecards in bowling order."""
        return [self.card(player_id) for player_id in self.player_ids]

    def frame(self, player_id: UUID, frame_index: int) -> Frame:
        return self.card(player_id).frame(frame_index)

    # -- Reconciliation --
    def apply(self, event: ChangeEvent) -> set[UUID]:
        """Merge one change-feed event and rebuild the affected players. Returns their ids."""
        if event.record.game_id != self.game_id:
            logger.warning(
                "Dropping %s event for game %s on scoreboard of game %s",
                event.table,
                event.record.game_id,
                self.game_id,
            )
            return set()

        if event.table == Table.ROLLS:
            affected = self.ledger.apply(event)
        elif event.table == Table.PLAYERS:
            affected = self._apply_player(event)
        else:
            logger.warning("Ignoring event for unsupported table %s", event.table)
            return set()

        self.rebuild(affected)
        logger.debug("Merged %s %s; rebuilt %d player(s)", event.op, event.table, len(affected))
        return affected

    def reload(self, players: Iterable[PlayerModel], rolls: Iterable[RollModel]) -> None:
        """Replace local state with a fresh snapshot from the store."""
        self._removed_players.clear()
        self._players = {p.id: p for p in players}
        affected = self.ledger.replace_all(rolls)
        self._cards.clear()
        self.rebuild(affected)

    def rebuild(self, player_ids: Iterable[UUID]) -> None:
        for player_id in player_ids:
            self._cards[player_id] = build_frames(self.ledger.for_player(player_id))

    def _apply_player(self, event: ChangeEvent) -> set[UUID]:
        player = event.record
        assert isinstance(player, PlayerModel)

        if event.op == ChangeOp.DELETE:
            self._removed_players.add(player.id)
            self._players.pop(player.id, None)
            self._cards.pop(player.id, None)
            return set()

        if player.id in self._removed_players:
            return set()
        if event.op == ChangeOp.INSERT and player.id in self._players:
            return set()

        self._players[player.id] = player
        return {player.id}

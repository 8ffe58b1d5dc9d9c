"""Implementation of (Scorecard)Repository using SQLAlchemy"""

import logging
from datetime import datetime
from typing import Callable, Optional, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.core.exceptions import ConflictError, NotFoundError, TransientIOError
from src.core.models import ChangeEvent, GameModel, PlayerModel, RollModel
from src.core.shared_types import ChangeOp, Table
from src.db.db_errors import is_duplicate_key_error
from src.db.feed import Feed
from src.db.schema import DBGame, DBPlayer, DBRoll, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Dialects that can do an atomic INSERT .. ON CONFLICT DO UPDATE on the roll slot.
_UPSERT_INSERTS = {"sqlite": sqlite_insert, "postgresql": postgresql_insert}
_ROLL_SLOT = ["game_id", "player_id", "frame", "roll"]


class SQLScorecardRepository:
    """Data stored using SQL / methods implemented using SQLAlchemy. Committed changes are published on the feed (if any)."""

    def __init__(self, db_session: Session, feed: Optional[Feed] = None) -> None:
        self.db = db_session
        self.feed = feed

    # -- Games --
    def create_game(self, game_id: str) -> GameModel:
        """Store new game. Idempotent: an existing game with the same ID is returned as-is."""

        def _create() -> GameModel:
            existing = self._fetch_game(game_id)
            if existing:
                return self._game_to_model(existing)
            game_db = DBGame(id=game_id, created_at=utc_now())
            self.db.add(game_db)
            self.db.commit()
            self.db.refresh(game_db)
            return self._game_to_model(game_db)

        return self._run(_create, f"create game {game_id!r}")

    def get_game(self, game_id: str) -> GameModel | None:
        game_db = self._run(lambda: self._fetch_game(game_id), f"get game {game_id!r}")
        if game_db:
            return self._game_to_model(game_db)
        return None

    def delete_games_created_before(self, cutoff: datetime) -> list[str]:
        """Remove old games with their players and rolls. Open sessions get a delete event per removed row."""

        def _delete() -> tuple[list[str], list[RollModel], list[PlayerModel]]:
            game_ids = list(
                self.db.scalars(select(DBGame.id).where(DBGame.created_at < cutoff))
            )
            if not game_ids:
                return [], [], []
            rolls = [
                self._roll_to_model(r)
                for r in self.db.scalars(select(DBRoll).where(DBRoll.game_id.in_(game_ids)))
            ]
            players = [
                self._player_to_model(p)
                for p in self.db.scalars(select(DBPlayer).where(DBPlayer.game_id.in_(game_ids)))
            ]
            # Children first: SQLite only cascades with foreign keys switched on.
            self.db.execute(delete(DBRoll).where(DBRoll.game_id.in_(game_ids)))
            self.db.execute(delete(DBPlayer).where(DBPlayer.game_id.in_(game_ids)))
            self.db.execute(delete(DBGame).where(DBGame.id.in_(game_ids)))
            self.db.commit()
            return game_ids, rolls, players

        game_ids, rolls, players = self._run(_delete, "delete stale games")
        for roll in rolls:
            self._publish(roll.game_id, ChangeOp.DELETE, Table.ROLLS, roll)
        for player in players:
            self._publish(player.game_id, ChangeOp.DELETE, Table.PLAYERS, player)
        return game_ids

    # -- Players --
    def add_player(self, game_id: str, name: str) -> PlayerModel:
        def _add() -> PlayerModel:
            if not self._fetch_game(game_id):
                raise NotFoundError(f"Game with {game_id=} not found.")
            player_db = DBPlayer(
                id=uuid4(), game_id=game_id, display_name=name, created_at=utc_now()
            )
            self.db.add(player_db)
            self.db.commit()
            self.db.refresh(player_db)
            return self._player_to_model(player_db)

        player = self._run(_add, f"add player to game {game_id!r}")
        self._publish(player.game_id, ChangeOp.INSERT, Table.PLAYERS, player)
        return player

    def list_players(self, game_id: str) -> list[PlayerModel]:
        query = (
            select(DBPlayer)
            .where(DBPlayer.game_id == game_id)
            .order_by(DBPlayer.created_at, DBPlayer.id)
        )
        players = self._run(lambda: list(self.db.scalars(query)), "list players")
        return [self._player_to_model(p) for p in players]

    def update_player_name(self, player_id: UUID, name: str) -> PlayerModel:
        def _update() -> PlayerModel:
            player_db = self._fetch_player(player_id)
            if not player_db:
                raise NotFoundError(f"Player with {player_id=} not found.")
            player_db.display_name = name
            self.db.commit()
            self.db.refresh(player_db)
            return self._player_to_model(player_db)

        player = self._run(_update, f"rename player {player_id}")
        self._publish(player.game_id, ChangeOp.UPDATE, Table.PLAYERS, player)
        return player

    # -- Rolls --
    def write_roll(
        self, game_id: str, player_id: UUID, frame: int, roll: int, pins: int
    ) -> RollModel:
        """Upsert the roll in slot (game, player, frame, roll)."""

        def _write() -> tuple[RollModel, ChangeOp]:
            player_db = self._fetch_player(player_id)
            if not player_db or player_db.game_id != game_id:
                raise NotFoundError(f"Player with {player_id=} not found in game {game_id!r}.")

            upsert = _UPSERT_INSERTS.get(self.db.get_bind().dialect.name)
            if upsert is None:
                return self._read_then_write(game_id, player_id, frame, roll, pins)

            new_id = uuid4()
            stmt = upsert(DBRoll).values(
                id=new_id,
                game_id=game_id,
                player_id=player_id,
                frame=frame,
                roll=roll,
                pins=pins,
                created_at=utc_now(),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=_ROLL_SLOT, set_={"pins": stmt.excluded.pins}
            ).returning(DBRoll)
            roll_db = self.db.scalars(
                stmt, execution_options={"populate_existing": True}
            ).one()
            self.db.commit()
            # An existing slot keeps its id: that is how an update is told apart from an insert.
            op = ChangeOp.INSERT if roll_db.id == new_id else ChangeOp.UPDATE
            return self._roll_to_model(roll_db), op

        stored, op = self._run(_write, f"write roll {frame}/{roll} of player {player_id}")
        self._publish(game_id, op, Table.ROLLS, stored)
        return stored

    def list_rolls(self, game_id: str) -> list[RollModel]:
        query = (
            select(DBRoll)
            .where(DBRoll.game_id == game_id)
            .order_by(DBRoll.created_at, DBRoll.id)
        )
        rolls = self._run(lambda: list(self.db.scalars(query)), "list rolls")
        return [self._roll_to_model(r) for r in rolls]

    def delete_rolls(
        self, game_id: str, player_id: UUID, frame: Optional[int] = None
    ) -> list[RollModel]:
        def _delete() -> list[RollModel]:
            query = select(DBRoll).where(
                DBRoll.game_id == game_id, DBRoll.player_id == player_id
            )
            if frame is not None:
                query = query.where(DBRoll.frame == frame)
            rolls_db = list(self.db.scalars(query))
            removed = [self._roll_to_model(r) for r in rolls_db]
            for roll_db in rolls_db:
                self.db.delete(roll_db)
            self.db.commit()
            return removed

        removed = self._run(_delete, f"delete rolls of player {player_id}")
        for roll in removed:
            self._publish(game_id, ChangeOp.DELETE, Table.ROLLS, roll)
        return removed

    # -- Internal helpers --
    def _read_then_write(
        self, game_id: str, player_id: UUID, frame: int, roll: int, pins: int
    ) -> tuple[RollModel, ChangeOp]:
        """Upsert for dialects without ON CONFLICT. A writer racing into the same slot surfaces as a ConflictError."""
        query = select(DBRoll).where(
            DBRoll.game_id == game_id,
            DBRoll.player_id == player_id,
            DBRoll.frame == frame,
            DBRoll.roll == roll,
        )
        roll_db = self.db.scalar(query)
        if roll_db:
            roll_db.pins = pins
            op = ChangeOp.UPDATE
        else:
            roll_db = DBRoll(
                id=uuid4(),
                game_id=game_id,
                player_id=player_id,
                frame=frame,
                roll=roll,
                pins=pins,
                created_at=utc_now(),
            )
            self.db.add(roll_db)
            op = ChangeOp.INSERT
        try:
            self.db.commit()
        except IntegrityError as exc:
            if not is_duplicate_key_error(exc):
                raise
            self.db.rollback()
            raise ConflictError(
                f"Slot frame {frame} roll {roll} of player {player_id} was written concurrently."
            ) from exc
        self.db.refresh(roll_db)
        return self._roll_to_model(roll_db), op

    def _run(self, operation: Callable[[], T], description: str) -> T:
        """Run `operation`, turning store failures into TransientIOError (original error chained)."""
        try:
            return operation()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning("Store failure during %s: %s", description, exc)
            orig = getattr(exc, "orig", None)
            raise TransientIOError(
                f"Failed to {description}: {orig if orig is not None else exc}"
            ) from exc

    def _publish(self, game_id: str, op: ChangeOp, table: Table, record: RollModel | PlayerModel) -> None:
        if self.feed is not None:
            self.feed.publish(game_id, ChangeEvent(op=op, table=table, record=record))

    def _fetch_game(self, game_id: str) -> DBGame | None:
        query = select(DBGame).where(DBGame.id == game_id)
        return self.db.scalar(query)

    def _fetch_player(self, player_id: UUID) -> DBPlayer | None:
        query = select(DBPlayer).where(DBPlayer.id == player_id)
        return self.db.scalar(query)

    def _game_to_model(self, game_db: DBGame) -> GameModel:
        """Convert SQLAlchemy model to data transfer model."""
        return GameModel(id=game_db.id, created_at=game_db.created_at)

    def _player_to_model(self, player_db: DBPlayer) -> PlayerModel:
        return PlayerModel(
            id=player_db.id,
            game_id=player_db.game_id,
            display_name=player_db.display_name,
            created_at=player_db.created_at,
        )

    def _roll_to_model(self, roll_db: DBRoll) -> RollModel:
        return RollModel(
            id=roll_db.id,
            game_id=roll_db.game_id,
            player_id=roll_db.player_id,
            frame=roll_db.frame,
            roll=roll_db.roll,
            pins=roll_db.pins,
            created_at=roll_db.created_at,
        )

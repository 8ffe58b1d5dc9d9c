"""Protocol repository: the persistence collaborator the service layer talks to (SQLAlchemy implementation in sql_repository.py)."""

from datetime import datetime
from typing import Optional, Protocol
from uuid import UUID

from src.core.models import GameModel, PlayerModel, RollModel


class ScorecardRepository(Protocol):
    """Persistence layer orchestration"""

    def create_game(self, game_id: str) -> GameModel:
        """Store a new game. Creating a game that already exists is not an error: return the stored one."""
        ...

    def get_game(self, game_id: str) -> GameModel | None:
        """Get game by ID, if record exists."""
        ...

    def add_player(self, game_id: str, name: str) -> PlayerModel:
        """Register a player. The generated id and creation time fix the player's place in the bowling order."""
        ...

    def list_players(self, game_id: str) -> list[PlayerModel]:
        """Players of a game, in bowling order."""
        ...

    def update_player_name(self, player_id: UUID, name: str) -> PlayerModel:
        ...

    def write_roll(
        self, game_id: str, player_id: UUID, frame: int, roll: int, pins: int
    ) -> RollModel:
        """Upsert by (game, player, frame, roll): an occupied slot gets its pins replaced."""
        ...

    def list_rolls(self, game_id: str) -> list[RollModel]:
        ...

    def delete_rolls(
        self, game_id: str, player_id: UUID, frame: Optional[int] = None
    ) -> list[RollModel]:
        """Scoped bulk delete: all rolls of a player, or only those of one frame. Returns what was removed."""
        ...

    def delete_games_created_before(self, cutoff: datetime) -> list[str]:
        """Remove old games together with their players and rolls. Returns the removed game ids."""
        ...

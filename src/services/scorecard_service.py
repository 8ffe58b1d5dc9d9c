"""Orchestration of communication from the presentation layer to the scoring and persistence layers (and the reverse direction)."""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

from src.api.models import (
    CreateGameRequest,
    GameResponse,
    GetScoreboardRequest,
    JoinGameRequest,
    PlayerResponse,
    RenamePlayerRequest,
    ScoreboardResponse,
)
from src.bowling.scoreboard import Scoreboard
from src.core.config import GAME_ID_DIGITS, STALE_GAME_HOURS
from src.core.exceptions import NotFoundError, TransientIOError
from src.core.models import GameModel, PlayerModel
from src.db.db_errors import is_identifier_format_error, is_missing_reference_error
from src.db.feed import Feed
from src.db.redis_feed import feed_from_config
from src.db.repository import ScorecardRepository
from src.services.session import GameSession, scoreboard_response

logger = logging.getLogger(__name__)


def generate_game_id(digits: int = GAME_ID_DIGITS) -> str:
    """Short numeric code that is easy to read out to the other lane."""
    lowest = 10 ** (digits - 1)
    return str(lowest + secrets.randbelow(9 * lowest))


def default_player_name() -> str:
    return f"Player {int(datetime.now(timezone.utc).timestamp() * 1000)}"


class ScorecardService:
    """Orchestration of layers for a shared bowling scorecard."""

    def __init__(
        self, repository: ScorecardRepository, feed: Optional[Feed] = None
    ) -> None:
        self.repo = repository
        self.feed = feed if feed is not None else feed_from_config()

    # -- Presentation layer logic ---
    def create_game(self, request: CreateGameRequest) -> GameResponse:
        """Start a new game and register its first players."""
        game_id = request.game_id or generate_game_id()

        try:
            game = self.repo.create_game(game_id)
        except TransientIOError as exc:
            # The store may insist on UUID identifiers. Regenerate once and try again.
            if not is_identifier_format_error(str(exc)):
                raise
            fallback_id = str(uuid4())
            logger.warning(
                "Store rejected game id %r (%s); retrying with %s", game_id, exc, fallback_id
            )
            game = self.repo.create_game(fallback_id)

        logger.info("Created game %s", game.id)
        players = [self._add_player(game.id, name) for name in request.player_names]
        return self._create_game_response(game, players)

    def join_game(self, request: JoinGameRequest) -> GameResponse:
        """More players join an existing game. They bowl after everyone already registered."""
        game = self._fetch_game(request.game_id)
        for name in request.player_names:
            self._add_player(game.id, name)
        return self._create_game_response(game, self.repo.list_players(game.id))

    def rename_player(self, request: RenamePlayerRequest) -> PlayerResponse:
        player = self.repo.update_player_name(request.player_id, request.name)
        return PlayerResponse(player_id=player.id, display_name=player.display_name)

    def get_scoreboard(self, request: GetScoreboardRequest) -> ScoreboardResponse:
        """
        One-off read of the derived scoreboard, built straight from the stored rolls.
        ----
        Clients that keep the scorecard open should use a GameSession instead.
        """
        self._fetch_game(request.game_id)
        scoreboard = Scoreboard(
            request.game_id,
            players=self.repo.list_players(request.game_id),
            rolls=self.repo.list_rolls(request.game_id),
        )
        return scoreboard_response(scoreboard)

    def open_session(self, game_id: str) -> GameSession:
        """Session for one client. Use as a context manager: `with service.open_session(game_id) as session: ...`"""
        return GameSession(self.repo, self.feed, game_id)

    def purge_stale_games(self, now: Optional[datetime] = None) -> list[str]:
        """Delete games (with their players and rolls) older than STALE_GAME_HOURS."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=STALE_GAME_HOURS)
        removed = self.repo.delete_games_created_before(cutoff)
        if removed:
            logger.info("Purged %d stale game(s) created before %s", len(removed), cutoff)
        return removed

    # -- Internal helpers --
    def _add_player(self, game_id: str, name: str) -> PlayerModel:
        try:
            return self.repo.add_player(game_id, name or default_player_name())
        except TransientIOError as exc:
            if is_missing_reference_error(str(exc)):
                raise NotFoundError(f"Game with {game_id=} not found.") from exc
            raise

    def _create_game_response(
        self, game: GameModel, players: list[PlayerModel]
    ) -> GameResponse:
        """Convert info in GameModel + players to a GameResponse"""
        return GameResponse(
            game_id=game.id,
            created_at=game.created_at,
            players=[
                PlayerResponse(player_id=p.id, display_name=p.display_name)
                for p in players
            ],
        )

    def _fetch_game(self, game_id: str) -> GameModel:
        """Attempt to find the game in the repository and raise error if it fails."""
        game = self.repo.get_game(game_id)
        if game is None:
            raise NotFoundError(f"Game with {game_id=} not found.")
        return game

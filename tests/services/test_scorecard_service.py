"""Unit tests for src/services/scorecard_service.py"""

from datetime import datetime, timedelta, timezone
from typing import Generator, Optional
from uuid import UUID, uuid4

import pytest

from src.core.exceptions import NotFoundError, TransientIOError, ValidationError
from src.core.models import GameModel, PlayerModel, RollModel
from src.services.scorecard_service import (
    CreateGameRequest,
    GameResponse,
    GetScoreboardRequest,
    JoinGameRequest,
    RenamePlayerRequest,
    ScorecardService,
    ScoreboardResponse,
    default_player_name,
    generate_game_id,
)


# --- MOCK DEPENDENCIES ----
class MockRepository:
    """Mock the ScorecardRepository using dictionaries of models."""

    def __init__(self, require_uuid_ids: bool = False) -> None:
        self.require_uuid_ids = require_uuid_ids
        self.create_attempts: list[str] = []
        self._games: dict[str, GameModel] = {}
        self._players: dict[UUID, PlayerModel] = {}
        self._rolls: dict[UUID, RollModel] = {}
        self._clock = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def _now(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def create_game(self, game_id: str) -> GameModel:
        self.create_attempts.append(game_id)
        if self.require_uuid_ids:
            try:
                UUID(game_id)
            except ValueError:
                raise TransientIOError(
                    f'Failed to create game: invalid input syntax for type uuid: "{game_id}"'
                )
        return self._games.setdefault(game_id, GameModel(id=game_id, created_at=self._now()))

    def get_game(self, game_id: str) -> GameModel | None:
        return self._games.get(game_id)

    def add_player(self, game_id: str, name: str) -> PlayerModel:
        if game_id not in self._games:
            raise TransientIOError(
                'insert or update on table "players" violates foreign key constraint "players_game_id_fkey"'
            )
        player = PlayerModel(id=uuid4(), game_id=game_id, display_name=name, created_at=self._now())
        self._players[player.id] = player
        return player

    def list_players(self, game_id: str) -> list[PlayerModel]:
        players = [p for p in self._players.values() if p.game_id == game_id]
        return sorted(players, key=lambda p: p.created_at)

    def update_player_name(self, player_id: UUID, name: str) -> PlayerModel:
        if player_id not in self._players:
            raise NotFoundError(f"Player with {player_id=} not found.")
        old = self._players[player_id]
        self._players[player_id] = PlayerModel(old.id, old.game_id, name, old.created_at)
        return self._players[player_id]

    def write_roll(self, game_id: str, player_id: UUID, frame: int, roll: int, pins: int) -> RollModel:
        for existing in self._rolls.values():
            if (existing.game_id, existing.player_id, existing.frame, existing.roll) == (game_id, player_id, frame, roll):
                updated = RollModel(existing.id, game_id, player_id, frame, roll, pins, existing.created_at)
                self._rolls[existing.id] = updated
                return updated
        new = RollModel(uuid4(), game_id, player_id, frame, roll, pins, self._now())
        self._rolls[new.id] = new
        return new

    def list_rolls(self, game_id: str) -> list[RollModel]:
        return [r for r in self._rolls.values() if r.game_id == game_id]

    def delete_rolls(self, game_id: str, player_id: UUID, frame: Optional[int] = None) -> list[RollModel]:
        removed = [
            r
            for r in self._rolls.values()
            if r.game_id == game_id and r.player_id == player_id and (frame is None or r.frame == frame)
        ]
        for roll in removed:
            del self._rolls[roll.id]
        return removed

    def delete_games_created_before(self, cutoff: datetime) -> list[str]:
        old = [g.id for g in self._games.values() if g.created_at < cutoff]
        for game_id in old:
            del self._games[game_id]
        return old

    def clear(self) -> None:
        """Clear the repository (useful in between tests)"""
        self._games.clear()
        self._players.clear()
        self._rolls.clear()


@pytest.fixture
def mock_repository() -> Generator[MockRepository, None, None]:
    """Ensures to clear the repository between tests"""
    repo = MockRepository()
    try:
        yield repo
    finally:
        repo.clear()


# --- IDENTIFIERS ---
def test_generate_game_id_is_short_numeric() -> None:
    for _ in range(50):
        game_id = generate_game_id()
        assert len(game_id) == 5
        assert game_id.isdigit()
        assert not game_id.startswith("0")


def test_default_player_name() -> None:
    assert default_player_name().startswith("Player ")


# --- SERVICE - CREATE GAME ----
def test_create_game_with_players(mock_repository: MockRepository) -> None:
    service = ScorecardService(mock_repository)
    response = service.create_game(
        CreateGameRequest(game_id="12345", player_names=["Donny", "Walter"])
    )
    assert isinstance(response, GameResponse)
    assert response.game_id == "12345"
    assert [p.display_name for p in response.players] == ["Donny", "Walter"]
    assert mock_repository.get_game("12345") is not None


def test_create_game_generates_id(mock_repository: MockRepository) -> None:
    response = ScorecardService(mock_repository).create_game(CreateGameRequest())
    assert response.game_id.isdigit()
    assert response.players == []


def test_create_game_falls_back_to_uuid_once() -> None:
    """The store wants UUID ids: the short code is swapped for a UUID, exactly one retry."""
    repo = MockRepository(require_uuid_ids=True)
    response = ScorecardService(repo).create_game(
        CreateGameRequest(game_id="12345", player_names=["Donny"])
    )
    assert UUID(response.game_id)
    assert len(repo.create_attempts) == 2
    assert repo.create_attempts[0] == "12345"


def test_create_game_other_store_errors_propagate() -> None:
    class FailingRepository(MockRepository):
        def create_game(self, game_id: str) -> GameModel:
            raise TransientIOError("connection refused")

    with pytest.raises(TransientIOError):
        ScorecardService(FailingRepository()).create_game(CreateGameRequest(game_id="12345"))


def test_empty_player_name_gets_default(mock_repository: MockRepository) -> None:
    response = ScorecardService(mock_repository).create_game(
        CreateGameRequest(game_id="12345", player_names=["  "])
    )
    assert response.players[0].display_name.startswith("Player ")


# --- SERVICE - JOIN GAME ----
def test_join_game_appends_players(mock_repository: MockRepository) -> None:
    service = ScorecardService(mock_repository)
    service.create_game(CreateGameRequest(game_id="12345", player_names=["Donny"]))
    response = service.join_game(JoinGameRequest(game_id="12345", player_names=["Walter", "Dude"]))
    assert [p.display_name for p in response.players] == ["Donny", "Walter", "Dude"]


def test_join_unknown_game(mock_repository: MockRepository) -> None:
    with pytest.raises(NotFoundError):
        ScorecardService(mock_repository).join_game(
            JoinGameRequest(game_id="00000", player_names=["Walter"])
        )


def test_join_game_requires_players() -> None:
    with pytest.raises(ValidationError):
        JoinGameRequest(game_id="12345", player_names=[])


# --- SERVICE - PLAYERS / SCOREBOARD ----
def test_rename_player(mock_repository: MockRepository) -> None:
    service = ScorecardService(mock_repository)
    created = service.create_game(CreateGameRequest(game_id="12345", player_names=["Donny"]))
    player_id = created.players[0].player_id
    response = service.rename_player(RenamePlayerRequest(player_id=player_id, name="Theodore"))
    assert response.display_name == "Theodore"


def test_rename_unknown_player(mock_repository: MockRepository) -> None:
    with pytest.raises(NotFoundError):
        ScorecardService(mock_repository).rename_player(
            RenamePlayerRequest(player_id=uuid4(), name="Nobody")
        )


def test_get_scoreboard(mock_repository: MockRepository) -> None:
    service = ScorecardService(mock_repository)
    created = service.create_game(CreateGameRequest(game_id="12345", player_names=["Donny"]))
    player_id = created.players[0].player_id
    mock_repository.write_roll("12345", player_id, 1, 1, 10)
    mock_repository.write_roll("12345", player_id, 2, 1, 7)
    mock_repository.write_roll("12345", player_id, 2, 2, 2)

    response = service.get_scoreboard(GetScoreboardRequest(game_id="12345"))
    assert isinstance(response, ScoreboardResponse)
    (player,) = response.players
    assert [f.running_total for f in player.frames[:2]] == [19, 28]
    assert player.total == 28
    assert player.frames[1].rolls == [7, 2]
    assert response.selection is None


def test_get_scoreboard_unknown_game(mock_repository: MockRepository) -> None:
    with pytest.raises(NotFoundError):
        ScorecardService(mock_repository).get_scoreboard(GetScoreboardRequest(game_id="00000"))


def test_purge_stale_games(mock_repository: MockRepository) -> None:
    service = ScorecardService(mock_repository)
    service.create_game(CreateGameRequest(game_id="12345"))
    created_at = mock_repository.get_game("12345").created_at

    assert service.purge_stale_games(now=created_at + timedelta(hours=1)) == []
    assert service.purge_stale_games(now=created_at + timedelta(hours=25)) == ["12345"]
    assert mock_repository.get_game("12345") is None

"""Requests and Response models"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, field_validator

from src.core.exceptions import ValidationError


def _strip_game_id(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValidationError("Game ID cannot be empty.")
    return value


# --- REQUEST MODELS ---
class CreateGameRequest(BaseModel):
    """Start a new game. Without a game_id, a short numeric code is generated."""

    game_id: Optional[str] = None
    player_names: list[str] = []

    @field_validator("game_id")
    @classmethod
    def validate_game_id(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return _strip_game_id(value)

    @field_validator("player_names")
    @classmethod
    def strip_names(cls, value: list[str]) -> list[str]:
        return [name.strip() for name in value]


class JoinGameRequest(BaseModel):
    game_id: str
    player_names: list[str]

    @field_validator("game_id")
    @classmethod
    def validate_game_id(cls, value: str) -> str:
        return _strip_game_id(value)

    @field_validator("player_names")
    @classmethod
    def validate_player_names(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValidationError("At least one player must join.")
        return [name.strip() for name in value]


class RenamePlayerRequest(BaseModel):
    player_id: UUID
    name: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValidationError("Player name cannot be empty.")
        return value


class GetScoreboardRequest(BaseModel):
    game_id: str

    @field_validator("game_id")
    @classmethod
    def validate_game_id(cls, value: str) -> str:
        return _strip_game_id(value)


# --- RESPONSE MODELS ---
class PlayerResponse(BaseModel):
    player_id: UUID
    display_name: str


class GameResponse(BaseModel):
    game_id: str
    created_at: datetime
    players: list[PlayerResponse]


class FrameResponse(BaseModel):
    frame_index: int
    rolls: list[int]
    frame_total: int
    running_total: int


class PlayerScoreResponse(BaseModel):
    player_id: UUID
    display_name: str
    frames: list[FrameResponse]
    total: int


class SelectionResponse(BaseModel):
    player_id: UUID
    frame_index: int
    roll_index: int
    max_pins: int


class ScoreboardResponse(BaseModel):
    game_id: str
    players: list[PlayerScoreResponse]
    selection: Optional[SelectionResponse] = None

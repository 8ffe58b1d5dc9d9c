"""
Pytest will auto-discover / import this file called 'conftest.py'.
This file defines fixtures/variables required for testing multiple layers.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import StaticPool, create_engine
from sqlalchemy.orm import Session, sessionmaker

from src.core.models import RollModel
from src.db.schema import Base

# Setup an in-memory SQLite database for testing
DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autoflush=False, bind=engine)

GAME_ID = "12345"
T0 = datetime(2025, 1, 1, 18, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_session_repo() -> Generator[Session, None, None]:
    """Connection to a test database. Tables are removed at teardown to make unit tests of repository independent of each other."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def player_id() -> UUID:
    return uuid4()


@pytest.fixture
def make_rolls(player_id: UUID) -> Callable[[dict[int, list[int]]], list[RollModel]]:
    """
    Build RollModels for one player from {frame_index: [pins, pins, ...]} (0-based frame index).
    Every roll gets a later created_at than the one before, in the order given.
    """

    def _make(frames: dict[int, list[int]]) -> list[RollModel]:
        rolls = []
        tick = 0
        for frame_index, pins_list in frames.items():
            for roll_index, pins in enumerate(pins_list):
                rolls.append(
                    RollModel(
                        id=uuid4(),
                        game_id=GAME_ID,
                        player_id=player_id,
                        frame=frame_index + 1,
                        roll=roll_index + 1,
                        pins=pins,
                        created_at=T0 + timedelta(seconds=tick),
                    )
                )
                tick += 1
        return rolls

    return _make


@pytest.fixture
def game_id() -> str:
    return GAME_ID

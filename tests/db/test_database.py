"""Unit tests for src/db/database.py (pointed at the in-memory test engine)"""

from unittest.mock import patch

from sqlalchemy import StaticPool, create_engine, inspect
from sqlalchemy.orm import Session, sessionmaker

from src.db import database
from src.db.schema import Base

engine = create_engine("sqlite:///:memory:", poolclass=StaticPool)
TestingSessionLocal = sessionmaker(bind=engine)


def test_init_db_creates_tables() -> None:
    try:
        with patch.object(database, "engine", engine):
            database.init_db()
        assert {"games", "players", "rolls"} <= set(inspect(engine).get_table_names())
    finally:
        Base.metadata.drop_all(bind=engine)


def test_get_db_closes_session() -> None:
    with patch.object(database, "SessionLocal", TestingSessionLocal):
        generator = database.get_db()
        db = next(generator)
        assert isinstance(db, Session)
        with patch.object(db, "close", wraps=db.close) as close:
            generator.close()
        close.assert_called_once()

"""Unit tests for src/db/db_errors.py"""

import pytest
from sqlalchemy.exc import IntegrityError

from src.db.db_errors import (
    is_duplicate_key_error,
    is_identifier_format_error,
    is_missing_reference_error,
)


@pytest.mark.parametrize(
    "message",
    [
        'invalid input syntax for type uuid: "12345"',
        "Failed to create game: UUID expected",
    ],
)
def test_identifier_format_error(message: str) -> None:
    assert is_identifier_format_error(message)


def test_identifier_format_error_other_text() -> None:
    assert not is_identifier_format_error("connection refused")


def test_missing_reference_error() -> None:
    message = 'insert or update on table "players" violates foreign key constraint "players_game_id_fkey"'
    assert is_missing_reference_error(message)
    assert not is_duplicate_key_error(message)


def test_duplicate_key_error_reads_wrapped_exception() -> None:
    exc = IntegrityError("INSERT INTO rolls", {}, Exception("UNIQUE constraint failed: rolls.game_id"))
    assert is_duplicate_key_error(exc)
    assert not is_identifier_format_error(exc)

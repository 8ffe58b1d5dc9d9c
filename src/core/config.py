"""Runtime settings, read once from the environment."""

import logging
import os

logger = logging.getLogger(__name__)


def _parse_int(env_var: str, default: int, minimum: int = 0) -> int:
    raw_value = os.getenv(env_var)
    if raw_value is None:
        return default

    try:
        value = int(raw_value)
    except ValueError:
        logger.warning(
            "%s is not a valid integer (got %r); defaulting to %d",
            env_var,
            raw_value,
            default,
        )
        return default

    if value < minimum:
        logger.warning("%s cannot be below %d; defaulting to %d", env_var, minimum, default)
        return default

    return value


def _parse_bool(env_var: str, default: bool = False) -> bool:
    raw_value = os.getenv(env_var)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


DATABASE_URL = os.getenv("DATABASE_URL") or "sqlite:///bowling.db"
SQL_ECHO = _parse_bool("SQL_ECHO")

# Redis pub/sub carries the change feed between processes. Unset: the in-process feed (one process only).
REDIS_URL = os.getenv("REDIS_URL")

# Capacity of the queue between a session's feed listeners and its reconciliation consumer.
FEED_QUEUE_SIZE = _parse_int("FEED_QUEUE_SIZE", 256, minimum=1)

# Games older than this are removed by ScorecardService.purge_stale_games().
STALE_GAME_HOURS = _parse_int("STALE_GAME_HOURS", 24, minimum=1)

GAME_ID_DIGITS = _parse_int("GAME_ID_DIGITS", 5, minimum=1)

"""Database tables / schema"""

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class DBGame(Base):
    __tablename__ = "games"
    # Short numeric code by default. Wide enough to hold the UUID fallback.
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now)


class DBPlayer(Base):
    __tablename__ = "players"
    id: Mapped[UUID] = mapped_column(primary_key=True)
    game_id: Mapped[str] = mapped_column(
        ForeignKey("games.id", ondelete="CASCADE"), index=True
    )
    display_name: Mapped[str]
    created_at: Mapped[datetime] = mapped_column(default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now)


class DBRoll(Base):
    __tablename__ = "rolls"
    __table_args__ = (
        UniqueConstraint("game_id", "player_id", "frame", "roll", name="uq_rolls_slot"),
        CheckConstraint("frame BETWEEN 1 AND 10", name="ck_rolls_frame"),
        CheckConstraint("roll BETWEEN 1 AND 3", name="ck_rolls_roll"),
        CheckConstraint("pins BETWEEN 0 AND 10", name="ck_rolls_pins"),
    )
    id: Mapped[UUID] = mapped_column(primary_key=True)
    game_id: Mapped[str] = mapped_column(
        ForeignKey("games.id", ondelete="CASCADE"), index=True
    )
    player_id: Mapped[UUID] = mapped_column(
        ForeignKey("players.id", ondelete="CASCADE")
    )
    frame: Mapped[int]
    roll: Mapped[int]
    pins: Mapped[int]
    created_at: Mapped[datetime] = mapped_column(default=utc_now)

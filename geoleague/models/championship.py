from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from geoleague.models.base import Base
from geoleague.models.user import Profile

ROUNDS_PER_MATCH = 6


class Championship(Base):
    __tablename__ = "championships"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    created_by: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)
    game_mode_id: Mapped[int | None] = mapped_column(ForeignKey("game_modes.id", ondelete="SET NULL"), nullable=True)
    # Регионы режима на момент создания: правки и удаление режима не меняют идущий чемпионат.
    regions: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    participants: Mapped[list["Participant"]] = relationship(
        "Participant",
        back_populates="championship",
        cascade="all, delete-orphan",
    )
    matches: Mapped[list["Match"]] = relationship("Match", back_populates="championship", cascade="all, delete-orphan")


class Participant(Base):
    # Агрегаты меняются только при финализации матча.
    __tablename__ = "championship_participants"
    __table_args__ = (UniqueConstraint("championship_id", "user_id", name="uq_championship_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    championship_id: Mapped[int] = mapped_column(ForeignKey("championships.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    points: Mapped[int] = mapped_column(Integer, default=0)
    matches_played: Mapped[int] = mapped_column(Integer, default=0)
    wins: Mapped[int] = mapped_column(Integer, default=0)
    draws: Mapped[int] = mapped_column(Integer, default=0)
    losses: Mapped[int] = mapped_column(Integer, default=0)

    championship: Mapped[Championship] = relationship("Championship", back_populates="participants")
    user: Mapped[Profile] = relationship("Profile")


class Match(Base):
    __tablename__ = "matches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    championship_id: Mapped[int] = mapped_column(ForeignKey("championships.id", ondelete="CASCADE"), index=True)
    player1_id: Mapped[str] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    player2_id: Mapped[str] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    # Тур расписания, не путать с раундом внутри матча (1..6).
    round_number: Mapped[int] = mapped_column(Integer, index=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    player1_rounds_won: Mapped[int] = mapped_column(Integer, default=0)
    player2_rounds_won: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    championship: Mapped[Championship] = relationship("Championship", back_populates="matches")
    rounds: Mapped[list["MatchRound"]] = relationship("MatchRound", back_populates="match", cascade="all, delete-orphan")

    def opponent_of(self, user_id: str) -> str:
        return self.player2_id if user_id == self.player1_id else self.player1_id

    def has_player(self, user_id: str) -> bool:
        return user_id in (self.player1_id, self.player2_id)


class MatchRound(Base):
    # Каноническая цель раунда матча: пишется один раз, дальше не меняется.
    __tablename__ = "match_rounds"
    __table_args__ = (UniqueConstraint("match_id", "round_number", name="uq_match_round"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    match_id: Mapped[int] = mapped_column(ForeignKey("matches.id", ondelete="CASCADE"), index=True)
    round_number: Mapped[int] = mapped_column(Integer)
    lat: Mapped[float] = mapped_column(Float)
    lng: Mapped[float] = mapped_column(Float)

    match: Mapped[Match] = relationship("Match", back_populates="rounds")

from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from geoleague.models.base import Base


class Guess(Base):
    # Контекст: матч (match_id) или игровой день (location_date).
    __tablename__ = "guesses"
    __table_args__ = (
        UniqueConstraint("match_id", "user_id", "round_number", name="uq_guess_match_user_round"),
        UniqueConstraint("location_date", "user_id", "round_number", name="uq_guess_day_user_round"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    match_id: Mapped[int | None] = mapped_column(ForeignKey("matches.id", ondelete="CASCADE"), nullable=True, index=True)
    location_date: Mapped[str | None] = mapped_column(String(10), nullable=True, index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    round_number: Mapped[int] = mapped_column(Integer)
    # Пустые координаты означают таймаут без ответа.
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    target_lat: Mapped[float] = mapped_column(Float)
    target_lng: Mapped[float] = mapped_column(Float)
    score: Mapped[float] = mapped_column(Float, default=0.0)
    distance_km: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class DailyLocationSet(Base):
    # Упорядоченный список целей игрового дня; round_count служит версией для compare-and-set.
    __tablename__ = "daily_location_sets"

    location_date: Mapped[str] = mapped_column(String(10), primary_key=True)
    locations: Mapped[list] = mapped_column(JSON, default=list)
    round_count: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

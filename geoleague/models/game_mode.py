from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from geoleague.models.base import Base

DEFAULT_REGION_RADIUS_M = 50000.0


class GameMode(Base):
    __tablename__ = "game_modes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    created_by: Mapped[str] = mapped_column(String(64), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    regions: Mapped[list["GameModeRegion"]] = relationship(
        "GameModeRegion",
        back_populates="game_mode",
        cascade="all, delete-orphan",
        order_by="GameModeRegion.id",
    )


class GameModeRegion(Base):
    # Круговая область: центр + радиус в метрах.
    __tablename__ = "game_mode_regions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    game_mode_id: Mapped[int] = mapped_column(ForeignKey("game_modes.id", ondelete="CASCADE"), index=True)
    lat: Mapped[float] = mapped_column(Float)
    lng: Mapped[float] = mapped_column(Float)
    radius_m: Mapped[float] = mapped_column(Float, default=DEFAULT_REGION_RADIUS_M)

    game_mode: Mapped[GameMode] = relationship("GameMode", back_populates="regions")

"""Регистрирует ORM-модели в метаданных SQLAlchemy."""

from geoleague.models.base import Base
from geoleague.models.championship import Championship, Match, MatchRound, Participant
from geoleague.models.game_mode import GameMode, GameModeRegion
from geoleague.models.guess import DailyLocationSet, Guess
from geoleague.models.user import Profile

__all__ = [
    "Base",
    "Profile",
    "GameMode",
    "GameModeRegion",
    "Championship",
    "Participant",
    "Match",
    "MatchRound",
    "Guess",
    "DailyLocationSet",
]

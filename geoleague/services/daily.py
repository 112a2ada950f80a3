"""Дневная свободная игра: лимит раундов на игровой день, история и чужие ответы по той же цели."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from geoleague.core.config import settings
from geoleague.core.errors import DuplicateGuess, RoundOutOfOrder, StoreUnavailable
from geoleague.db.session import commit_or_raise
from geoleague.models.guess import Guess
from geoleague.models.user import Profile
from geoleague.services.geo import Coordinate, game_day
from geoleague.services.scoring import ScoreResult

logger = logging.getLogger(__name__)

# Допуск при сравнении цели: координаты проходят через JSON и float-колонки.
SAME_LOCATION_TOLERANCE_DEG = 0.005


@dataclass
class PlayedRound:
    round_number: int
    target: Coordinate
    guess: Coordinate | None
    score: float
    distance_km: float | None


@dataclass
class OtherGuess:
    username: str
    guess: Coordinate | None
    score: float
    distance_km: float | None


def current_game_day(now: datetime | None = None) -> str:
    return game_day(now, settings.game_day_offset_hours)


def open_game_days(now: datetime | None = None) -> tuple[str, str]:
    # Раунд, начатый до границы дня, можно дослать после нее в свой день.
    now = now or datetime.utcnow()
    return current_game_day(now), current_game_day(now - timedelta(days=1))


async def rounds_played_today(db: AsyncSession, user_id: str, now: datetime | None = None) -> int:
    count = await db.scalar(
        select(func.count(Guess.id)).where(
            Guess.location_date == current_game_day(now),
            Guess.user_id == user_id,
            Guess.match_id.is_(None),
        )
    )
    return int(count or 0)


async def played_rounds_today(db: AsyncSession, user_id: str, now: datetime | None = None) -> list[PlayedRound]:
    rows = (
        await db.scalars(
            select(Guess)
            .where(
                Guess.location_date == current_game_day(now),
                Guess.user_id == user_id,
                Guess.match_id.is_(None),
            )
            .order_by(Guess.round_number)
        )
    ).all()
    return [
        PlayedRound(
            round_number=row.round_number,
            target=Coordinate(lat=row.target_lat, lng=row.target_lng),
            guess=Coordinate(lat=row.lat, lng=row.lng) if row.lat is not None and row.lng is not None else None,
            score=row.score,
            distance_km=row.distance_km,
        )
        for row in rows
    ]


async def guesses_for_location(
    db: AsyncSession,
    target: Coordinate,
    exclude_user_id: str | None = None,
    now: datetime | None = None,
) -> list[OtherGuess]:
    """Ответы других игроков сегодня по той же цели (с допуском по широте и долготе)."""
    query = (
        select(Guess, Profile.username)
        .outerjoin(Profile, Profile.id == Guess.user_id)
        .where(
            Guess.location_date == current_game_day(now),
            Guess.match_id.is_(None),
            Guess.target_lat.between(target.lat - SAME_LOCATION_TOLERANCE_DEG, target.lat + SAME_LOCATION_TOLERANCE_DEG),
            Guess.target_lng.between(target.lng - SAME_LOCATION_TOLERANCE_DEG, target.lng + SAME_LOCATION_TOLERANCE_DEG),
        )
        .order_by(Guess.score.desc())
    )
    if exclude_user_id:
        query = query.where(Guess.user_id != exclude_user_id)

    result = []
    for row, username in (await db.execute(query)).all():
        guess = Coordinate(lat=row.lat, lng=row.lng) if row.lat is not None and row.lng is not None else None
        result.append(OtherGuess(username=username or "Unknown", guess=guess, score=row.score, distance_km=row.distance_km))
    return result


async def record_daily_guess(
    db: AsyncSession,
    user_id: str,
    location_date: str,
    round_number: int,
    target: Coordinate,
    guess: Coordinate | None,
    result: ScoreResult,
) -> Guess:
    existing = await db.scalar(
        select(Guess.id).where(
            Guess.location_date == location_date,
            Guess.user_id == user_id,
            Guess.round_number == round_number,
            Guess.match_id.is_(None),
        )
    )
    if existing:
        raise DuplicateGuess(f"Daily round {round_number} is already recorded")
    if not 1 <= round_number <= settings.daily_rounds_limit:
        raise RoundOutOfOrder(f"Daily rounds go from 1 to {settings.daily_rounds_limit}")

    played = int(
        await db.scalar(
            select(func.count(Guess.id)).where(
                Guess.location_date == location_date,
                Guess.user_id == user_id,
                Guess.match_id.is_(None),
            )
        )
        or 0
    )
    if round_number != played + 1:
        raise RoundOutOfOrder(f"Expected round {played + 1}, got {round_number}")

    row = Guess(
        location_date=location_date,
        user_id=user_id,
        round_number=round_number,
        lat=guess.lat if guess else None,
        lng=guess.lng if guess else None,
        target_lat=target.lat,
        target_lng=target.lng,
        score=result.total,
        distance_km=result.distance_km,
    )
    db.add(row)
    try:
        await db.flush()
        await commit_or_raise(db)
    except IntegrityError as exc:
        await db.rollback()
        raise DuplicateGuess(f"Daily round {round_number} is already recorded") from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreUnavailable("Could not save the guess") from exc
    return row

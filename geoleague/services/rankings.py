import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from geoleague.core.config import settings
from geoleague.models.guess import Guess
from geoleague.models.user import Profile
from geoleague.services.geo import game_day_start
from geoleague.services.scoring import round2

PERIODS = ("daily", "weekly", "monthly", "all-time", "average")


@dataclass
class RankingRow:
    user_id: str
    username: str
    score: float
    rounds: int


def _month_back(moment: datetime) -> datetime:
    # Тот же день прошлого месяца; 31 марта превращается в последний день февраля.
    year, month = (moment.year - 1, 12) if moment.month == 1 else (moment.year, moment.month - 1)
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def period_start(period: str, now: datetime | None = None) -> datetime | None:
    """Начало окна рейтинга; None для all-time и average."""
    now = now or datetime.utcnow()
    if period == "daily":
        return game_day_start(now, settings.game_day_offset_hours)
    if period == "weekly":
        return now - timedelta(days=7)
    if period == "monthly":
        return _month_back(now)
    if period in ("all-time", "average"):
        return None
    raise ValueError(f"Unknown ranking period: {period}")


async def get_rankings(db: AsyncSession, period: str, now: datetime | None = None, limit: int = 100) -> list[RankingRow]:
    """Рейтинг свободной игры: сумма очков за период или средний балл за раунд."""
    start = period_start(period, now)
    rounds = func.count(Guess.id)
    aggregate = func.avg(Guess.score) if period == "average" else func.sum(Guess.score)
    query = (
        select(Guess.user_id, Profile.username, aggregate.label("score"), rounds.label("rounds"))
        .outerjoin(Profile, Profile.id == Guess.user_id)
        .where(Guess.match_id.is_(None))
        .group_by(Guess.user_id, Profile.username)
        .order_by(aggregate.desc(), Guess.user_id)
        .limit(limit)
    )
    if start is not None:
        query = query.where(Guess.created_at >= start)
    if period == "average":
        query = query.having(rounds >= settings.ranking_average_min_rounds)

    return [
        RankingRow(user_id=user_id, username=username or "Unknown", score=round2(float(score or 0)), rounds=int(count))
        for user_id, username, score, count in (await db.execute(query)).all()
    ]

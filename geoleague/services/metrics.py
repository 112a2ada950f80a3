"""Разбор матча и статистика чемпионата по сохраненным ответам."""

import math
from collections import defaultdict
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from geoleague.core.errors import NotFound
from geoleague.models.championship import Match, MatchRound, Participant
from geoleague.models.guess import Guess
from geoleague.models.user import Profile
from geoleague.services.geo import CONTINENTS, Coordinate, get_continent


@dataclass
class RecapGuess:
    user_id: str
    guess: Coordinate | None
    score: float
    distance_km: float | None


@dataclass
class RecapRound:
    round_number: int
    target: Coordinate
    guesses: list[RecapGuess] = field(default_factory=list)


@dataclass
class MatchRecap:
    match_id: int
    status: str
    players: dict[str, str]
    rounds: list[RecapRound]


@dataclass
class PlayerMetrics:
    user_id: str
    username: str
    avg_score: int
    avg_distance: int
    max_score: float
    total_rounds: int


@dataclass
class ContinentMetrics:
    name: str
    # username -> округленный средний балл на континенте
    by_player: dict[str, int]
    sort_metric: float


@dataclass
class ChampionshipMetrics:
    players: list[PlayerMetrics]
    continents: list[ContinentMetrics]


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _coordinate_or_none(lat: float | None, lng: float | None) -> Coordinate | None:
    if lat is None or lng is None:
        return None
    return Coordinate(lat=lat, lng=lng)


async def _usernames(db: AsyncSession, user_ids) -> dict[str, str]:
    rows = (await db.execute(select(Profile.id, Profile.username).where(Profile.id.in_(list(user_ids))))).all()
    return {user_id: username for user_id, username in rows}


async def match_recap(db: AsyncSession, match_id: int) -> MatchRecap:
    match = await db.scalar(select(Match).where(Match.id == match_id))
    if not match:
        raise NotFound("Match not found")

    names = await _usernames(db, [match.player1_id, match.player2_id])
    players = {user_id: names.get(user_id, "Unknown") for user_id in (match.player1_id, match.player2_id)}

    targets = (
        await db.scalars(select(MatchRound).where(MatchRound.match_id == match_id).order_by(MatchRound.round_number))
    ).all()
    guesses = (
        await db.scalars(select(Guess).where(Guess.match_id == match_id).order_by(Guess.round_number, Guess.id))
    ).all()
    by_round: dict[int, list[RecapGuess]] = defaultdict(list)
    for row in guesses:
        by_round[row.round_number].append(
            RecapGuess(
                user_id=row.user_id,
                guess=_coordinate_or_none(row.lat, row.lng),
                score=row.score,
                distance_km=row.distance_km,
            )
        )

    rounds = [
        RecapRound(
            round_number=target.round_number,
            target=Coordinate(lat=target.lat, lng=target.lng),
            guesses=by_round.get(target.round_number, []),
        )
        for target in targets
    ]
    return MatchRecap(match_id=match.id, status=match.status, players=players, rounds=rounds)


def summarize_player(user_id: str, username: str, guesses: list[Guess]) -> PlayerMetrics:
    # Пустая выборка делится на 1, как в таблице статистики: средние будут нулями.
    count = len(guesses) or 1
    return PlayerMetrics(
        user_id=user_id,
        username=username,
        avg_score=round_half_up(sum(g.score or 0 for g in guesses) / count),
        avg_distance=round_half_up(sum(g.distance_km or 0 for g in guesses) / count),
        max_score=max([g.score or 0 for g in guesses] + [0]),
        total_rounds=len(guesses),
    )


def continent_breakdown(names: dict[str, str], guesses_by_user: dict[str, list[Guess]]) -> list[ContinentMetrics]:
    """Средний балл игроков по континентам цели; порядок по среднему ненулевых средних."""
    result = []
    for continent in CONTINENTS:
        by_player: dict[str, int] = {}
        total = 0.0
        players_count = 0
        for user_id, username in names.items():
            scores = [
                g.score or 0
                for g in guesses_by_user.get(user_id, [])
                if get_continent(g.target_lat, g.target_lng) == continent
            ]
            avg = sum(scores) / len(scores) if scores else 0.0
            by_player[username] = round_half_up(avg)
            if avg > 0:
                total += avg
                players_count += 1
        result.append(
            ContinentMetrics(name=continent, by_player=by_player, sort_metric=total / players_count if players_count else 0.0)
        )
    return sorted(result, key=lambda item: item.sort_metric, reverse=True)


async def championship_metrics(db: AsyncSession, championship_id: int) -> ChampionshipMetrics:
    user_ids = list(
        (await db.scalars(select(Participant.user_id).where(Participant.championship_id == championship_id).order_by(Participant.id))).all()
    )
    if not user_ids:
        raise NotFound("Championship not found")

    match_ids = select(Match.id).where(Match.championship_id == championship_id)
    guesses = (await db.scalars(select(Guess).where(Guess.match_id.in_(match_ids)))).all()
    guesses_by_user: dict[str, list[Guess]] = defaultdict(list)
    for row in guesses:
        guesses_by_user[row.user_id].append(row)

    known = await _usernames(db, user_ids)
    names = {user_id: known.get(user_id, "Unknown") for user_id in user_ids}
    players = [summarize_player(user_id, names[user_id], guesses_by_user.get(user_id, [])) for user_id in user_ids]
    return ChampionshipMetrics(players=players, continents=continent_breakdown(names, guesses_by_user))

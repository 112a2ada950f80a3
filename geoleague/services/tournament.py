import logging
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from geoleague.core.errors import InvalidFixtureInput, NotFound, StoreUnavailable
from geoleague.db.session import commit_or_raise
from geoleague.models.championship import ROUNDS_PER_MATCH, Championship, Match, MatchRound, Participant
from geoleague.models.game_mode import GameMode
from geoleague.models.guess import Guess
from geoleague.models.user import Profile
from geoleague.services.game_modes import load_regions, region_snapshot
from geoleague.services.match import StandingTotals, recompute_aggregates

logger = logging.getLogger(__name__)

Pairing = tuple[int, str, str]


@dataclass
class StandingRow:
    user_id: str
    username: str
    points: int
    matches_played: int
    wins: int
    draws: int
    losses: int
    rounds_won: int


def build_round_robin(participant_ids: Sequence[str]) -> list[Pairing]:
    """Круговая система методом вращения: (тур, игрок 1, игрок 2).

    Для нечетного N добавляется фантом; кто попал в пару с ним, пропускает тур.
    Каждый участник отдыхает ровно один раз, туров получается N (для четного N - N-1).
    """
    players: list[str | None] = list(participant_ids)
    if len(players) < 2:
        return []
    if len(players) % 2:
        players.append(None)

    size = len(players)
    fixture: list[Pairing] = []
    for round_idx in range(size - 1):
        for slot in range(size // 2):
            home, away = players[slot], players[size - 1 - slot]
            if home is None or away is None:
                continue
            # Закрепленный игрок чередует позицию, чтобы не быть всегда первым.
            if slot == 0 and round_idx % 2:
                home, away = away, home
            fixture.append((round_idx + 1, home, away))
        players = [players[0], players[-1], *players[1:-1]]
    return fixture


def bye_rounds(participant_ids: Sequence[str], fixture: Sequence[Pairing]) -> dict[str, list[int]]:
    # Туры, в которых участник не играет.
    rounds = sorted({round_number for round_number, _p1, _p2 in fixture})
    busy: dict[str, set[int]] = defaultdict(set)
    for round_number, player1, player2 in fixture:
        busy[player1].add(round_number)
        busy[player2].add(round_number)
    return {user_id: [r for r in rounds if r not in busy[user_id]] for user_id in participant_ids}


def _unique_ids(participant_ids: Sequence[str]) -> list[str]:
    seen: list[str] = []
    for user_id in participant_ids:
        user_id = (user_id or "").strip()
        if user_id and user_id not in seen:
            seen.append(user_id)
    return seen


async def create_championship(
    db: AsyncSession,
    name: str,
    participant_ids: Sequence[str],
    created_by: str,
    game_mode_id: int | None = None,
) -> Championship:
    """Создает чемпионат, участников и все матчи расписания одной транзакцией."""
    name = (name or "").strip()
    if not name:
        raise InvalidFixtureInput("Championship name is required")
    unique_ids = _unique_ids(participant_ids)
    if len(unique_ids) < 2:
        raise InvalidFixtureInput("At least 2 distinct participants are required")

    known = set((await db.scalars(select(Profile.id).where(Profile.id.in_(unique_ids)))).all())
    missing = [user_id for user_id in unique_ids if user_id not in known]
    if missing:
        raise InvalidFixtureInput(f"Unknown participants: {', '.join(missing)}")
    if game_mode_id is not None and not await db.scalar(select(GameMode.id).where(GameMode.id == game_mode_id)):
        raise NotFound("Game mode not found")
    regions = region_snapshot(await load_regions(db, game_mode_id))

    championship = Championship(
        name=name, created_by=created_by, game_mode_id=game_mode_id, regions=regions, status="active"
    )
    try:
        db.add(championship)
        await db.flush()
        for user_id in unique_ids:
            db.add(Participant(championship_id=championship.id, user_id=user_id))
        for round_number, player1, player2 in build_round_robin(unique_ids):
            db.add(
                Match(
                    championship_id=championship.id,
                    player1_id=player1,
                    player2_id=player2,
                    round_number=round_number,
                    status="pending",
                )
            )
        await db.flush()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreUnavailable("Could not create championship") from exc

    await commit_or_raise(db)
    logger.info("Championship %s created with %s participants", championship.id, len(unique_ids))
    return championship


async def delete_championship(db: AsyncSession, championship_id: int) -> None:
    # Каскад вручную, чтобы не зависеть от ON DELETE в конкретной СУБД.
    championship = await db.scalar(select(Championship.id).where(Championship.id == championship_id))
    if not championship:
        raise NotFound("Championship not found")

    match_ids = select(Match.id).where(Match.championship_id == championship_id)
    try:
        await db.execute(delete(Guess).where(Guess.match_id.in_(match_ids)))
        await db.execute(delete(MatchRound).where(MatchRound.match_id.in_(match_ids)))
        await db.execute(delete(Match).where(Match.championship_id == championship_id))
        await db.execute(delete(Participant).where(Participant.championship_id == championship_id))
        await db.execute(delete(Championship).where(Championship.id == championship_id))
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreUnavailable("Could not delete championship") from exc

    await commit_or_raise(db)
    logger.info("Championship %s deleted", championship_id)


def next_playable_round(matches: Sequence[Match]) -> int:
    """Наименьший тур с незавершенным матчем; если все сыграно, то последний тур."""
    if not matches:
        return 1
    pending_rounds = [match.round_number for match in matches if match.status != "completed"]
    if pending_rounds:
        return min(pending_rounds)
    return max(match.round_number for match in matches)


def group_by_round(matches: Sequence[Match]) -> dict[int, list[Match]]:
    rounds: dict[int, list[Match]] = defaultdict(list)
    for match in sorted(matches, key=lambda m: (m.round_number, m.id or 0)):
        rounds[match.round_number].append(match)
    return dict(rounds)


def sort_participants_for_table(participants: Sequence[Participant]) -> list[Participant]:
    # Только по очкам; при равенстве сохраняется исходный порядок (sorted стабилен).
    return sorted(participants, key=lambda p: p.points, reverse=True)


async def get_championship(db: AsyncSession, championship_id: int) -> Championship:
    championship = await db.scalar(
        select(Championship)
        .where(Championship.id == championship_id)
        .options(selectinload(Championship.participants).selectinload(Participant.user))
    )
    if not championship:
        raise NotFound("Championship not found")
    return championship


async def list_championships(db: AsyncSession) -> list[Championship]:
    return list((await db.scalars(select(Championship).order_by(Championship.created_at.desc()))).all())


async def get_matches(db: AsyncSession, championship_id: int) -> list[Match]:
    return list(
        (
            await db.scalars(
                select(Match)
                .where(Match.championship_id == championship_id)
                .order_by(Match.round_number, Match.id)
            )
        ).all()
    )


async def get_standings(db: AsyncSession, championship_id: int) -> list[StandingRow]:
    championship = await get_championship(db, championship_id)
    matches = await get_matches(db, championship_id)
    rounds_won: dict[str, int] = defaultdict(int)
    for match in matches:
        rounds_won[match.player1_id] += match.player1_rounds_won
        rounds_won[match.player2_id] += match.player2_rounds_won

    participants = sorted(championship.participants, key=lambda p: p.id)
    return [
        StandingRow(
            user_id=participant.user_id,
            username=participant.user.username if participant.user else "Unknown",
            points=participant.points,
            matches_played=participant.matches_played,
            wins=participant.wins,
            draws=participant.draws,
            losses=participant.losses,
            rounds_won=rounds_won[participant.user_id],
        )
        for participant in sort_participants_for_table(participants)
    ]


async def pending_matches_for(db: AsyncSession, user_id: str) -> list[Match]:
    return list(
        (
            await db.scalars(
                select(Match)
                .where(
                    Match.status == "pending",
                    (Match.player1_id == user_id) | (Match.player2_id == user_id),
                )
                .order_by(Match.round_number, Match.id)
            )
        ).all()
    )


def _apply_totals(participants: Sequence[Participant], totals: dict[str, StandingTotals]) -> None:
    for participant in participants:
        fresh = totals.get(participant.user_id, StandingTotals())
        participant.points = fresh.points
        participant.matches_played = fresh.matches_played
        participant.wins = fresh.wins
        participant.draws = fresh.draws
        participant.losses = fresh.losses


async def _recompute_in_transaction(db: AsyncSession, championship_id: int) -> None:
    participants = list(
        (
            await db.scalars(
                select(Participant)
                .where(Participant.championship_id == championship_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).all()
    )
    matches = list(
        (
            await db.scalars(
                select(Match)
                .where(Match.championship_id == championship_id)
                .execution_options(populate_existing=True)
            )
        ).all()
    )
    totals = recompute_aggregates(matches, [participant.user_id for participant in participants])
    _apply_totals(participants, totals)


async def rebuild_standings(db: AsyncSession, championship_id: int) -> None:
    """Пересобирает агрегаты участников с нуля по завершенным матчам."""
    if not await db.scalar(select(Championship.id).where(Championship.id == championship_id)):
        raise NotFound("Championship not found")
    try:
        await _recompute_in_transaction(db, championship_id)
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreUnavailable("Could not rebuild standings") from exc
    await commit_or_raise(db)


async def override_match_result(
    db: AsyncSession,
    match_id: int,
    player1_rounds_won: int,
    player2_rounds_won: int,
) -> Match:
    """Административная правка результата: матч завершается, таблица пересчитывается целиком."""
    if not (0 <= player1_rounds_won <= ROUNDS_PER_MATCH and 0 <= player2_rounds_won <= ROUNDS_PER_MATCH):
        raise ValueError(f"Rounds won must be between 0 and {ROUNDS_PER_MATCH}")
    if player1_rounds_won + player2_rounds_won > ROUNDS_PER_MATCH:
        raise ValueError(f"A match has only {ROUNDS_PER_MATCH} rounds")

    match = await db.scalar(select(Match).where(Match.id == match_id).with_for_update())
    if not match:
        raise NotFound("Match not found")

    try:
        match.player1_rounds_won = player1_rounds_won
        match.player2_rounds_won = player2_rounds_won
        match.status = "completed"
        match.completed_at = match.completed_at or datetime.utcnow()
        await db.flush()
        await _recompute_in_transaction(db, match.championship_id)

        statuses = (await db.scalars(select(Match.status).where(Match.championship_id == match.championship_id))).all()
        championship = await db.scalar(select(Championship).where(Championship.id == match.championship_id))
        if championship and all(status == "completed" for status in statuses):
            championship.status = "completed"
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreUnavailable("Could not override match result") from exc

    await commit_or_raise(db)
    logger.warning("Match %s result overridden to %s-%s", match_id, player1_rounds_won, player2_rounds_won)
    return match

"""Машина состояний матча: счетчики раундов игроков, прием ответов и финализация результата."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from geoleague.core.errors import DuplicateGuess, NotAParticipant, NotFound, RoundOutOfOrder, StoreUnavailable
from geoleague.db.session import commit_or_raise
from geoleague.models.championship import ROUNDS_PER_MATCH, Championship, Match, Participant
from geoleague.models.guess import Guess
from geoleague.services.geo import Coordinate
from geoleague.services.scoring import ScoreResult

logger = logging.getLogger(__name__)

POINTS_WIN = 3
POINTS_DRAW = 1
POINTS_LOSS = 0


@dataclass
class StandingTotals:
    points: int = 0
    matches_played: int = 0
    wins: int = 0
    draws: int = 0
    losses: int = 0
    rounds_won: int = 0

    def as_tuple(self) -> tuple[int, int, int, int, int]:
        return (self.points, self.matches_played, self.wins, self.draws, self.losses)


def count_round_wins(player1_scores: dict[int, float], player2_scores: dict[int, float]) -> tuple[int, int]:
    # Раунд выигрывает тот, чей счет строго больше; равенство не засчитывается никому.
    player1_won = player2_won = 0
    for round_number in range(1, ROUNDS_PER_MATCH + 1):
        first = player1_scores.get(round_number, 0.0)
        second = player2_scores.get(round_number, 0.0)
        if first > second:
            player1_won += 1
        elif second > first:
            player2_won += 1
    return player1_won, player2_won


def apply_match_result(player1, player2, player1_rounds_won: int, player2_rounds_won: int) -> None:
    """Начисляет очки и W/D/L обоим участникам (объекты с полями Participant или StandingTotals)."""
    for participant in (player1, player2):
        participant.matches_played += 1

    if player1_rounds_won == player2_rounds_won:
        for participant in (player1, player2):
            participant.points += POINTS_DRAW
            participant.draws += 1
        return

    winner, loser = (player1, player2) if player1_rounds_won > player2_rounds_won else (player2, player1)
    winner.points += POINTS_WIN
    winner.wins += 1
    loser.points += POINTS_LOSS
    loser.losses += 1


def recompute_aggregates(matches: Iterable[Match], user_ids: Iterable[str] = ()) -> dict[str, StandingTotals]:
    """Пересчитывает агрегаты участников с нуля только по завершенным матчам."""
    totals: dict[str, StandingTotals] = {user_id: StandingTotals() for user_id in user_ids}
    for match in matches:
        first = totals.setdefault(match.player1_id, StandingTotals())
        second = totals.setdefault(match.player2_id, StandingTotals())
        if match.status != "completed":
            continue
        first.rounds_won += match.player1_rounds_won
        second.rounds_won += match.player2_rounds_won
        apply_match_result(first, second, match.player1_rounds_won, match.player2_rounds_won)
    return totals


async def get_match_for_player(db: AsyncSession, match_id: int, user_id: str) -> Match:
    match = await db.scalar(select(Match).where(Match.id == match_id))
    if not match:
        raise NotFound("Match not found")
    if not match.has_player(user_id):
        raise NotAParticipant("You are not a player in this match")
    return match


async def rounds_played(db: AsyncSession, match_id: int, user_id: str) -> int:
    count = await db.scalar(
        select(func.count(Guess.id)).where(Guess.match_id == match_id, Guess.user_id == user_id)
    )
    return int(count or 0)


async def record_match_guess(
    db: AsyncSession,
    match: Match,
    user_id: str,
    round_number: int,
    target: Coordinate,
    guess: Coordinate | None,
    result: ScoreResult,
) -> Guess:
    """Сохраняет ответ раунда матча; после шестого раунда запускает проверку завершения."""
    if not match.has_player(user_id):
        raise NotAParticipant("You are not a player in this match")

    existing = await db.scalar(
        select(Guess.id).where(
            Guess.match_id == match.id,
            Guess.user_id == user_id,
            Guess.round_number == round_number,
        )
    )
    if existing:
        raise DuplicateGuess(f"Round {round_number} is already recorded")
    if match.status == "completed":
        raise RoundOutOfOrder("Match is already completed")
    if not 1 <= round_number <= ROUNDS_PER_MATCH:
        raise RoundOutOfOrder(f"Match rounds go from 1 to {ROUNDS_PER_MATCH}")

    played = await rounds_played(db, match.id, user_id)
    if round_number != played + 1:
        raise RoundOutOfOrder(f"Expected round {played + 1}, got {round_number}")

    row = Guess(
        match_id=match.id,
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
        # Параллельная отправка того же раунда из другой сессии.
        await db.rollback()
        raise DuplicateGuess(f"Round {round_number} is already recorded") from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreUnavailable("Could not save the guess") from exc

    if round_number == ROUNDS_PER_MATCH:
        try:
            await evaluate_match_completion(db, match.id)
        except StoreUnavailable:
            # Ответ уже сохранен; завершение идемпотентно и будет повторено.
            logger.error("Completion check failed for match %s", match.id, exc_info=True)
    return row


async def evaluate_match_completion(db: AsyncSession, match_id: int) -> bool:
    """Финализирует матч, когда оба игрока сыграли все раунды.

    Возвращает True только для вызова, который перевел матч в completed. Повторный вызов
    на завершенном матче ничего не меняет. Матч и оба участника обновляются одной транзакцией.
    """
    try:
        match = await db.scalar(
            select(Match)
            .where(Match.id == match_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if not match:
            raise NotFound("Match not found")
        if match.status == "completed":
            # Закрываем транзакцию без изменений, снимая блокировку строки.
            await db.commit()
            return False

        rows = (
            await db.execute(
                select(Guess.user_id, Guess.round_number, Guess.score).where(Guess.match_id == match_id)
            )
        ).all()
        scores: dict[str, dict[int, float]] = {match.player1_id: {}, match.player2_id: {}}
        for user_id, round_number, score in rows:
            if user_id in scores:
                scores[user_id][round_number] = score
        if any(len(player_scores) < ROUNDS_PER_MATCH for player_scores in scores.values()):
            await db.commit()
            return False

        participants = list(
            (
                await db.scalars(
                    select(Participant)
                    .where(
                        Participant.championship_id == match.championship_id,
                        Participant.user_id.in_([match.player1_id, match.player2_id]),
                    )
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
            ).all()
        )
        by_user = {participant.user_id: participant for participant in participants}
        if match.player1_id not in by_user or match.player2_id not in by_user:
            raise NotFound("Participant rows for this match are missing")

        player1_won, player2_won = count_round_wins(scores[match.player1_id], scores[match.player2_id])
        match.player1_rounds_won = player1_won
        match.player2_rounds_won = player2_won
        match.status = "completed"
        match.completed_at = datetime.utcnow()
        apply_match_result(by_user[match.player1_id], by_user[match.player2_id], player1_won, player2_won)
        await db.flush()

        pending_left = await db.scalar(
            select(func.count(Match.id)).where(
                Match.championship_id == match.championship_id,
                Match.status != "completed",
            )
        )
        if not pending_left:
            championship = await db.scalar(select(Championship).where(Championship.id == match.championship_id))
            if championship:
                championship.status = "completed"
    except NotFound:
        await db.rollback()
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreUnavailable("Could not evaluate match completion") from exc

    await commit_or_raise(db)
    logger.info("Match %s completed %s-%s", match_id, player1_won, player2_won)
    return True

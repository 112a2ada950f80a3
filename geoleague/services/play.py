"""Игровые сессии: дневная игра, матч чемпионата и тренировка в кастомном режиме.

Таймер раунда живет только в сессии. По истечении бюджета сессия отправляет пустой ответ
тем же путем, что и обычный ответ; сервер поздние ответы не отклоняет.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime

from geoleague.core.config import settings
from geoleague.core.errors import DailyLimitReached, DuplicateGuess, RoundOutOfOrder, StoreUnavailable
from geoleague.models.championship import ROUNDS_PER_MATCH
from geoleague.services import daily, match as match_service
from geoleague.services.game_modes import regions_for_championship
from geoleague.services.geo import Coordinate, Region
from geoleague.services.location_cache import (
    DailyContext,
    MatchContext,
    SqlTargetStore,
    resolve_daily_target,
    resolve_match_target,
)
from geoleague.services.scoring import AbsoluteScoring, ScoreResult, ScoringMode, score_guess, scoring_mode_for_regions

logger = logging.getLogger(__name__)


class RoundCountdown:
    def __init__(self, budget_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.budget_seconds = float(budget_seconds)
        self._clock = clock
        self.started_at = clock()

    def elapsed(self) -> float:
        return self._clock() - self.started_at

    def time_left(self) -> float:
        return clamp_time_left(self.budget_seconds - self.elapsed(), self.budget_seconds)

    @property
    def expired(self) -> bool:
        return self.time_left() <= 0


def clamp_time_left(time_left: float | None, budget_seconds: float) -> float:
    # Время от клиента не проверяется сервером, только ограничивается бюджетом раунда.
    if time_left is None:
        return 0.0
    return max(0.0, min(float(budget_seconds), float(time_left)))


@dataclass
class RoundOutcome:
    round_number: int
    target: Coordinate
    guess: Coordinate | None
    result: ScoreResult
    saved: bool
    duplicate: bool = False


async def _save(persist) -> bool:
    """Сохраняет результат; сбой хранилища не останавливает игру, а помечает очки несохраненными."""
    try:
        await persist
    except StoreUnavailable:
        logger.error("Score was not saved", exc_info=True)
        return False
    return True


async def start_daily_round(
    db, provider, user_id: str, now: datetime | None = None
) -> tuple[str, int, Coordinate]:
    """Открывает следующий дневной раунд; возвращает игровой день, номер раунда и цель."""
    played = await daily.rounds_played_today(db, user_id, now)
    if played >= settings.daily_rounds_limit:
        raise DailyLimitReached(f"All {settings.daily_rounds_limit} daily rounds are played")
    round_number = played + 1
    location_date, target = await resolve_daily_target(db, provider, round_number, now)
    return location_date, round_number, target


async def submit_daily_guess(
    db,
    user_id: str,
    round_number: int,
    guess: Coordinate | None,
    time_left: float | None,
    now: datetime | None = None,
    location_date: str | None = None,
) -> RoundOutcome:
    # Ответ относится к дню, в котором раунд был начат, а не к дню отправки.
    if location_date is None:
        location_date = daily.current_game_day(now)
    elif location_date not in daily.open_game_days(now):
        raise RoundOutOfOrder(f"Game day {location_date} is closed")
    targets = await SqlTargetStore(db).read(DailyContext(location_date=location_date))
    target = targets.get(round_number)
    if target is None:
        raise RoundOutOfOrder(f"Daily round {round_number} has not been started")

    result = score_guess(AbsoluteScoring(), target, guess, clamp_time_left(time_left, settings.free_play_round_seconds))
    saved = await _save(daily.record_daily_guess(db, user_id, location_date, round_number, target, guess, result))
    return RoundOutcome(round_number=round_number, target=target, guess=guess, result=result, saved=saved)


async def start_match_round(
    db,
    provider,
    match_id: int,
    user_id: str,
    regions: Sequence[Region] | None = None,
) -> tuple[int, Coordinate]:
    match = await match_service.get_match_for_player(db, match_id, user_id)
    played = await match_service.rounds_played(db, match_id, user_id)
    if match.status == "completed":
        raise RoundOutOfOrder("Match is already completed")
    if played >= ROUNDS_PER_MATCH:
        raise RoundOutOfOrder("All match rounds are played")
    if regions is None:
        regions = await regions_for_championship(db, match.championship_id)
    round_number = played + 1
    target = await resolve_match_target(db, provider, match_id, round_number, regions)
    return round_number, target


async def submit_match_guess(
    db,
    match_id: int,
    user_id: str,
    round_number: int,
    guess: Coordinate | None,
    time_left: float | None,
    regions: Sequence[Region] | None = None,
) -> RoundOutcome:
    match = await match_service.get_match_for_player(db, match_id, user_id)
    if regions is None:
        regions = await regions_for_championship(db, match.championship_id)
    targets = await SqlTargetStore(db).read(MatchContext(match_id=match_id))
    target = targets.get(round_number)
    if target is None:
        raise RoundOutOfOrder(f"Match round {round_number} has not been started")

    mode = scoring_mode_for_regions(regions)
    result = score_guess(mode, target, guess, clamp_time_left(time_left, settings.match_round_seconds))
    saved = await _save(match_service.record_match_guess(db, match, user_id, round_number, target, guess, result))
    return RoundOutcome(round_number=round_number, target=target, guess=guess, result=result, saved=saved)


class PlaySession:
    """Общий цикл раунда: старт, таймер, ответ или автоматический пустой ответ."""

    budget_seconds: float = 0

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.clock = clock
        self.current_round: int | None = None
        self.target: Coordinate | None = None
        self.countdown: RoundCountdown | None = None
        self.outcomes: list[RoundOutcome] = []

    async def _start(self) -> tuple[int, Coordinate]:
        raise NotImplementedError

    async def _submit(self, round_number: int, guess: Coordinate | None, time_left: float) -> RoundOutcome:
        raise NotImplementedError

    async def start_round(self) -> tuple[int, Coordinate]:
        if self.current_round is not None:
            raise RoundOutOfOrder(f"Round {self.current_round} is still in progress")
        round_number, target = await self._start()
        self.current_round = round_number
        self.target = target
        self.countdown = RoundCountdown(self.budget_seconds, self.clock)
        return round_number, target

    async def submit(self, guess: Coordinate | None) -> RoundOutcome:
        if self.current_round is None or self.target is None:
            raise RoundOutOfOrder("No round in progress")
        round_number, target = self.current_round, self.target
        time_left = self.countdown.time_left() if self.countdown else 0.0
        # Раунд закрывается до записи, чтобы watch() не отправил второй ответ.
        self.current_round = None
        try:
            outcome = await self._submit(round_number, guess, time_left)
        except DuplicateGuess:
            logger.info("Round %s was already recorded, moving on", round_number)
            result = score_guess(self.scoring_mode, target, guess, time_left)
            outcome = RoundOutcome(round_number, target, guess, result, saved=False, duplicate=True)
        except Exception:
            # Ответ не принят: раунд остается открытым для повторной отправки.
            self.current_round = round_number
            raise
        self.outcomes.append(outcome)
        return outcome

    async def expire(self) -> RoundOutcome:
        return await self.submit(None)

    async def watch(self) -> RoundOutcome | None:
        """Ждет конца бюджета раунда и отправляет пустой ответ, если игрок не успел."""
        round_number = self.current_round
        if round_number is None or self.countdown is None:
            return None
        await asyncio.sleep(self.countdown.time_left())
        if self.current_round != round_number:
            return None
        return await self.expire()

    @property
    def scoring_mode(self) -> ScoringMode:
        raise NotImplementedError

    @property
    def total_score(self) -> float:
        return round(sum(outcome.result.total for outcome in self.outcomes), 2)


class DailyPlaySession(PlaySession):
    budget_seconds = settings.free_play_round_seconds

    def __init__(self, db, provider, user_id: str, now: Callable[[], datetime] | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.db = db
        self.provider = provider
        self.user_id = user_id
        self.now = now or datetime.utcnow
        self.location_date: str | None = None

    @property
    def scoring_mode(self) -> ScoringMode:
        return AbsoluteScoring()

    async def _start(self) -> tuple[int, Coordinate]:
        location_date, round_number, target = await start_daily_round(self.db, self.provider, self.user_id, self.now())
        self.location_date = location_date
        return round_number, target

    async def _submit(self, round_number: int, guess: Coordinate | None, time_left: float) -> RoundOutcome:
        return await submit_daily_guess(
            self.db, self.user_id, round_number, guess, time_left, self.now(), location_date=self.location_date
        )


class MatchPlaySession(PlaySession):
    budget_seconds = settings.match_round_seconds

    def __init__(self, db, provider, match_id: int, user_id: str, **kwargs) -> None:
        super().__init__(**kwargs)
        self.db = db
        self.provider = provider
        self.match_id = match_id
        self.user_id = user_id
        self._regions: list[Region] | None = None
        self._scoring_mode: ScoringMode | None = None

    async def regions(self) -> list[Region]:
        # Регионы читаются один раз на матч и дальше переиспользуются.
        if self._regions is None:
            match = await match_service.get_match_for_player(self.db, self.match_id, self.user_id)
            self._regions = await regions_for_championship(self.db, match.championship_id)
            self._scoring_mode = scoring_mode_for_regions(self._regions)
        return self._regions

    @property
    def scoring_mode(self) -> ScoringMode:
        return self._scoring_mode or scoring_mode_for_regions(self._regions or [])

    async def _start(self) -> tuple[int, Coordinate]:
        regions = await self.regions()
        return await start_match_round(self.db, self.provider, self.match_id, self.user_id, regions)

    async def _submit(self, round_number: int, guess: Coordinate | None, time_left: float) -> RoundOutcome:
        regions = await self.regions()
        return await submit_match_guess(self.db, self.match_id, self.user_id, round_number, guess, time_left, regions)


class PracticePlaySession(PlaySession):
    """Тренировка по регионам режима: новая цель каждый раунд, ничего не сохраняется."""

    budget_seconds = settings.match_round_seconds

    def __init__(self, provider, regions: Sequence[Region], **kwargs) -> None:
        super().__init__(**kwargs)
        self.provider = provider
        self.regions = list(regions)
        self.rounds_started = 0
        self._scoring_mode = scoring_mode_for_regions(self.regions)

    @property
    def scoring_mode(self) -> ScoringMode:
        return self._scoring_mode

    async def _start(self) -> tuple[int, Coordinate]:
        target = await self.provider.sample_valid_coordinate(self.regions)
        self.rounds_started += 1
        return self.rounds_started, target

    async def _submit(self, round_number: int, guess: Coordinate | None, time_left: float) -> RoundOutcome:
        result = score_guess(self.scoring_mode, self.target, guess, time_left)
        return RoundOutcome(round_number, self.target, guess, result, saved=False)

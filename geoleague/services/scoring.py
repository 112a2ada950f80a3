"""Подсчет очков за раунд: абсолютный режим (дневная игра) и относительный (турнир/кастомные регионы).

Функции чистые: без I/O и общего состояния. Режим выбирается один раз на матч/сессию
и передается явно (AbsoluteScoring | TieredScoring | LadderScoring).
"""

from collections.abc import Sequence
from dataclasses import dataclass
from itertools import combinations_with_replacement

from geoleague.services.geo import Coordinate, Region, geodesic_distance_km

MAX_SCORE = 100.0

ABSOLUTE_PERFECT_KM = 0.5
ABSOLUTE_MIN_KM = 1.0
ABSOLUTE_MAX_KM = 15000.0
ABSOLUTE_DISTANCE_POINTS = 90.0
ABSOLUTE_TIME_POINTS = 10.0
ABSOLUTE_TIME_CAP_SECONDS = 60.0

# Лестница для относительного режима без кастомных регионов: (до км включительно, очки).
DISTANCE_LADDER: list[tuple[float, float]] = [
    (0.5, 100.0),
    (2.0, 90.0),
    (10.0, 80.0),
    (50.0, 60.0),
    (250.0, 40.0),
    (1000.0, 20.0),
    (5000.0, 5.0),
]


@dataclass(frozen=True)
class AbsoluteScoring:
    pass


@dataclass(frozen=True)
class TieredScoring:
    threshold_km: float


@dataclass(frozen=True)
class LadderScoring:
    pass


ScoringMode = AbsoluteScoring | TieredScoring | LadderScoring


@dataclass(frozen=True)
class ScoreResult:
    total: float
    distance_points: float
    time_points: float
    distance_km: float | None

    @property
    def timed_out(self) -> bool:
        return self.distance_km is None


def round2(value: float) -> float:
    return round(value, 2)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def absolute_distance_points(distance_km: float) -> float:
    if distance_km >= ABSOLUTE_MAX_KM:
        return 0.0
    raw = ABSOLUTE_DISTANCE_POINTS * (1 - (distance_km - ABSOLUTE_MIN_KM) / (ABSOLUTE_MAX_KM - ABSOLUTE_MIN_KM))
    return _clamp(raw, 0.0, ABSOLUTE_DISTANCE_POINTS)


def absolute_time_points(time_left_seconds: float) -> float:
    capped = _clamp(time_left_seconds, 0.0, ABSOLUTE_TIME_CAP_SECONDS)
    return capped / ABSOLUTE_TIME_CAP_SECONDS * ABSOLUTE_TIME_POINTS


def ladder_points(distance_km: float) -> float:
    for limit_km, points in DISTANCE_LADDER:
        if distance_km <= limit_km:
            return points
    return 0.0


def tiered_points(distance_km: float, threshold_km: float) -> float:
    if threshold_km <= 0 or distance_km >= threshold_km:
        return 0.0
    return MAX_SCORE * (1 - distance_km / threshold_km)


def _build_result(distance_points: float, time_points: float, distance_km: float) -> ScoreResult:
    distance_points = round2(_clamp(distance_points, 0.0, MAX_SCORE))
    time_points = round2(_clamp(time_points, 0.0, MAX_SCORE))
    total = round2(_clamp(distance_points + time_points, 0.0, MAX_SCORE))
    return ScoreResult(total=total, distance_points=distance_points, time_points=time_points, distance_km=distance_km)


def no_guess_result() -> ScoreResult:
    # Таймаут без ответа: всегда ноль.
    return ScoreResult(total=0.0, distance_points=0.0, time_points=0.0, distance_km=None)


def score_distance(mode: ScoringMode, distance_km: float, time_left_seconds: float = 0.0) -> ScoreResult:
    """Считает очки по уже известной дистанции."""
    if distance_km < 0:
        raise ValueError("distance_km must be non-negative")

    match mode:
        case AbsoluteScoring():
            if distance_km <= ABSOLUTE_PERFECT_KM:
                return _build_result(ABSOLUTE_DISTANCE_POINTS, ABSOLUTE_TIME_POINTS, distance_km)
            return _build_result(
                absolute_distance_points(distance_km),
                absolute_time_points(time_left_seconds),
                distance_km,
            )
        case TieredScoring(threshold_km=threshold_km):
            return _build_result(tiered_points(distance_km, threshold_km), 0.0, distance_km)
        case LadderScoring():
            return _build_result(ladder_points(distance_km), 0.0, distance_km)
    raise TypeError(f"Unknown scoring mode: {mode!r}")


def score_guess(
    mode: ScoringMode,
    target: Coordinate,
    guess: Coordinate | None,
    time_left_seconds: float = 0.0,
) -> ScoreResult:
    """Считает очки за ответ игрока; None означает, что ответа не было."""
    if guess is None:
        return no_guess_result()
    return score_distance(mode, geodesic_distance_km(target, guess), time_left_seconds)


def score_threshold_km(regions: Sequence[Region]) -> float | None:
    """Половина максимального расстояния между регионами с учетом радиусов.

    Пара региона с самим собой дает его диаметр, поэтому один регион тоже имеет порог.
    """
    if not regions:
        return None
    widest = 0.0
    for first, second in combinations_with_replacement(regions, 2):
        span = geodesic_distance_km(first.center, second.center) + (first.radius_m + second.radius_m) / 1000
        widest = max(widest, span)
    return widest / 2


def scoring_mode_for_regions(regions: Sequence[Region]) -> ScoringMode:
    # Турнир и кастомные режимы: порог по регионам, а без регионов лестница.
    threshold = score_threshold_km(regions)
    if threshold is None or threshold <= 0:
        return LadderScoring()
    return TieredScoring(threshold_km=threshold)

"""Проверяет формулы очков: абсолютный режим, лестницу и порог по регионам."""

import pytest

from geoleague.services.geo import Coordinate, Region, geodesic_distance_km
from geoleague.services.scoring import (
    AbsoluteScoring,
    LadderScoring,
    TieredScoring,
    score_distance,
    score_guess,
    score_threshold_km,
    scoring_mode_for_regions,
)


def test_absolute_perfect_guess_gets_full_score() -> None:
    result = score_distance(AbsoluteScoring(), 0.5, time_left_seconds=0)
    assert result.distance_points == 90
    assert result.time_points == 10
    assert result.total == 100


def test_absolute_far_guess_gets_only_time_points() -> None:
    result = score_distance(AbsoluteScoring(), 15000.0, time_left_seconds=30)
    assert result.distance_points == 0
    assert result.time_points == 5
    assert result.total == 5


def test_absolute_midpoint_distance() -> None:
    result = score_distance(AbsoluteScoring(), 7500.5, time_left_seconds=0)
    assert result.distance_points == 45.0
    assert result.total == 45.0


def test_absolute_time_bonus_is_capped_at_sixty_seconds() -> None:
    assert score_distance(AbsoluteScoring(), 1.0, time_left_seconds=120).time_points == 10
    assert score_distance(AbsoluteScoring(), 1.0, time_left_seconds=60).total == 100


def test_no_guess_scores_zero_in_every_mode() -> None:
    target = Coordinate(lat=48.85, lng=2.35)
    for mode in (AbsoluteScoring(), LadderScoring(), TieredScoring(threshold_km=100)):
        result = score_guess(mode, target, None, time_left_seconds=60)
        assert result.total == 0
        assert result.distance_km is None
        assert result.timed_out


@pytest.mark.parametrize(
    ("distance_km", "expected"),
    [(0.5, 100), (2.0, 90), (10.0, 80), (50.0, 60), (250.0, 40), (1000.0, 20), (5000.0, 5), (5000.1, 0)],
)
def test_ladder_steps(distance_km: float, expected: float) -> None:
    result = score_distance(LadderScoring(), distance_km, time_left_seconds=30)
    assert result.distance_points == expected
    assert result.time_points == 0
    assert result.total == expected


def test_tiered_mode_is_linear_up_to_threshold() -> None:
    mode = TieredScoring(threshold_km=100.0)
    assert score_distance(mode, 25.0).total == 75.0
    assert score_distance(mode, 100.0).total == 0
    assert score_distance(mode, 150.0).total == 0
    assert score_distance(mode, 0.0).total == 100


def test_scores_stay_in_bounds_and_components_sum_to_total() -> None:
    modes = (AbsoluteScoring(), LadderScoring(), TieredScoring(threshold_km=321.0))
    for mode in modes:
        for distance in (0.0, 0.3, 1.0, 10.0, 99.9, 1000.0, 5000.0, 14999.0, 15000.0, 20000.0):
            for time_left in (-5.0, 0.0, 30.0, 90.0):
                result = score_distance(mode, distance, time_left)
                assert 0 <= result.total <= 100
                assert abs(result.total - (result.distance_points + result.time_points)) <= 0.01


def test_negative_distance_is_rejected() -> None:
    with pytest.raises(ValueError):
        score_distance(LadderScoring(), -1.0)


def test_threshold_for_single_region_is_its_radius() -> None:
    region = Region(center=Coordinate(lat=40.0, lng=-3.7), radius_m=50000)
    assert score_threshold_km([region]) == pytest.approx(50.0)


def test_threshold_includes_distance_between_regions_and_radii() -> None:
    first = Region(center=Coordinate(lat=0.0, lng=0.0), radius_m=10000)
    second = Region(center=Coordinate(lat=0.0, lng=1.0), radius_m=10000)
    expected = (geodesic_distance_km(first.center, second.center) + 20.0) / 2
    assert score_threshold_km([first, second]) == pytest.approx(expected)


def test_scoring_mode_selection_by_regions() -> None:
    assert scoring_mode_for_regions([]) == LadderScoring()
    mode = scoring_mode_for_regions([Region(center=Coordinate(lat=1.0, lng=1.0), radius_m=2000)])
    assert isinstance(mode, TieredScoring)
    assert mode.threshold_km == pytest.approx(2.0)

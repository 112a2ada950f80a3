"""Проверяет геометрию: расстояния, выборку точек в регионе, игровой день и континенты."""

import random
from datetime import datetime

import pytest

from geoleague.services.geo import (
    EARTH_RADIUS_KM,
    OTHER_CONTINENT,
    PREDEFINED_AREAS,
    Coordinate,
    Region,
    destination_point,
    game_day,
    game_day_start,
    geodesic_distance_km,
    get_continent,
    random_point_in_area,
    random_point_in_region,
)


def test_one_degree_on_equator() -> None:
    distance = geodesic_distance_km(Coordinate(lat=0.0, lng=0.0), Coordinate(lat=0.0, lng=1.0))
    assert distance == pytest.approx(2 * 3.141592653589793 * EARTH_RADIUS_KM / 360, rel=1e-9)


def test_distance_is_symmetric_and_zero_for_same_point() -> None:
    paris = Coordinate(lat=48.8566, lng=2.3522)
    madrid = Coordinate(lat=40.4168, lng=-3.7038)
    assert geodesic_distance_km(paris, paris) == 0
    assert geodesic_distance_km(paris, madrid) == pytest.approx(geodesic_distance_km(madrid, paris))
    assert 1040 < geodesic_distance_km(paris, madrid) < 1070


def test_destination_point_travels_requested_distance() -> None:
    origin = Coordinate(lat=10.0, lng=20.0)
    moved = destination_point(origin, 123.0, 1.0)
    assert geodesic_distance_km(origin, moved) == pytest.approx(123.0, rel=1e-6)


def test_random_point_in_region_stays_inside_circle() -> None:
    rng = random.Random(7)
    region = Region(center=Coordinate(lat=-33.87, lng=151.21), radius_m=25000)
    for _ in range(200):
        point = random_point_in_region(region, rng)
        assert geodesic_distance_km(region.center, point) <= 25.0 + 1e-6


def test_random_point_in_area_respects_bounds() -> None:
    rng = random.Random(3)
    for area in PREDEFINED_AREAS:
        point = random_point_in_area(area, rng)
        assert area.lat_range[0] <= point.lat <= area.lat_range[1]
        assert area.lng_range[0] <= point.lng <= area.lng_range[1]


def test_game_day_switches_at_three_utc() -> None:
    assert game_day(datetime(2024, 3, 10, 2, 59)) == "2024-03-09"
    assert game_day(datetime(2024, 3, 10, 3, 0)) == "2024-03-10"
    assert game_day(datetime(2024, 1, 1, 0, 30)) == "2023-12-31"


def test_game_day_start() -> None:
    assert game_day_start(datetime(2024, 3, 10, 2, 59)) == datetime(2024, 3, 9, 3, 0)
    assert game_day_start(datetime(2024, 3, 10, 18, 0)) == datetime(2024, 3, 10, 3, 0)


def test_continent_boxes() -> None:
    assert get_continent(48.85, 2.35) == "Europe"
    assert get_continent(40.71, -74.0) == "N. America"
    assert get_continent(-23.55, -46.63) == "S. America"
    assert get_continent(35.68, 139.69) == "Asia"
    assert get_continent(0.0, -150.0) == OTHER_CONTINENT

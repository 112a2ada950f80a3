import math
import random
from dataclasses import dataclass
from datetime import date, datetime, timedelta

# Радиус сферы как у computeDistanceBetween в Google Maps geometry.
EARTH_RADIUS_KM = 6378.137
GAME_DAY_OFFSET_HOURS = 3


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float

    def as_dict(self) -> dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}

    @classmethod
    def from_dict(cls, raw: dict) -> "Coordinate":
        return cls(lat=float(raw["lat"]), lng=float(raw["lng"]))


@dataclass(frozen=True)
class Region:
    center: Coordinate
    radius_m: float


@dataclass(frozen=True)
class Area:
    # Прямоугольник суши для выборки "по всему миру".
    name: str
    lat_range: tuple[float, float]
    lng_range: tuple[float, float]


PREDEFINED_AREAS: list[Area] = [
    Area("north_america_east", (30.0, 47.0), (-95.0, -70.0)),
    Area("north_america_west", (32.0, 49.0), (-124.0, -100.0)),
    Area("mexico", (15.0, 30.0), (-110.0, -90.0)),
    Area("south_america_south", (-45.0, -22.0), (-73.0, -50.0)),
    Area("brazil", (-25.0, -5.0), (-55.0, -35.0)),
    Area("andes", (-18.0, 5.0), (-80.0, -68.0)),
    Area("western_europe", (36.0, 55.0), (-9.0, 15.0)),
    Area("central_europe", (45.0, 56.0), (10.0, 30.0)),
    Area("scandinavia", (55.0, 68.0), (5.0, 30.0)),
    Area("southern_africa", (-34.0, -22.0), (17.0, 32.0)),
    Area("east_africa", (-5.0, 5.0), (29.0, 40.0)),
    Area("japan", (31.0, 43.0), (130.0, 145.0)),
    Area("southeast_asia", (5.0, 20.0), (98.0, 110.0)),
    Area("india", (10.0, 30.0), (72.0, 88.0)),
    Area("turkey", (36.0, 41.0), (27.0, 44.0)),
    Area("australia_east", (-38.0, -25.0), (140.0, 153.0)),
    Area("new_zealand", (-46.0, -36.0), (167.0, 178.0)),
    Area("russia_west", (50.0, 60.0), (30.0, 60.0)),
]

# Грубые рамки континентов для метрик чемпионата, проверяются по порядку.
CONTINENT_BOXES: list[tuple[str, tuple[float, float], tuple[float, float]]] = [
    ("N. America", (7.0, 85.0), (-170.0, -50.0)),
    ("S. America", (-60.0, 15.0), (-90.0, -30.0)),
    ("Europe", (35.0, 72.0), (-25.0, 45.0)),
    ("Africa", (-35.0, 38.0), (-20.0, 52.0)),
    ("Asia", (-10.0, 80.0), (25.0, 180.0)),
    ("Oceania", (-50.0, 0.0), (110.0, 180.0)),
]
OTHER_CONTINENT = "Other"
CONTINENTS = [name for name, _lat, _lng in CONTINENT_BOXES]


def geodesic_distance_km(a: Coordinate, b: Coordinate) -> float:
    """Расстояние по большому кругу (haversine) в километрах."""
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    dlat = lat2 - lat1
    dlng = math.radians(b.lng - a.lng)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def random_point_in_area(area: Area, rng: random.Random | None = None) -> Coordinate:
    rng = rng or random
    return Coordinate(
        lat=area.lat_range[0] + rng.random() * (area.lat_range[1] - area.lat_range[0]),
        lng=area.lng_range[0] + rng.random() * (area.lng_range[1] - area.lng_range[0]),
    )


def random_point_in_region(region: Region, rng: random.Random | None = None) -> Coordinate:
    # Равномерная точка в круге: sqrt от равномерного радиуса.
    rng = rng or random
    distance_km = (region.radius_m / 1000) * math.sqrt(rng.random())
    bearing = rng.random() * 2 * math.pi
    return destination_point(region.center, distance_km, bearing)


def destination_point(origin: Coordinate, distance_km: float, bearing_rad: float) -> Coordinate:
    angular = distance_km / EARTH_RADIUS_KM
    lat1 = math.radians(origin.lat)
    lng1 = math.radians(origin.lng)
    lat2 = math.asin(math.sin(lat1) * math.cos(angular) + math.cos(lat1) * math.sin(angular) * math.cos(bearing_rad))
    lng2 = lng1 + math.atan2(
        math.sin(bearing_rad) * math.sin(angular) * math.cos(lat1),
        math.cos(angular) - math.sin(lat1) * math.sin(lat2),
    )
    lng_deg = (math.degrees(lng2) + 540) % 360 - 180
    return Coordinate(lat=math.degrees(lat2), lng=lng_deg)


def game_day(now: datetime | None = None, offset_hours: int = GAME_DAY_OFFSET_HOURS) -> str:
    """Ключ игрового дня: UTC-время минус смещение, обрезанное до даты."""
    now = now or datetime.utcnow()
    return (now - timedelta(hours=offset_hours)).date().isoformat()


def game_day_start(now: datetime | None = None, offset_hours: int = GAME_DAY_OFFSET_HOURS) -> datetime:
    # Граница дня в 03:00 UTC; до нее продолжается вчерашний игровой день.
    now = now or datetime.utcnow()
    day = date.fromisoformat(game_day(now, offset_hours))
    return datetime(day.year, day.month, day.day) + timedelta(hours=offset_hours)


def get_continent(lat: float, lng: float) -> str:
    for name, (lat_low, lat_high), (lng_low, lng_high) in CONTINENT_BOXES:
        if lat_low < lat < lat_high and lng_low < lng < lng_high:
            return name
    return OTHER_CONTINENT

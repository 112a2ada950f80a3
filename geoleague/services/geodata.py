"""Провайдер геоданных: проверенная точка с панорамой Street View и расстояние между точками."""

import asyncio
import logging
import random
from collections.abc import Sequence

import httpx

from geoleague.core.config import settings
from geoleague.core.errors import LocationUnavailable
from geoleague.services.geo import (
    PREDEFINED_AREAS,
    Coordinate,
    Region,
    geodesic_distance_km,
    random_point_in_area,
    random_point_in_region,
)

logger = logging.getLogger(__name__)

STREETVIEW_METADATA_URL = "https://maps.googleapis.com/maps/api/streetview/metadata"


class StreetViewProvider:
    """Выбирает случайную точку (по регионам или по суше) и привязывает ее к ближайшей панораме."""

    def __init__(
        self,
        api_key: str | None = None,
        max_attempts: int | None = None,
        search_radius_m: int | None = None,
        backoff_s: float | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.google_maps_api_key
        self.max_attempts = max_attempts or settings.location_max_attempts
        self.search_radius_m = search_radius_m or settings.streetview_search_radius_m
        self.backoff_s = settings.location_retry_backoff_s if backoff_s is None else backoff_s
        self.rng = rng or random.Random()

    def _candidate(self, regions: Sequence[Region]) -> Coordinate:
        # Пустой набор регионов означает "где угодно на Земле".
        if regions:
            return random_point_in_region(self.rng.choice(list(regions)), self.rng)
        return random_point_in_area(self.rng.choice(PREDEFINED_AREAS), self.rng)

    async def sample_valid_coordinate(self, regions: Sequence[Region] = ()) -> Coordinate:
        """Возвращает координату с доступной панорамой или бросает LocationUnavailable."""
        if not self.api_key:
            raise LocationUnavailable("Street View API key is not configured")

        async with httpx.AsyncClient(timeout=15) as client:
            for attempt in range(1, self.max_attempts + 1):
                candidate = self._candidate(regions)
                try:
                    found = await self._snap_to_panorama(client, candidate)
                except (httpx.HTTPError, ValueError) as exc:
                    # Сетевые сбои и тело не в JSON: ждем с нарастающей паузой, попытка засчитывается.
                    logger.warning("Street View lookup failed on attempt %s: %s", attempt, exc)
                    await asyncio.sleep(self.backoff_s * attempt)
                    continue
                if found:
                    return found

        logger.warning("No Street View panorama found after %s attempts", self.max_attempts)
        raise LocationUnavailable("Could not find a valid Street View location after multiple attempts")

    async def _snap_to_panorama(self, client: httpx.AsyncClient, candidate: Coordinate) -> Coordinate | None:
        params = {
            "location": f"{candidate.lat},{candidate.lng}",
            "radius": self.search_radius_m,
            "source": "outdoor",
            "key": self.api_key,
        }
        response = await client.get(STREETVIEW_METADATA_URL, params=params)
        if response.status_code != 200:
            return None

        payload = response.json()
        location = payload.get("location") or {}
        if payload.get("status") != "OK" or not payload.get("copyright") or "lat" not in location:
            return None
        return Coordinate(lat=float(location["lat"]), lng=float(location["lng"]))

    def geodesic_distance_km(self, a: Coordinate, b: Coordinate) -> float:
        return geodesic_distance_km(a, b)

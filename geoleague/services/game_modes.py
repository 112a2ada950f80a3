import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from urllib.parse import unquote_plus

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from geoleague.core.errors import NotFound, StoreUnavailable
from geoleague.db.session import commit_or_raise
from geoleague.models.championship import Championship
from geoleague.models.game_mode import DEFAULT_REGION_RADIUS_M, GameMode, GameModeRegion
from geoleague.services.geo import Coordinate, Region

logger = logging.getLogger(__name__)

# @lat,lng,NNNm (масштаб в метрах) или @lat,lng,NNNa (высота камеры).
SCALE_PATTERN = re.compile(r"@(-?\d+\.\d+),(-?\d+\.\d+),(\d+(?:\.\d+)?)([ma])")
AT_PATTERN = re.compile(r"@(-?\d+\.\d+),(-?\d+\.\d+)")
PLACE_PATTERN = re.compile(r"maps/place/([^/@?]+)")
# Масштаб карты примерно в полтора раза больше радиуса видимой области.
SCALE_TO_RADIUS = 1.5


@dataclass
class RegionDraft:
    lat: float
    lng: float
    radius_m: float
    name: str | None = None


def parse_maps_url(text: str) -> RegionDraft | None:
    """Достает центр и радиус региона из ссылки Google Maps или строки "lat,lng"."""
    text = (text or "").strip()
    if not text:
        return None

    place = PLACE_PATTERN.search(text)
    name = unquote_plus(place.group(1)) if place else None

    scaled = SCALE_PATTERN.search(text)
    if scaled:
        radius = float(scaled.group(3)) / SCALE_TO_RADIUS if scaled.group(4) == "m" else DEFAULT_REGION_RADIUS_M
        return RegionDraft(lat=float(scaled.group(1)), lng=float(scaled.group(2)), radius_m=radius, name=name)

    simple = AT_PATTERN.search(text)
    if simple:
        return RegionDraft(lat=float(simple.group(1)), lng=float(simple.group(2)), radius_m=DEFAULT_REGION_RADIUS_M, name=name)

    parts = text.split(",")
    if len(parts) >= 2:
        try:
            lat, lng = float(parts[0]), float(parts[1])
        except ValueError:
            return None
        if -90 <= lat <= 90 and -180 <= lng <= 180:
            return RegionDraft(lat=lat, lng=lng, radius_m=DEFAULT_REGION_RADIUS_M)
    return None


def to_regions(rows: Sequence[GameModeRegion]) -> list[Region]:
    return [Region(center=Coordinate(lat=row.lat, lng=row.lng), radius_m=row.radius_m) for row in rows]


def region_snapshot(regions: Sequence[Region]) -> list[dict]:
    return [{"lat": r.center.lat, "lng": r.center.lng, "radius_m": r.radius_m} for r in regions]


def regions_from_snapshot(items: Sequence[dict] | None) -> list[Region]:
    return [
        Region(center=Coordinate(lat=float(item["lat"]), lng=float(item["lng"])), radius_m=float(item["radius_m"]))
        for item in items or []
    ]


def _validate_region(draft: RegionDraft) -> None:
    if not -90 <= draft.lat <= 90 or not -180 <= draft.lng <= 180:
        raise ValueError("Region center is out of range")
    if draft.radius_m <= 0:
        raise ValueError("Region radius must be positive")


async def list_game_modes(db: AsyncSession) -> list[GameMode]:
    return list(
        (
            await db.scalars(select(GameMode).options(selectinload(GameMode.regions)).order_by(GameMode.created_at.desc()))
        ).all()
    )


async def get_game_mode(db: AsyncSession, mode_id: int) -> GameMode:
    mode = await db.scalar(
        select(GameMode)
        .where(GameMode.id == mode_id)
        .options(selectinload(GameMode.regions))
        .execution_options(populate_existing=True)
    )
    if not mode:
        raise NotFound("Game mode not found")
    return mode


async def load_regions(db: AsyncSession, mode_id: int | None) -> list[Region]:
    # Без режима играем по всему миру.
    if mode_id is None:
        return []
    rows = (
        await db.scalars(select(GameModeRegion).where(GameModeRegion.game_mode_id == mode_id).order_by(GameModeRegion.id))
    ).all()
    return to_regions(rows)


async def regions_for_championship(db: AsyncSession, championship_id: int) -> list[Region]:
    # Снимок регионов, сделанный при создании чемпионата, а не текущее состояние режима.
    snapshot = await db.scalar(select(Championship.regions).where(Championship.id == championship_id))
    return regions_from_snapshot(snapshot)


async def save_game_mode(
    db: AsyncSession,
    mode_id: int | None,
    name: str,
    description: str,
    regions: Sequence[RegionDraft],
    created_by: str,
) -> GameMode:
    """Создает или обновляет режим; список регионов заменяется целиком."""
    name = (name or "").strip()
    if not name:
        raise ValueError("Name is required")
    for draft in regions:
        _validate_region(draft)

    if mode_id is None:
        mode = GameMode(name=name, description=description or "", created_by=created_by)
        db.add(mode)
    else:
        mode = await db.scalar(select(GameMode).where(GameMode.id == mode_id))
        if not mode:
            raise NotFound("Game mode not found")
        mode.name = name
        mode.description = description or ""

    try:
        await db.flush()
        await db.execute(delete(GameModeRegion).where(GameModeRegion.game_mode_id == mode.id))
        for draft in regions:
            db.add(GameModeRegion(game_mode_id=mode.id, lat=draft.lat, lng=draft.lng, radius_m=draft.radius_m))
        await db.flush()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreUnavailable("Could not save game mode") from exc

    await commit_or_raise(db)
    logger.info("Game mode %s saved with %s regions", mode.id, len(regions))
    return await get_game_mode(db, mode.id)


async def delete_game_mode(db: AsyncSession, mode_id: int) -> None:
    if not await db.scalar(select(GameMode.id).where(GameMode.id == mode_id)):
        raise NotFound("Game mode not found")
    try:
        await db.execute(update(Championship).where(Championship.game_mode_id == mode_id).values(game_mode_id=None))
        await db.execute(delete(GameModeRegion).where(GameModeRegion.game_mode_id == mode_id))
        await db.execute(delete(GameMode).where(GameMode.id == mode_id))
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreUnavailable("Could not delete game mode") from exc
    await commit_or_raise(db)

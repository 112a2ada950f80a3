"""Каноническая цель раунда для контекста (игровой день или матч).

Протокол без блокировок: прочитать, при промахе сгенерировать кандидата, перечитать,
записать с разрешением конфликта по естественному ключу, при конфликте перечитать еще раз.
Другие игроки видят только сохраненное значение, поэтому все параллельные вызовы сходятся.
"""

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from geoleague.core.config import settings
from geoleague.core.errors import LocationUnavailable, RoundOutOfOrder, StoreUnavailable
from geoleague.db.session import commit_or_raise
from geoleague.models.championship import MatchRound
from geoleague.models.guess import DailyLocationSet
from geoleague.services.geo import Coordinate, Region, game_day

logger = logging.getLogger(__name__)

CandidateGenerator = Callable[[], Awaitable[Coordinate]]


@dataclass(frozen=True)
class DailyContext:
    location_date: str


@dataclass(frozen=True)
class MatchContext:
    match_id: int


TargetContext = DailyContext | MatchContext


class TargetStore(Protocol):
    async def read(self, context: TargetContext) -> dict[int, Coordinate]:
        ...

    async def persist(
        self,
        context: TargetContext,
        round_index: int,
        coordinate: Coordinate,
        known: dict[int, Coordinate],
    ) -> bool:
        """True, если запись прошла; False, если ключ уже занят другим писателем."""
        ...


class SqlTargetStore:
    """Хранилище целей поверх таблиц daily_location_sets и match_rounds."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def read(self, context: TargetContext) -> dict[int, Coordinate]:
        # Читаем колонки, а не сущности, чтобы не получить устаревшую копию из identity map.
        try:
            if isinstance(context, DailyContext):
                locations = await self.db.scalar(
                    select(DailyLocationSet.locations).where(DailyLocationSet.location_date == context.location_date)
                )
                return {idx: Coordinate.from_dict(raw) for idx, raw in enumerate(locations or [], start=1)}

            rows = (
                await self.db.execute(
                    select(MatchRound.round_number, MatchRound.lat, MatchRound.lng).where(
                        MatchRound.match_id == context.match_id
                    )
                )
            ).all()
            return {round_number: Coordinate(lat=lat, lng=lng) for round_number, lat, lng in rows}
        except SQLAlchemyError as exc:
            raise StoreUnavailable("Could not read target locations") from exc

    async def persist(
        self,
        context: TargetContext,
        round_index: int,
        coordinate: Coordinate,
        known: dict[int, Coordinate],
    ) -> bool:
        try:
            if isinstance(context, DailyContext):
                written = await self._append_daily(context, round_index, coordinate, known)
            else:
                written = await self._insert_match_round(context, round_index, coordinate)
            if not written:
                await self.db.rollback()
                return False
            await commit_or_raise(self.db)
        except IntegrityError:
            await self.db.rollback()
            return False
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise StoreUnavailable("Could not write target location") from exc
        return True

    async def _append_daily(
        self,
        context: DailyContext,
        round_index: int,
        coordinate: Coordinate,
        known: dict[int, Coordinate],
    ) -> bool:
        # Список дня только дополняется: пишем следующий слот, если версия не сдвинулась.
        expected_count = len(known)
        if round_index != expected_count + 1:
            raise RoundOutOfOrder(f"Round {round_index} cannot follow {expected_count} stored daily rounds")

        locations = [known[idx].as_dict() for idx in range(1, expected_count + 1)] + [coordinate.as_dict()]
        result = await self.db.execute(
            update(DailyLocationSet)
            .where(
                DailyLocationSet.location_date == context.location_date,
                DailyLocationSet.round_count == expected_count,
            )
            .values(locations=locations, round_count=round_index, updated_at=datetime.utcnow())
        )
        if result.rowcount == 1:
            return True
        if expected_count:
            return False

        await self.db.execute(
            insert(DailyLocationSet).values(
                location_date=context.location_date,
                locations=locations,
                round_count=round_index,
                updated_at=datetime.utcnow(),
            )
        )
        return True

    async def _insert_match_round(self, context: MatchContext, round_index: int, coordinate: Coordinate) -> bool:
        # Вставка только при отсутствии ключа: дубль отсекает уникальный индекс (match_id, round_number).
        await self.db.execute(
            insert(MatchRound).values(
                match_id=context.match_id,
                round_number=round_index,
                lat=coordinate.lat,
                lng=coordinate.lng,
            )
        )
        return True


async def _safe_read(store: TargetStore, context: TargetContext) -> dict[int, Coordinate] | None:
    try:
        return await store.read(context)
    except StoreUnavailable as exc:
        logger.warning("Target read failed for %s: %s", context, exc)
        return None


async def resolve_target(
    store: TargetStore,
    context: TargetContext,
    round_index: int,
    generate: CandidateGenerator,
) -> Coordinate:
    """Возвращает единственную сохраненную цель раунда, генерируя ее при первом обращении."""
    if round_index < 1:
        raise RoundOutOfOrder("Round index must start at 1")

    known = await _safe_read(store, context)
    if known and round_index in known:
        return known[round_index]

    # Кандидат генерируется до повторного чтения: параллельные вызовы могут сгенерировать несколько.
    try:
        candidate = await generate()
    except LocationUnavailable:
        fallback = await _safe_read(store, context)
        if fallback and round_index in fallback:
            return fallback[round_index]
        raise

    refreshed = await _safe_read(store, context)
    if refreshed is not None:
        if round_index in refreshed:
            logger.info("Target for %s round %s was stored concurrently, dropping candidate", context, round_index)
            return refreshed[round_index]
        known = refreshed

    try:
        persisted = await store.persist(context, round_index, candidate, known or {})
    except StoreUnavailable as exc:
        logger.warning("Target write failed for %s round %s: %s", context, round_index, exc)
        persisted = False
    if persisted:
        return candidate

    # Последнее чтение: новый кандидат не возвращаем, если другой писатель успел сохранить свой.
    final = await _safe_read(store, context)
    if final and round_index in final:
        logger.info("Lost write race for %s round %s", context, round_index)
        return final[round_index]
    raise LocationUnavailable(f"Could not store target for {context} round {round_index}")


async def resolve_daily_target(
    db: AsyncSession,
    provider,
    round_index: int,
    now: datetime | None = None,
) -> tuple[str, Coordinate]:
    # Дневная игра всегда идет по всему миру.
    context = DailyContext(location_date=game_day(now, settings.game_day_offset_hours))
    target = await resolve_target(SqlTargetStore(db), context, round_index, lambda: provider.sample_valid_coordinate(()))
    return context.location_date, target


async def resolve_match_target(
    db: AsyncSession,
    provider,
    match_id: int,
    round_number: int,
    regions: Sequence[Region] = (),
) -> Coordinate:
    context = MatchContext(match_id=match_id)
    return await resolve_target(SqlTargetStore(db), context, round_number, lambda: provider.sample_valid_coordinate(regions))

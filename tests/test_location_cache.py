"""Проверяет протокол канонической цели раунда: сходимость гонок и запись в SQL-хранилище."""

import asyncio
import itertools
import unittest

from geoleague.core.errors import LocationUnavailable, RoundOutOfOrder, StoreUnavailable
from geoleague.models.championship import Match
from geoleague.services.geo import Coordinate
from geoleague.services.location_cache import (
    DailyContext,
    MatchContext,
    SqlTargetStore,
    resolve_target,
)
from sqlite_support import add_profiles, make_sessionmaker


class _InMemoryStore:
    """Хранилище со вставкой только при отсутствии ключа; каждое обращение уступает цикл событий."""

    def __init__(self) -> None:
        self.data: dict[object, dict[int, Coordinate]] = {}
        self.persist_calls = 0
        self.fail_reads = False

    async def read(self, context):
        await asyncio.sleep(0)
        if self.fail_reads:
            raise StoreUnavailable("read failed")
        return dict(self.data.get(context, {}))

    async def persist(self, context, round_index, coordinate, known):
        self.persist_calls += 1
        await asyncio.sleep(0)
        slot = self.data.setdefault(context, {})
        if round_index in slot:
            return False
        slot[round_index] = coordinate
        return True


class _LosingStore(_InMemoryStore):
    # Другой писатель успевает между повторным чтением и записью.
    def __init__(self, winner: Coordinate) -> None:
        super().__init__()
        self.winner = winner

    async def persist(self, context, round_index, coordinate, known):
        self.data.setdefault(context, {})[round_index] = self.winner
        return False


def _counter_generator():
    counter = itertools.count(1)

    async def generate() -> Coordinate:
        value = next(counter)
        await asyncio.sleep(0)
        return Coordinate(lat=float(value), lng=float(value))

    return generate


class ResolveTargetTests(unittest.IsolatedAsyncioTestCase):
    async def test_concurrent_first_access_converges(self) -> None:
        store = _InMemoryStore()
        generate = _counter_generator()
        context = MatchContext(match_id=42)

        results = await asyncio.gather(*[resolve_target(store, context, 1, generate) for _ in range(25)])

        self.assertEqual(len(set(results)), 1)
        self.assertEqual(store.data[context][1], results[0])

    async def test_concurrent_daily_rounds_converge_per_round(self) -> None:
        store = _InMemoryStore()
        generate = _counter_generator()
        context = DailyContext(location_date="2024-03-10")

        first = await asyncio.gather(*[resolve_target(store, context, 1, generate) for _ in range(10)])
        second = await asyncio.gather(*[resolve_target(store, context, 2, generate) for _ in range(10)])

        self.assertEqual(len(set(first)), 1)
        self.assertEqual(len(set(second)), 1)
        self.assertNotEqual(first[0], second[0])

    async def test_existing_target_skips_generation(self) -> None:
        store = _InMemoryStore()
        context = MatchContext(match_id=1)
        stored = Coordinate(lat=1.5, lng=2.5)
        store.data[context] = {3: stored}

        async def generate() -> Coordinate:
            raise AssertionError("generator must not be called")

        self.assertEqual(await resolve_target(store, context, 3, generate), stored)
        self.assertEqual(store.persist_calls, 0)

    async def test_lost_race_returns_persisted_value(self) -> None:
        winner = Coordinate(lat=9.0, lng=9.0)
        store = _LosingStore(winner)

        result = await resolve_target(store, MatchContext(match_id=5), 1, _counter_generator())

        self.assertEqual(result, winner)

    async def test_generation_failure_without_stored_target_raises(self) -> None:
        async def generate() -> Coordinate:
            raise LocationUnavailable("no panorama")

        with self.assertRaises(LocationUnavailable):
            await resolve_target(_InMemoryStore(), MatchContext(match_id=1), 1, generate)

    async def test_generation_failure_falls_back_to_target_stored_meanwhile(self) -> None:
        store = _InMemoryStore()
        context = MatchContext(match_id=1)
        stored = Coordinate(lat=4.0, lng=4.0)

        async def generate() -> Coordinate:
            store.data[context] = {1: stored}
            raise LocationUnavailable("no panorama")

        self.assertEqual(await resolve_target(store, context, 1, generate), stored)

    async def test_unreachable_store_raises_location_unavailable(self) -> None:
        store = _InMemoryStore()
        store.fail_reads = True

        async def persist(*_args):
            raise StoreUnavailable("write failed")

        store.persist = persist
        with self.assertRaises(LocationUnavailable):
            await resolve_target(store, MatchContext(match_id=1), 1, _counter_generator())

    async def test_round_index_starts_at_one(self) -> None:
        with self.assertRaises(RoundOutOfOrder):
            await resolve_target(_InMemoryStore(), MatchContext(match_id=1), 0, _counter_generator())


class SqlTargetStoreTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.engine, self.sessionmaker = await make_sessionmaker()

    async def asyncTearDown(self) -> None:
        await self.engine.dispose()

    async def test_daily_list_is_append_only(self) -> None:
        context = DailyContext(location_date="2024-03-10")
        async with self.sessionmaker() as db:
            store = SqlTargetStore(db)
            first = Coordinate(lat=1.0, lng=1.0)
            second = Coordinate(lat=2.0, lng=2.0)

            self.assertTrue(await store.persist(context, 1, first, {}))
            self.assertTrue(await store.persist(context, 2, second, {1: first}))
            # Устаревшая версия списка: запись отклоняется, сохраненное не меняется.
            self.assertFalse(await store.persist(context, 2, Coordinate(lat=3.0, lng=3.0), {1: first}))

            self.assertEqual(await store.read(context), {1: first, 2: second})

    async def test_daily_gap_is_rejected(self) -> None:
        async with self.sessionmaker() as db:
            with self.assertRaises(RoundOutOfOrder):
                await SqlTargetStore(db).persist(DailyContext(location_date="2024-03-10"), 3, Coordinate(lat=0, lng=0), {})

    async def test_match_round_is_written_once(self) -> None:
        async with self.sessionmaker() as db:
            await add_profiles(db, "a", "b")
            match = Match(championship_id=1, player1_id="a", player2_id="b", round_number=1, status="pending")
            db.add(match)
            await db.commit()

            store = SqlTargetStore(db)
            context = MatchContext(match_id=match.id)
            first = Coordinate(lat=10.0, lng=20.0)

            self.assertTrue(await store.persist(context, 1, first, {}))
            self.assertFalse(await store.persist(context, 1, Coordinate(lat=0.0, lng=0.0), {}))
            self.assertEqual(await store.read(context), {1: first})

    async def test_resolve_against_sql_store_reuses_stored_target(self) -> None:
        context = DailyContext(location_date="2024-03-11")
        async with self.sessionmaker() as db:
            store = SqlTargetStore(db)
            generate = _counter_generator()
            first = await resolve_target(store, context, 1, generate)
            again = await resolve_target(store, context, 1, generate)

        self.assertEqual(first, again)


if __name__ == "__main__":
    unittest.main()

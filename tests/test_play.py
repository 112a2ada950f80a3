"""Проверяет игровые сессии: таймер раунда, автоматический пустой ответ и лимит дневной игры."""

import itertools
import unittest
from datetime import datetime
from unittest import mock

from geoleague.core.config import settings
from geoleague.core.errors import DailyLimitReached, RoundOutOfOrder, StoreUnavailable
from geoleague.services import daily, game_modes, play
from geoleague.services.game_modes import RegionDraft
from geoleague.services.geo import Coordinate, Region, geodesic_distance_km
from geoleague.services.scoring import TieredScoring, score_guess
from geoleague.services.tournament import create_championship, get_matches
from sqlite_support import add_profiles, make_sessionmaker

NOW = datetime(2024, 5, 20, 12, 0)


class FakeProvider:
    def __init__(self) -> None:
        self.calls = 0
        self._counter = itertools.count(1)

    async def sample_valid_coordinate(self, regions=()) -> Coordinate:
        self.calls += 1
        value = next(self._counter)
        return Coordinate(lat=float(value), lng=float(value))

    def geodesic_distance_km(self, a: Coordinate, b: Coordinate) -> float:
        return geodesic_distance_km(a, b)


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class CountdownTests(unittest.TestCase):
    def test_time_left_is_clamped(self) -> None:
        clock = FakeClock()
        countdown = play.RoundCountdown(30, clock)

        clock.now += 10
        self.assertEqual(countdown.time_left(), 20)
        self.assertFalse(countdown.expired)

        clock.now += 45
        self.assertEqual(countdown.time_left(), 0)
        self.assertTrue(countdown.expired)

    def test_client_time_left_is_bounded_by_budget(self) -> None:
        self.assertEqual(play.clamp_time_left(None, 90), 0)
        self.assertEqual(play.clamp_time_left(-3, 90), 0)
        self.assertEqual(play.clamp_time_left(500, 90), 90)
        self.assertEqual(play.clamp_time_left(12.5, 90), 12.5)


class PracticeSessionTests(unittest.IsolatedAsyncioTestCase):
    def make_session(self, clock=None) -> play.PracticePlaySession:
        region = Region(center=Coordinate(lat=1.0, lng=1.0), radius_m=50000)
        return play.PracticePlaySession(FakeProvider(), [region], clock=clock or FakeClock())

    async def test_rounds_are_scored_without_saving(self) -> None:
        session = self.make_session()

        round_number, target = await session.start_round()
        self.assertEqual(round_number, 1)
        with self.assertRaises(RoundOutOfOrder):
            await session.start_round()

        outcome = await session.submit(target)
        self.assertFalse(outcome.saved)
        self.assertEqual(outcome.result.total, 100)

        round_number, _target = await session.start_round()
        self.assertEqual(round_number, 2)
        await session.submit(None)
        self.assertEqual(session.total_score, 100)

        with self.assertRaises(RoundOutOfOrder):
            await session.submit(None)

    async def test_watch_submits_empty_guess_when_budget_runs_out(self) -> None:
        session = self.make_session()
        session.budget_seconds = 0
        await session.start_round()

        outcome = await session.watch()

        self.assertIsNotNone(outcome)
        self.assertIsNone(outcome.guess)
        self.assertEqual(outcome.result.total, 0)
        self.assertIsNone(session.current_round)
        self.assertIsNone(await session.watch())

    async def test_watch_skips_round_answered_in_time(self) -> None:
        session = self.make_session()
        session.budget_seconds = 0
        _round_number, target = await session.start_round()
        await session.submit(target)

        self.assertIsNone(await session.watch())
        self.assertEqual(len(session.outcomes), 1)


class DailySessionTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.engine, self.sessionmaker = await make_sessionmaker()
        self.db = self.sessionmaker()
        await add_profiles(self.db, "alice", "bob")
        self.provider = FakeProvider()

    async def asyncTearDown(self) -> None:
        await self.db.close()
        await self.engine.dispose()

    def make_session(self) -> play.DailyPlaySession:
        return play.DailyPlaySession(self.db, self.provider, "alice", now=lambda: NOW)

    async def test_daily_limit(self) -> None:
        session = self.make_session()
        for expected_round in range(1, settings.daily_rounds_limit + 1):
            round_number, target = await session.start_round()
            self.assertEqual(round_number, expected_round)
            outcome = await session.submit(target)
            self.assertTrue(outcome.saved)
            self.assertEqual(outcome.result.total, 100)

        with self.assertRaises(DailyLimitReached):
            await session.start_round()
        self.assertEqual(await daily.rounds_played_today(self.db, "alice", NOW), settings.daily_rounds_limit)
        self.assertEqual(self.provider.calls, settings.daily_rounds_limit)

    async def test_second_tab_gets_same_target_and_duplicate_is_reported(self) -> None:
        first_tab = self.make_session()
        second_tab = self.make_session()

        _round_number, first_target = await first_tab.start_round()
        _round_number, second_target = await second_tab.start_round()
        self.assertEqual(first_target, second_target)

        saved = await first_tab.submit(first_target)
        duplicate = await second_tab.submit(None)

        self.assertTrue(saved.saved)
        self.assertTrue(duplicate.duplicate)
        self.assertFalse(duplicate.saved)
        self.assertEqual(await daily.rounds_played_today(self.db, "alice", NOW), 1)

    async def test_round_started_before_day_boundary_stays_in_its_day(self) -> None:
        clock = [datetime(2024, 5, 20, 2, 59, 30)]
        alice = play.DailyPlaySession(self.db, self.provider, "alice", now=lambda: clock[0])
        _round_number, target = await alice.start_round()

        clock[0] = datetime(2024, 5, 20, 3, 0, 5)
        bob = play.DailyPlaySession(self.db, self.provider, "bob", now=lambda: clock[0])
        _round_number, next_day_target = await bob.start_round()
        self.assertNotEqual(target, next_day_target)

        clock[0] = datetime(2024, 5, 20, 3, 0, 10)
        outcome = await alice.submit(target)

        self.assertEqual(outcome.target, target)
        self.assertEqual(outcome.result.total, 100)
        self.assertTrue(outcome.saved)
        self.assertEqual(await daily.rounds_played_today(self.db, "alice", datetime(2024, 5, 20, 2, 0)), 1)
        self.assertEqual(await daily.rounds_played_today(self.db, "alice", clock[0]), 0)

    async def test_failed_submit_keeps_round_open(self) -> None:
        session = self.make_session()
        round_number, target = await session.start_round()

        with mock.patch.object(play, "submit_daily_guess", mock.AsyncMock(side_effect=RoundOutOfOrder("not yet"))):
            with self.assertRaises(RoundOutOfOrder):
                await session.submit(target)

        self.assertEqual(session.current_round, round_number)
        outcome = await session.submit(target)
        self.assertTrue(outcome.saved)
        self.assertEqual(session.outcomes, [outcome])

    async def test_guess_for_round_that_was_not_started(self) -> None:
        with self.assertRaises(RoundOutOfOrder):
            await play.submit_daily_guess(self.db, "alice", 1, None, 10, NOW)

    async def test_store_failure_keeps_score_unsaved(self) -> None:
        session = self.make_session()
        _round_number, target = await session.start_round()

        with mock.patch.object(daily, "record_daily_guess", mock.AsyncMock(side_effect=StoreUnavailable("down"))):
            outcome = await session.submit(target)

        self.assertFalse(outcome.saved)
        self.assertEqual(outcome.result.total, 100)


class MatchScoringTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.engine, self.sessionmaker = await make_sessionmaker()
        self.db = self.sessionmaker()
        await add_profiles(self.db, "a", "b")
        self.provider = FakeProvider()
        self.mode = await game_modes.save_game_mode(
            self.db, None, "Equator", "", [RegionDraft(lat=1.0, lng=1.0, radius_m=500000)], created_by="admin"
        )
        championship = await create_championship(self.db, "Cup", ["a", "b"], created_by="admin", game_mode_id=self.mode.id)
        self.match = (await get_matches(self.db, championship.id))[0]

    async def asyncTearDown(self) -> None:
        await self.db.close()
        await self.engine.dispose()

    async def _play_round(self, user_id: str) -> play.RoundOutcome:
        round_number, target = await play.start_match_round(self.db, self.provider, self.match.id, user_id)
        guess = Coordinate(lat=target.lat + 1, lng=target.lng)
        return await play.submit_match_guess(self.db, self.match.id, user_id, round_number, guess, 0)

    async def test_mode_changes_do_not_rescore_running_match(self) -> None:
        first = await self._play_round(self.match.player1_id)
        self.assertEqual(first.result.total, score_guess(TieredScoring(threshold_km=500), first.target, first.guess).total)

        await game_modes.save_game_mode(
            self.db, self.mode.id, "Equator", "", [RegionDraft(lat=1.0, lng=1.0, radius_m=5000000)], created_by="admin"
        )
        second = await self._play_round(self.match.player2_id)
        self.assertEqual(second.target, first.target)
        self.assertEqual(second.result, first.result)

        await game_modes.delete_game_mode(self.db, self.mode.id)
        third = await self._play_round(self.match.player1_id)
        fourth = await self._play_round(self.match.player2_id)
        self.assertEqual(third.result, fourth.result)
        self.assertEqual(
            third.result.total, score_guess(TieredScoring(threshold_km=500), third.target, third.guess).total
        )


if __name__ == "__main__":
    unittest.main()

"""Проверяет дневную игру (лимит, история, чужие ответы) и рейтинги."""

import unittest
from datetime import datetime
from unittest import mock

from geoleague.core.config import settings
from geoleague.core.errors import DuplicateGuess, RoundOutOfOrder
from geoleague.models.guess import Guess
from geoleague.services import daily, rankings
from geoleague.services.geo import Coordinate
from geoleague.services.scoring import AbsoluteScoring, score_guess
from sqlite_support import add_profiles, make_sessionmaker

NOW = datetime(2024, 5, 20, 12, 0)
TODAY = "2024-05-20"


class RankingPeriodTests(unittest.TestCase):
    def test_period_starts(self) -> None:
        self.assertEqual(rankings.period_start("daily", NOW), datetime(2024, 5, 20, 3, 0))
        self.assertEqual(rankings.period_start("weekly", NOW), datetime(2024, 5, 13, 12, 0))
        self.assertEqual(rankings.period_start("monthly", NOW), datetime(2024, 4, 20, 12, 0))
        self.assertIsNone(rankings.period_start("all-time", NOW))
        self.assertIsNone(rankings.period_start("average", NOW))

    def test_monthly_start_clamps_to_short_month(self) -> None:
        self.assertEqual(rankings.period_start("monthly", datetime(2024, 3, 31, 8, 0)), datetime(2024, 2, 29, 8, 0))
        self.assertEqual(rankings.period_start("monthly", datetime(2024, 1, 15, 8, 0)), datetime(2023, 12, 15, 8, 0))

    def test_unknown_period(self) -> None:
        with self.assertRaises(ValueError):
            rankings.period_start("yearly", NOW)


class DailyGameTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.engine, self.sessionmaker = await make_sessionmaker()
        self.db = self.sessionmaker()
        await add_profiles(self.db, "alice", "bob", "carol")

    async def asyncTearDown(self) -> None:
        await self.db.close()
        await self.engine.dispose()

    async def _record(self, user_id: str, round_number: int, target: Coordinate, guess: Coordinate | None):
        result = score_guess(AbsoluteScoring(), target, guess, 30)
        return await daily.record_daily_guess(self.db, user_id, TODAY, round_number, target, guess, result)

    async def test_daily_rounds_are_counted_in_order(self) -> None:
        target = Coordinate(lat=52.52, lng=13.405)
        await self._record("alice", 1, target, Coordinate(lat=52.5, lng=13.4))
        await self._record("alice", 2, target, None)

        self.assertEqual(await daily.rounds_played_today(self.db, "alice", NOW), 2)
        self.assertEqual(await daily.rounds_played_today(self.db, "bob", NOW), 0)

        with self.assertRaises(DuplicateGuess):
            await self._record("alice", 2, target, None)
        with self.assertRaises(RoundOutOfOrder):
            await self._record("alice", 4, target, None)
        with self.assertRaises(RoundOutOfOrder):
            await self._record("bob", settings.daily_rounds_limit + 1, target, None)

        played = await daily.played_rounds_today(self.db, "alice", NOW)
        self.assertEqual([item.round_number for item in played], [1, 2])
        self.assertIsNone(played[1].guess)
        self.assertEqual(played[1].score, 0)

    async def test_other_players_guesses_for_same_target(self) -> None:
        target = Coordinate(lat=10.0, lng=20.0)
        await self._record("alice", 1, target, Coordinate(lat=10.1, lng=20.1))
        await self._record("bob", 1, Coordinate(lat=10.004, lng=19.996), Coordinate(lat=9.0, lng=19.0))
        await self._record("carol", 1, Coordinate(lat=10.01, lng=20.0), Coordinate(lat=10.0, lng=20.0))

        others = await daily.guesses_for_location(self.db, target, exclude_user_id="alice", now=NOW)

        self.assertEqual([item.username for item in others], ["user_bob"])
        self.assertEqual(others[0].guess, Coordinate(lat=9.0, lng=19.0))

    async def test_rankings_sum_and_average(self) -> None:
        target = Coordinate(lat=0.0, lng=0.0)
        for round_number in (1, 2, 3):
            await self._record("alice", round_number, target, target)
        await self._record("bob", 1, target, target)
        # Матчевые ответы в рейтинг свободной игры не попадают.
        self.db.add(Guess(match_id=1, user_id="carol", round_number=1, target_lat=0, target_lng=0, score=100.0))
        await self.db.commit()

        rows = await rankings.get_rankings(self.db, "all-time")
        self.assertEqual([(row.user_id, row.rounds) for row in rows], [("alice", 3), ("bob", 1)])
        self.assertEqual(rows[0].score, 300.0)

        with mock.patch.object(settings, "ranking_average_min_rounds", 2):
            average = await rankings.get_rankings(self.db, "average")
        self.assertEqual([(row.user_id, row.score) for row in average], [("alice", 100.0)])


if __name__ == "__main__":
    unittest.main()

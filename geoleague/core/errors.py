"""Доменные ошибки: ошибки валидации наследуют ValueError, сбои транспорта и хранилища наследуют RuntimeError."""


class GeoLeagueError(Exception):
    retryable = False


class InvalidFixtureInput(GeoLeagueError, ValueError):
    pass


class RoundOutOfOrder(GeoLeagueError, ValueError):
    pass


class DuplicateGuess(GeoLeagueError, ValueError):
    pass


class DailyLimitReached(GeoLeagueError, ValueError):
    pass


class NotFound(GeoLeagueError, LookupError):
    pass


class NotAParticipant(GeoLeagueError, PermissionError):
    pass


class LocationUnavailable(GeoLeagueError, RuntimeError):
    retryable = True


class StoreUnavailable(GeoLeagueError, RuntimeError):
    retryable = True

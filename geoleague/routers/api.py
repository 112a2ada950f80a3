from dataclasses import asdict

from fastapi import APIRouter, Depends, Form, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from geoleague.core.config import settings
from geoleague.core.errors import NotAParticipant
from geoleague.core.identity import (
    ADMIN_SESSION_COOKIE,
    PLAYER_SESSION_COOKIE,
    Player,
    create_admin_session_cookie,
    is_admin_session,
    read_player_token,
)
from geoleague.db.session import get_db
from geoleague.models.championship import Championship, Match
from geoleague.models.game_mode import DEFAULT_REGION_RADIUS_M, GameMode
from geoleague.services import daily, game_modes, metrics, play, rankings, tournament
from geoleague.services.geo import Coordinate
from geoleague.services.geodata import StreetViewProvider
from geoleague.services.match import evaluate_match_completion, get_match_for_player, rounds_played
from geoleague.services.profiles import ensure_profile
from geoleague.services.scoring import score_guess, scoring_mode_for_regions

router = APIRouter()


class GuessIn(BaseModel):
    round_number: int
    # lat/lng пустые: раунд истек без ответа.
    lat: float | None = None
    lng: float | None = None
    time_left: float | None = None
    # Игровой день из ответа /daily/start; для матчей не используется.
    location_date: str | None = None

    def coordinate(self) -> Coordinate | None:
        if self.lat is None or self.lng is None:
            return None
        return Coordinate(lat=self.lat, lng=self.lng)


class PracticeGuessIn(BaseModel):
    target_lat: float
    target_lng: float
    lat: float | None = None
    lng: float | None = None


class ChampionshipIn(BaseModel):
    name: str
    participant_ids: list[str]
    game_mode_id: int | None = None


class MatchResultIn(BaseModel):
    player1_rounds_won: int = Field(ge=0)
    player2_rounds_won: int = Field(ge=0)


class RegionIn(BaseModel):
    lat: float
    lng: float
    radius_m: float = DEFAULT_REGION_RADIUS_M


class GameModeIn(BaseModel):
    name: str
    description: str = ""
    regions: list[RegionIn] = []


class MapsUrlIn(BaseModel):
    text: str


def get_provider() -> StreetViewProvider:
    return StreetViewProvider()


def _token_from_request(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return request.cookies.get(PLAYER_SESSION_COOKIE)


async def current_player(request: Request, db: AsyncSession = Depends(get_db)) -> Player:
    player = read_player_token(_token_from_request(request))
    if not player:
        raise HTTPException(status_code=401, detail="Login required")
    await ensure_profile(db, player)
    return player


def is_admin_request(request: Request) -> bool:
    if is_admin_session(request.cookies.get(ADMIN_SESSION_COOKIE)):
        return True
    player = read_player_token(_token_from_request(request))
    return bool(player and player.can_administer)


def admin_actor(request: Request) -> str:
    player = read_player_token(_token_from_request(request))
    return player.user_id if player else "admin"


def coordinate_out(coordinate: Coordinate | None) -> dict | None:
    return coordinate.as_dict() if coordinate else None


def outcome_out(outcome: play.RoundOutcome) -> dict:
    return {
        "round_number": outcome.round_number,
        "target": coordinate_out(outcome.target),
        "guess": coordinate_out(outcome.guess),
        "score": outcome.result.total,
        "distance_points": outcome.result.distance_points,
        "time_points": outcome.result.time_points,
        "distance_km": outcome.result.distance_km,
        "saved": outcome.saved,
    }


def match_out(match: Match) -> dict:
    return {
        "id": match.id,
        "championship_id": match.championship_id,
        "player1_id": match.player1_id,
        "player2_id": match.player2_id,
        "round_number": match.round_number,
        "status": match.status,
        "player1_rounds_won": match.player1_rounds_won,
        "player2_rounds_won": match.player2_rounds_won,
    }


def championship_out(championship: Championship) -> dict:
    return {
        "id": championship.id,
        "name": championship.name,
        "status": championship.status,
        "created_by": championship.created_by,
        "game_mode_id": championship.game_mode_id,
        "regions": championship.regions or [],
        "created_at": championship.created_at.isoformat() if championship.created_at else None,
    }


def game_mode_out(mode: GameMode) -> dict:
    return {
        "id": mode.id,
        "name": mode.name,
        "description": mode.description,
        "created_by": mode.created_by,
        "regions": [{"lat": r.lat, "lng": r.lng, "radius_m": r.radius_m} for r in mode.regions],
    }


@router.get("/health")
async def health():
    return {"ok": True, "app": settings.app_name}


@router.get("/me")
async def me(player: Player = Depends(current_player)):
    return {"user_id": player.user_id, "username": player.username, "is_admin": player.can_administer}


# Дневная игра.


@router.post("/daily/start")
async def daily_start(
    player: Player = Depends(current_player),
    db: AsyncSession = Depends(get_db),
    provider: StreetViewProvider = Depends(get_provider),
):
    location_date, round_number, target = await play.start_daily_round(db, provider, player.user_id)
    return {
        "location_date": location_date,
        "round_number": round_number,
        "rounds_limit": settings.daily_rounds_limit,
        "target": target.as_dict(),
        "time_budget": settings.free_play_round_seconds,
    }


@router.post("/daily/guess")
async def daily_guess(payload: GuessIn, player: Player = Depends(current_player), db: AsyncSession = Depends(get_db)):
    outcome = await play.submit_daily_guess(
        db, player.user_id, payload.round_number, payload.coordinate(), payload.time_left, location_date=payload.location_date
    )
    return outcome_out(outcome)


@router.get("/daily/played")
async def daily_played(player: Player = Depends(current_player), db: AsyncSession = Depends(get_db)):
    rounds = await daily.played_rounds_today(db, player.user_id)
    return {"rounds": [asdict(item) for item in rounds], "rounds_limit": settings.daily_rounds_limit}


@router.get("/daily/others")
async def daily_others(
    lat: float,
    lng: float,
    player: Player = Depends(current_player),
    db: AsyncSession = Depends(get_db),
):
    others = await daily.guesses_for_location(db, Coordinate(lat=lat, lng=lng), exclude_user_id=player.user_id)
    return {"guesses": [asdict(item) for item in others]}


@router.get("/rankings/{period}")
async def rankings_view(period: str, db: AsyncSession = Depends(get_db)):
    if period not in rankings.PERIODS:
        raise HTTPException(status_code=404, detail="Unknown ranking period")
    rows = await rankings.get_rankings(db, period)
    return {"period": period, "rows": [asdict(row) for row in rows]}


# Чемпионаты и матчи.


@router.get("/championships")
async def championships_list(db: AsyncSession = Depends(get_db)):
    return {"championships": [championship_out(c) for c in await tournament.list_championships(db)]}


@router.get("/championships/{championship_id}")
async def championship_detail(championship_id: int, db: AsyncSession = Depends(get_db)):
    championship = await tournament.get_championship(db, championship_id)
    matches = await tournament.get_matches(db, championship_id)
    standings = await tournament.get_standings(db, championship_id)
    fixture = tournament.group_by_round(matches)
    return {
        "championship": championship_out(championship),
        "next_playable_round": tournament.next_playable_round(matches),
        "standings": [asdict(row) for row in standings],
        "rounds": [
            {"round_number": round_number, "matches": [match_out(m) for m in round_matches]}
            for round_number, round_matches in fixture.items()
        ],
    }


@router.get("/championships/{championship_id}/metrics")
async def championship_metrics_view(championship_id: int, db: AsyncSession = Depends(get_db)):
    return asdict(await metrics.championship_metrics(db, championship_id))


@router.get("/matches/pending")
async def my_pending_matches(player: Player = Depends(current_player), db: AsyncSession = Depends(get_db)):
    matches = await tournament.pending_matches_for(db, player.user_id)
    return {"matches": [match_out(m) for m in matches]}


@router.get("/matches/{match_id}")
async def match_detail(match_id: int, player: Player = Depends(current_player), db: AsyncSession = Depends(get_db)):
    match = await get_match_for_player(db, match_id, player.user_id)
    return {
        "match": match_out(match),
        "rounds_played": await rounds_played(db, match_id, player.user_id),
        "opponent_rounds_played": await rounds_played(db, match_id, match.opponent_of(player.user_id)),
    }


@router.post("/matches/{match_id}/start")
async def match_start(
    match_id: int,
    player: Player = Depends(current_player),
    db: AsyncSession = Depends(get_db),
    provider: StreetViewProvider = Depends(get_provider),
):
    round_number, target = await play.start_match_round(db, provider, match_id, player.user_id)
    return {"round_number": round_number, "target": target.as_dict(), "time_budget": settings.match_round_seconds}


@router.post("/matches/{match_id}/guess")
async def match_guess(
    match_id: int,
    payload: GuessIn,
    player: Player = Depends(current_player),
    db: AsyncSession = Depends(get_db),
):
    outcome = await play.submit_match_guess(
        db, match_id, player.user_id, payload.round_number, payload.coordinate(), payload.time_left
    )
    return outcome_out(outcome)


@router.post("/matches/{match_id}/complete")
async def match_complete(match_id: int, player: Player = Depends(current_player), db: AsyncSession = Depends(get_db)):
    # Повторная проверка завершения, если автоматическая не прошла из-за сбоя хранилища.
    await get_match_for_player(db, match_id, player.user_id)
    completed_now = await evaluate_match_completion(db, match_id)
    return {"ok": True, "completed_now": completed_now}


@router.get("/matches/{match_id}/recap")
async def match_recap_view(match_id: int, player: Player = Depends(current_player), db: AsyncSession = Depends(get_db)):
    recap = await metrics.match_recap(db, match_id)
    if player.user_id not in recap.players and not player.can_administer:
        raise NotAParticipant("You are not a player in this match")
    return asdict(recap)


# Игровые режимы.


@router.get("/game-modes")
async def game_modes_list(db: AsyncSession = Depends(get_db)):
    return {"modes": [game_mode_out(mode) for mode in await game_modes.list_game_modes(db)]}


@router.get("/game-modes/{mode_id}")
async def game_mode_detail(mode_id: int, db: AsyncSession = Depends(get_db)):
    return game_mode_out(await game_modes.get_game_mode(db, mode_id))


@router.post("/game-modes/parse-url")
async def game_mode_parse_url(payload: MapsUrlIn):
    draft = game_modes.parse_maps_url(payload.text)
    if draft is None:
        raise HTTPException(status_code=400, detail="Could not parse coordinates or area from URL")
    return asdict(draft)


@router.post("/game-modes/{mode_id}/practice/start")
async def practice_start(
    mode_id: int,
    _player: Player = Depends(current_player),
    db: AsyncSession = Depends(get_db),
    provider: StreetViewProvider = Depends(get_provider),
):
    regions = game_modes.to_regions((await game_modes.get_game_mode(db, mode_id)).regions)
    target = await provider.sample_valid_coordinate(regions)
    return {"target": target.as_dict(), "time_budget": settings.match_round_seconds}


@router.post("/game-modes/{mode_id}/practice/score")
async def practice_score(
    mode_id: int,
    payload: PracticeGuessIn,
    _player: Player = Depends(current_player),
    db: AsyncSession = Depends(get_db),
):
    # Тренировка ничего не сохраняет, цель приходит обратно от клиента.
    regions = game_modes.to_regions((await game_modes.get_game_mode(db, mode_id)).regions)
    guess = Coordinate(lat=payload.lat, lng=payload.lng) if payload.lat is not None and payload.lng is not None else None
    target = Coordinate(lat=payload.target_lat, lng=payload.target_lng)
    result = score_guess(scoring_mode_for_regions(regions), target, guess)
    return {"score": result.total, "distance_km": result.distance_km, "saved": False}


# Администрирование.


@router.post("/admin/login")
async def admin_login(admin_key: str = Form(...)):
    if admin_key != settings.admin_key:
        return JSONResponse({"ok": False, "error": "Invalid admin key"}, status_code=403)
    response = JSONResponse({"ok": True})
    response.set_cookie(
        ADMIN_SESSION_COOKIE,
        create_admin_session_cookie(),
        httponly=True,
        samesite="lax",
        max_age=60 * 60 * 12,
    )
    return response


@router.get("/admin/logout")
@router.post("/admin/logout")
async def admin_logout():
    response = JSONResponse({"ok": True})
    response.delete_cookie(ADMIN_SESSION_COOKIE)
    return response


@router.post("/admin/championships")
async def admin_create_championship(payload: ChampionshipIn, request: Request, db: AsyncSession = Depends(get_db)):
    championship = await tournament.create_championship(
        db, payload.name, payload.participant_ids, admin_actor(request), payload.game_mode_id
    )
    return {"ok": True, "championship": championship_out(championship)}


@router.delete("/admin/championships/{championship_id}")
async def admin_delete_championship(championship_id: int, db: AsyncSession = Depends(get_db)):
    await tournament.delete_championship(db, championship_id)
    return {"ok": True}


@router.post("/admin/championships/{championship_id}/rebuild-standings")
async def admin_rebuild_standings(championship_id: int, db: AsyncSession = Depends(get_db)):
    await tournament.rebuild_standings(db, championship_id)
    return {"ok": True, "standings": [asdict(row) for row in await tournament.get_standings(db, championship_id)]}


@router.post("/admin/matches/{match_id}/result")
async def admin_match_result(match_id: int, payload: MatchResultIn, db: AsyncSession = Depends(get_db)):
    try:
        match = await tournament.override_match_result(
            db, match_id, payload.player1_rounds_won, payload.player2_rounds_won
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"ok": True, "match": match_out(match)}


async def _save_mode(db: AsyncSession, mode_id: int | None, payload: GameModeIn, created_by: str) -> dict:
    drafts = [game_modes.RegionDraft(lat=r.lat, lng=r.lng, radius_m=r.radius_m) for r in payload.regions]
    try:
        mode = await game_modes.save_game_mode(db, mode_id, payload.name, payload.description, drafts, created_by)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"ok": True, "mode": game_mode_out(mode)}


@router.post("/admin/game-modes")
async def admin_create_game_mode(payload: GameModeIn, request: Request, db: AsyncSession = Depends(get_db)):
    return await _save_mode(db, None, payload, admin_actor(request))


@router.put("/admin/game-modes/{mode_id}")
async def admin_update_game_mode(
    mode_id: int,
    payload: GameModeIn,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    return await _save_mode(db, mode_id, payload, admin_actor(request))


@router.delete("/admin/game-modes/{mode_id}")
async def admin_delete_game_mode(mode_id: int, db: AsyncSession = Depends(get_db)):
    await game_modes.delete_game_mode(db, mode_id)
    return {"ok": True}

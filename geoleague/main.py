"""Создаёт FastAPI-приложение, подключает маршруты, обработчики ошибок и middleware."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse

from geoleague.core.config import settings
from geoleague.core.errors import (
    DailyLimitReached,
    DuplicateGuess,
    GeoLeagueError,
    InvalidFixtureInput,
    LocationUnavailable,
    NotAParticipant,
    NotFound,
    RoundOutOfOrder,
    StoreUnavailable,
)
from geoleague.core.identity import ADMIN_SESSION_COOKIE, create_admin_session_cookie
from geoleague.core.log import setup_logging
from geoleague.routers.api import is_admin_request, router as api_router

setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name, debug=settings.debug)

ERROR_STATUS = {
    NotFound: 404,
    NotAParticipant: 403,
    DuplicateGuess: 409,
    DailyLimitReached: 409,
    RoundOutOfOrder: 400,
    InvalidFixtureInput: 400,
    LocationUnavailable: 503,
    StoreUnavailable: 503,
}


def status_for(exc: GeoLeagueError) -> int:
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status_code
    return 500


@app.exception_handler(GeoLeagueError)
async def geoleague_error_handler(request: Request, exc: GeoLeagueError):
    status_code = status_for(exc)
    if status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        {"ok": False, "error": str(exc), "kind": type(exc).__name__, "retryable": exc.retryable},
        status_code=status_code,
    )


@app.middleware("http")
async def admin_auth_middleware(request: Request, call_next):
    normalized_path = request.url.path.rstrip("/") or "/"

    if normalized_path == "/admin" and not is_admin_request(request):
        admin_key = request.query_params.get("admin_key")
        if admin_key and admin_key == settings.admin_key:
            response = RedirectResponse(url="/championships", status_code=303)
            response.set_cookie(
                ADMIN_SESSION_COOKIE,
                create_admin_session_cookie(),
                httponly=True,
                samesite="lax",
                max_age=60 * 60 * 12,
            )
            return response
        return JSONResponse({"ok": False, "error": "Forbidden"}, status_code=403)

    if normalized_path.startswith("/admin/") and normalized_path not in {"/admin/login", "/admin/logout"}:
        if not is_admin_request(request):
            return JSONResponse({"ok": False, "error": "Forbidden"}, status_code=403)
    return await call_next(request)


# Подключаем JSON-маршруты игры и админки.
app.include_router(api_router)

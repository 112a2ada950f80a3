"""Подписанные токены сессии: игрок (от внешнего провайдера авторизации) и админ-консоль."""

import base64
import hashlib
import hmac
import json
from dataclasses import dataclass

from geoleague.core.config import settings

ADMIN_SESSION_COOKIE = "admin_session"
PLAYER_SESSION_COOKIE = "player_session"


@dataclass(frozen=True)
class Player:
    user_id: str
    username: str
    email: str = ""
    is_admin: bool = False

    @property
    def can_administer(self) -> bool:
        return self.is_admin or (bool(self.email) and self.email in settings.admin_emails)


def _b64_encode(value: str) -> str:
    encoded = base64.urlsafe_b64encode(value.encode("utf-8")).decode("utf-8")
    return encoded.rstrip("=")


def _b64_decode(value: str) -> str:
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded.encode("utf-8")).decode("utf-8")


def _sign(payload: str) -> str:
    digest = hmac.new(settings.secret_key.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8").rstrip("=")


def _pack(data: dict) -> str:
    payload = _b64_encode(json.dumps(data, separators=(",", ":"), sort_keys=True))
    return f"{payload}.{_sign(payload)}"


def _unpack(token: str | None) -> dict | None:
    # Возвращаем полезную нагрузку только при валидной подписи.
    if not token or "." not in token:
        return None

    payload, signature = token.rsplit(".", 1)
    if not hmac.compare_digest(signature, _sign(payload)):
        return None

    try:
        data = json.loads(_b64_decode(payload))
    except (ValueError, json.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None


def create_admin_session_cookie() -> str:
    return _pack({"is_admin": True})


def is_admin_session(cookie_value: str | None) -> bool:
    data = _unpack(cookie_value)
    return bool(data and data.get("is_admin") and "user_id" not in data)


def issue_player_token(player: Player) -> str:
    """Выпускает токен игрока; вызывается адаптером внешнего провайдера авторизации."""
    return _pack(
        {
            "user_id": player.user_id,
            "username": player.username,
            "email": player.email,
            "is_admin": player.is_admin,
        }
    )


def read_player_token(token: str | None) -> Player | None:
    data = _unpack(token)
    if not data or not isinstance(data.get("user_id"), str) or not data["user_id"]:
        return None
    return Player(
        user_id=data["user_id"],
        username=str(data.get("username") or ""),
        email=str(data.get("email") or ""),
        is_admin=bool(data.get("is_admin")),
    )

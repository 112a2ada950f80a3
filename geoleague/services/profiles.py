from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from geoleague.core.identity import Player
from geoleague.db.session import commit_or_raise
from geoleague.models.user import Profile


async def ensure_profile(db: AsyncSession, player: Player) -> Profile:
    """Зеркалит игрока из внешней авторизации в таблицу profiles (создание или обновление имени)."""
    profile = await db.scalar(select(Profile).where(Profile.id == player.user_id))
    if profile:
        changed = False
        if player.username and profile.username != player.username:
            profile.username = player.username
            changed = True
        if player.email and profile.email != player.email:
            profile.email = player.email
            changed = True
        if changed:
            await commit_or_raise(db)
        return profile

    profile = Profile(id=player.user_id, username=player.username or player.user_id, email=player.email or None)
    db.add(profile)
    try:
        await commit_or_raise(db)
    except IntegrityError:
        # Первый запрос игрока пришел параллельно из двух вкладок.
        profile = await db.scalar(select(Profile).where(Profile.id == player.user_id))
        if profile is None:
            raise
    return profile

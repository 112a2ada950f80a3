import argparse
import asyncio
import random
import string
import uuid

from sqlalchemy import select

from geoleague.db.session import SessionLocal
from geoleague.models.user import Profile
from geoleague.services.tournament import create_championship


def _random_username(prefix: str) -> str:
    # Генерируем короткий псевдоним участника.
    suffix = "".join(random.choices(string.ascii_letters + string.digits, k=6))
    return f"{prefix}_{suffix}"


async def main(participants: int, name: str, game_mode_id: int | None) -> None:
    """Создает тестовых игроков и чемпионат с полным круговым расписанием."""
    async with SessionLocal() as db:
        user_ids: list[str] = []
        while len(user_ids) < participants:
            user_id = str(uuid.uuid4())
            exists = await db.scalar(select(Profile.id).where(Profile.id == user_id))
            if exists:
                continue
            index = len(user_ids) + 1
            db.add(Profile(id=user_id, username=_random_username(f"Player{index}"), email=f"player{index}@example.com"))
            user_ids.append(user_id)
        await db.commit()

        championship = await create_championship(db, name, user_ids, created_by="seed", game_mode_id=game_mode_id)

    print(f"Создан чемпионат #{championship.id} на {participants} участников.")


if __name__ == "__main__":
    # Запускаем асинхронный сидер из CLI.
    parser = argparse.ArgumentParser(description="Seed a round-robin championship with test players")
    parser.add_argument("--participants", type=int, default=8)
    parser.add_argument("--name", default="Test Championship")
    parser.add_argument("--game-mode-id", type=int, default=None)
    args = parser.parse_args()
    asyncio.run(main(args.participants, args.name, args.game_mode_id))

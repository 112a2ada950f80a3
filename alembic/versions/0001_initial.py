"""initial

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Профили игроков из внешней авторизации.
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("username", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_profiles_email", "profiles", ["email"], unique=False)

    # Игровые режимы и их круговые регионы.
    op.create_table(
        "game_modes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("created_by", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_game_modes_created_by", "game_modes", ["created_by"], unique=False)

    op.create_table(
        "game_mode_regions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("game_mode_id", sa.Integer(), sa.ForeignKey("game_modes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("lat", sa.Float(), nullable=False),
        sa.Column("lng", sa.Float(), nullable=False),
        sa.Column("radius_m", sa.Float(), nullable=False),
    )
    op.create_index("ix_game_mode_regions_game_mode_id", "game_mode_regions", ["game_mode_id"], unique=False)

    # Чемпионаты, участники и матчи круговой системы.
    op.create_table(
        "championships",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("created_by", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("game_mode_id", sa.Integer(), sa.ForeignKey("game_modes.id", ondelete="SET NULL"), nullable=True),
        sa.Column("regions", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_championships_status", "championships", ["status"], unique=False)

    op.create_table(
        "championship_participants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("championship_id", sa.Integer(), sa.ForeignKey("championships.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(length=64), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("matches_played", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("wins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("draws", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("losses", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("championship_id", "user_id", name="uq_championship_user"),
    )
    op.create_index(
        "ix_championship_participants_championship_id", "championship_participants", ["championship_id"], unique=False
    )
    op.create_index("ix_championship_participants_user_id", "championship_participants", ["user_id"], unique=False)

    op.create_table(
        "matches",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("championship_id", sa.Integer(), sa.ForeignKey("championships.id", ondelete="CASCADE"), nullable=False),
        sa.Column("player1_id", sa.String(length=64), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("player2_id", sa.String(length=64), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("round_number", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("player1_rounds_won", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("player2_rounds_won", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_matches_championship_id", "matches", ["championship_id"], unique=False)
    op.create_index("ix_matches_player1_id", "matches", ["player1_id"], unique=False)
    op.create_index("ix_matches_player2_id", "matches", ["player2_id"], unique=False)
    op.create_index("ix_matches_round_number", "matches", ["round_number"], unique=False)
    op.create_index("ix_matches_status", "matches", ["status"], unique=False)

    # Канонические цели раундов матча: одна строка на (матч, раунд).
    op.create_table(
        "match_rounds",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("match_id", sa.Integer(), sa.ForeignKey("matches.id", ondelete="CASCADE"), nullable=False),
        sa.Column("round_number", sa.Integer(), nullable=False),
        sa.Column("lat", sa.Float(), nullable=False),
        sa.Column("lng", sa.Float(), nullable=False),
        sa.UniqueConstraint("match_id", "round_number", name="uq_match_round"),
    )
    op.create_index("ix_match_rounds_match_id", "match_rounds", ["match_id"], unique=False)

    # Ответы игроков: матч или игровой день.
    op.create_table(
        "guesses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("match_id", sa.Integer(), sa.ForeignKey("matches.id", ondelete="CASCADE"), nullable=True),
        sa.Column("location_date", sa.String(length=10), nullable=True),
        sa.Column("user_id", sa.String(length=64), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("round_number", sa.Integer(), nullable=False),
        sa.Column("lat", sa.Float(), nullable=True),
        sa.Column("lng", sa.Float(), nullable=True),
        sa.Column("target_lat", sa.Float(), nullable=False),
        sa.Column("target_lng", sa.Float(), nullable=False),
        sa.Column("score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("distance_km", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("match_id", "user_id", "round_number", name="uq_guess_match_user_round"),
        sa.UniqueConstraint("location_date", "user_id", "round_number", name="uq_guess_day_user_round"),
    )
    op.create_index("ix_guesses_match_id", "guesses", ["match_id"], unique=False)
    op.create_index("ix_guesses_location_date", "guesses", ["location_date"], unique=False)
    op.create_index("ix_guesses_user_id", "guesses", ["user_id"], unique=False)
    op.create_index("ix_guesses_created_at", "guesses", ["created_at"], unique=False)

    # Цели игрового дня; round_count используется как версия при дописывании.
    op.create_table(
        "daily_location_sets",
        sa.Column("location_date", sa.String(length=10), primary_key=True),
        sa.Column("locations", sa.JSON(), nullable=False),
        sa.Column("round_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    # Откатываем схему до пустого состояния.
    op.drop_table("daily_location_sets")
    op.drop_index("ix_guesses_created_at", table_name="guesses")
    op.drop_index("ix_guesses_user_id", table_name="guesses")
    op.drop_index("ix_guesses_location_date", table_name="guesses")
    op.drop_index("ix_guesses_match_id", table_name="guesses")
    op.drop_table("guesses")
    op.drop_index("ix_match_rounds_match_id", table_name="match_rounds")
    op.drop_table("match_rounds")
    op.drop_index("ix_matches_status", table_name="matches")
    op.drop_index("ix_matches_round_number", table_name="matches")
    op.drop_index("ix_matches_player2_id", table_name="matches")
    op.drop_index("ix_matches_player1_id", table_name="matches")
    op.drop_index("ix_matches_championship_id", table_name="matches")
    op.drop_table("matches")
    op.drop_index("ix_championship_participants_user_id", table_name="championship_participants")
    op.drop_index("ix_championship_participants_championship_id", table_name="championship_participants")
    op.drop_table("championship_participants")
    op.drop_index("ix_championships_status", table_name="championships")
    op.drop_table("championships")
    op.drop_index("ix_game_mode_regions_game_mode_id", table_name="game_mode_regions")
    op.drop_table("game_mode_regions")
    op.drop_index("ix_game_modes_created_by", table_name="game_modes")
    op.drop_table("game_modes")
    op.drop_index("ix_profiles_email", table_name="profiles")
    op.drop_table("profiles")

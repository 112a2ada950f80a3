from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Настройки приложения и окружения.
    app_name: str = "GeoLeague"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    debug: bool = True
    log_level: str = "INFO"
    database_url: str
    admin_key: str
    admin_emails: list[str] = []
    secret_key: str = "change_me"

    # Провайдер геоданных (Street View metadata API).
    google_maps_api_key: str = ""
    streetview_search_radius_m: int = 50000
    location_max_attempts: int = 20
    location_retry_backoff_s: float = 0.2

    # Игровые константы.
    game_day_offset_hours: int = 3
    daily_rounds_limit: int = 5
    free_play_round_seconds: int = 90
    match_round_seconds: int = 30
    ranking_average_min_rounds: int = 50

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


settings = Settings()

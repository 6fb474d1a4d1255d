from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Base de datos
    database_path: Path = Path("maintenances.db")

    # API del backend (opcional: si no hay URL se usa el directorio local)
    field_api_base_url: str | None = None
    field_api_token: str | None = None

    # Confirmación de visitas
    confirmation_window_hours: int = 24
    confirmation_watch_minutes: int = 15

    # Scheduler
    timezone: str = "America/Bogota"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False


settings = Settings()

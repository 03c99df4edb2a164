from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    APP_NAME: str = "Tiny CA"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Metrics (Prometheus is always served at /metrics)
    METRICS_CONSOLE_EXPORT: bool = False
    METRICS_EXPORT_INTERVAL_MS: int = 60000

    # Server
    HOST: str = "0.0.0.0"  # noqa: S104
    PORT: int = 8080

    # CA store (defaults to ~/.local/share/tinyca when CAROOT is unset)
    CAROOT: Optional[str] = None
    KEYNAME: str = "CAKey.pem"
    CRTNAME: str = "CACrt.pem"
    CA_KEY_SIZE: int = 4096


settings = Settings()

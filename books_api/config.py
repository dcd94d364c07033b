import os

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv(".env")

IN_MEMORY_URL = "sqlite://"


class Settings(BaseSettings):
    app_name: str = "Books API"
    version: str = "1.0.0"
    environment: str = "development"
    data_dir: str = "data"
    database_url: str | None = None
    host: str = "127.0.0.1"
    port: int = 3000
    cors_origins: str = ""
    require_https: bool = False
    rate_limit_requests: int = 1000
    rate_limit_window_seconds: int = 60
    otel_enabled: bool = False
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_test(self) -> bool:
        return self.environment.lower() == "test"

    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        if self.is_test:
            return IN_MEMORY_URL
        return f"sqlite:///{os.path.join(self.data_dir, 'books.db')}"

    def allowed_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


def get_settings() -> Settings:
    return Settings()

"""Application configuration using pydantic-settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Nano Chat"
    log_level: str = "debug"
    debug: bool = True

    # Inference engine ("gemini" or "mock")
    engine_provider: str = "mock"
    google_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    temperature: float = 0.7

    # Session pool / conversation window
    idle_timeout_seconds: float = 300.0
    max_context: int = 20

    # History store ("memory" or "mongodb")
    history_backend: str = "memory"
    mongodb_uri: str = "mongodb://mongodb:27017"
    mongodb_database: str = "nano_chat"

    # CORS
    frontend_url: str = "http://localhost:3000"


settings = Settings()

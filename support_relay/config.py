from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_PATH: str = "chat_history.db"

    HOST: str = "localhost"
    PORT: int = 8765
    LOG_LEVEL: str = "info"

    CORS_ORIGINS: list[str] = ["*"]

    # Frames buffered per connection before further sends are dropped
    SEND_QUEUE_SIZE: int = 256

    # Upper bound on messages returned by history queries
    HISTORY_LIMIT: int = 500

    # Reject joins whose role differs from the one stored for the username
    PIN_ROLES: bool = False

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()

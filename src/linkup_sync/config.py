from __future__ import annotations

from typing import Literal

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    API_BASE_URL: str = "https://api-linkup.id.vn"
    HTTP_TIMEOUT: float = 30.0

    SOCKET_URL: str = "https://linkup-server-bt8z.onrender.com"
    SOCKET_PATH: str = "socket.io"
    SOCKET_CONNECT_TIMEOUT: float = 10.0

    RECONNECT_BASE_DELAY: float = 1.0
    RECONNECT_MAX_DELAY: float = 30.0
    RECONNECT_MAX_ATTEMPTS: int | None = None

    SEND_CONFIRM_TIMEOUT: float = 15.0

    SESSION_BACKEND: Literal["memory", "redis"] = "memory"
    REDIS_URL: str = "redis://localhost:6379/0"
    SESSION_REDIS_KEY: str = "linkup:session"
    SESSION_REDIS_CHANNEL: str = "linkup.session"

    LOG_LEVEL: str = "INFO"

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()

from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./dev.db"
    APP_HOST: str = "127.0.0.1"
    APP_PORT: int = 8000
    FRONTEND_ORIGINS: List[str] = ["http://localhost:5173"]
    AUTH_REQUIRED: bool = True
    LOG_LEVEL: str = "INFO"

    # per-item return locks; None means the system temp dir
    LOCK_DIR: Optional[str] = None
    LOCK_TIMEOUT_SECONDS: float = 10.0

    DEFAULT_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 100

    # client side
    API_URL: str = "http://127.0.0.1:8000"
    SOCKET_URL: str = "http://127.0.0.1:8000"
    HTTP_TIMEOUT_SECONDS: float = 10.0
    HTTP_READ_RETRIES: int = 3
    HTTP_BACKOFF_FACTOR: float = 0.5

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()

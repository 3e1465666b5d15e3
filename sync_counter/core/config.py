"""Application configuration loaded from environment variables."""

from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./sync_counter.db"

    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    API_PREFIX: str = "/api"

    # S3-compatible image storage (MinIO in dev)
    IMAGE_STORAGE_BUCKET: str = "sync-counter-images"
    IMAGE_STORAGE_ENDPOINT: str = ""
    IMAGE_STORAGE_REGION: str = "us-east-1"
    IMAGE_STORAGE_ACCESS_KEY: str = ""
    IMAGE_STORAGE_SECRET_KEY: str = ""
    IMAGE_PUBLIC_BASE_URL: str = ""
    IMAGE_MAX_BYTES: int = 5 * 1024 * 1024

    # Live update stream
    STREAM_QUEUE_SIZE: int = 256
    STREAM_PING_SECONDS: int = 15

    # Day boundary for history / dailyCount
    DAY_TIMEZONE: str = "UTC"

    # Client runtime
    SERVER_URL: str = "http://localhost:8000"
    CLIENT_QUEUE_URL: str = "sqlite:///./offline_queue.db"
    CLIENT_USERNAME: str = ""
    CLIENT_REQUEST_TIMEOUT: float = 10.0
    CLIENT_PROBE_INTERVAL: float = 5.0

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()

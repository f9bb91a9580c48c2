from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class EnvironmentSettings(BaseSettings):
    # MongoDB
    DATABASE_URI: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "session_broker"
    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # Auth
    SECRET_KEY: str = "change-this-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_SECONDS: int = 8 * 60 * 60
    ADMIN_KEY: str = "admin123"

    # Cloudflare R2 (blob store)
    R2_ACCOUNT_ID: Optional[str] = None
    R2_ACCESS_KEY: Optional[str] = None
    R2_SECRET_KEY: Optional[str] = None
    R2_BUCKET_NAME: str = "session-broker"
    R2_PUBLIC_URL: Optional[str] = None

    # Notification webhook (fire-and-forget)
    NOTIFY_WEBHOOK_URL: Optional[str] = None

    # Broker timers
    DELIVERED_DELAY_MS: int = 100
    TYPING_EXPIRY_SECONDS: float = 5.0
    CUSTOMER_INACTIVITY_SECONDS: int = 24 * 60 * 60
    SESSION_JOIN_TIMEOUT_SECONDS: int = 120
    PRESENCE_SWEEP_SECONDS: int = 60

    SEED_DEFAULT_WORKERS: bool = False
    CORS_ORIGIN: str = "http://localhost:3000"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "allow",
    }


@lru_cache
def get_environment() -> EnvironmentSettings:
    return EnvironmentSettings()

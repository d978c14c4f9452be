from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Optional


class Settings(BaseSettings):
    # Core
    environment: str = Field(default="dev")
    app_name: str = Field(default="Merc Board API")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, alias="PORT")

    # Storage
    data_dir: str = Field(default="data", alias="DATA_DIR")
    emblem_dir: str = Field(default="logo_art", alias="EMBLEM_DIR")
    storage_provider: str = Field(default="local", alias="STORAGE_PROVIDER")  # local | memory

    # JWT (role tokens issued on password login)
    jwt_secret: str = Field(default="change-me", alias="JWT_SECRET")
    jwt_algorithm: str = Field(default="HS256")
    jwt_ttl_seconds: int = Field(default=60 * 60 * 24, alias="JWT_TTL")  # 24 hours

    # Mutation locks
    lock_timeout_seconds: float = Field(default=5.0, alias="LOCK_TIMEOUT_SECONDS")
    lock_poll_seconds: float = Field(default=0.01, alias="LOCK_POLL_SECONDS")

    # Push channel
    sse_keepalive_seconds: float = Field(default=30.0, alias="SSE_KEEPALIVE_SECONDS")
    ws_send_timeout_seconds: float = Field(default=5.0, alias="WS_SEND_TIMEOUT_SECONDS")

    # Rate limit
    rate_limit: str = Field(default="300/minute")

    # Self-ping for hosts that idle out free instances
    keep_alive_url: Optional[str] = Field(default=None, alias="KEEP_ALIVE_URL")
    keep_alive_interval_seconds: int = Field(default=14 * 60, alias="KEEP_ALIVE_INTERVAL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        populate_by_name = True


settings = Settings()

"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── MySQL-protocol store ───────────────────────────────────────────────
    db_host: str = "mysql"
    db_port: int = 3306
    db_user: str = "root"
    db_password: str = ""
    db_name: str = "socialhub"
    # Full SQLAlchemy URL; takes precedence over the fields above when set
    database_url: Optional[str] = None

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"mysql+aiomysql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    # ── Identity ───────────────────────────────────────────────────────────
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_expire_days: int = 30
    auth_cookie_name: str = "jwt"

    # ── MinIO (S3-compatible) media store ──────────────────────────────────
    minio_endpoint: str = "minio:9000"
    minio_access_key: str = "minioadmin"
    minio_secret_key: str = "minioadmin"
    minio_bucket: str = "media"
    minio_use_ssl: bool = False
    media_public_url: str = "http://localhost:9000"

    # ── Real-time ──────────────────────────────────────────────────────────
    realtime_queue_size: int = 256      # pending events per live session

    # ── Content ────────────────────────────────────────────────────────────
    story_ttl_hours: int = 24
    default_page_size: int = 10
    max_page_size: int = 50

    # ── HTTP ───────────────────────────────────────────────────────────────
    client_url: str = "http://localhost:3000"

    # ── Observability ──────────────────────────────────────────────────────
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    tracing_enabled: bool = True
    service_name: str = "socialhub-api"
    environment: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()

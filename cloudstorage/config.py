"""
Application configuration using Pydantic Settings.
Manages all environment variables and settings.
"""
from enum import Enum
from functools import lru_cache
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator, model_validator


class Environment(str, Enum):
    """Application environment modes."""
    DEV = "DEV"
    PRODUCTION = "PRODUCTION"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    environment: Environment = Field(
        default=Environment.DEV,
        description="Application environment: DEV or PRODUCTION"
    )

    # Application
    app_name: str = Field(default="Cloud Storage API")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)

    @model_validator(mode='after')
    def set_debug_from_environment(self):
        """Set debug mode based on environment if not explicitly set via environment variable."""
        # DEBUG 환경 변수가 명시적으로 설정되지 않은 경우에만 환경 모드에 따라 설정
        import os
        if 'DEBUG' not in os.environ:
            self.debug = self.environment == Environment.DEV
        return self

    @property
    def is_dev(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEV

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    # Database (빈 문자열이면 로컬 SQLite 사용)
    database_url: str = Field(default="sqlite+aiosqlite:///./cloudstorage.db")
    db_pool_size: int = Field(default=10)
    db_max_overflow: int = Field(default=20)
    db_pool_timeout: int = Field(default=30)
    db_pool_recycle: int = Field(default=1800)

    @field_validator("database_url", mode="before")
    @classmethod
    def coerce_empty_database_url(cls, v: str) -> str:
        if not v or not str(v).strip():
            return "sqlite+aiosqlite:///./cloudstorage.db"
        return v

    # JWT (발급 토큰은 세션 스토어에도 저장, 로그아웃 시 폐기)
    jwt_secret_key: str = Field(default="jwt-secret-change-in-production")
    jwt_algorithm: str = Field(default="HS256")
    access_token_expire_minutes: int = Field(default=60)
    jwt_audience: str = Field(default="api")
    jwt_issuer: str = Field(default="cloudstorage")

    # Session store (Redis). 비우면 단일 프로세스용 인메모리 스토어 사용
    redis_url: str = Field(
        default="",
        description="Redis URL (e.g. redis://:root@localhost:6379/0). Empty = in-process store",
    )
    redis_max_connections: int = Field(default=50)

    # Local staging (chunks + assembled files before migration)
    temp_file_path: str = Field(default="/tmp/cloudstorage")

    # Multipart upload
    chunk_size: int = Field(default=5 * 1024 * 1024, description="Fixed chunk size in bytes")
    upload_session_ttl_seconds: int = Field(default=8 * 60 * 60)
    completion_guard_ttl_seconds: int = Field(
        default=600,
        description="Upper bound on how long one finalization may hold the per-hash guard",
    )
    verify_content_hash: bool = Field(
        default=True,
        description="Compare merged SHA-1/length with the declared hash/size on completion",
    )

    # Transfer (staging -> object storage migration queue)
    async_transfer_enable: bool = Field(default=True)
    transfer_exchange_name: str = Field(default="uploadserver.trans")
    transfer_routing_key: str = Field(default="oss")
    transfer_err_queue_name: str = Field(default="uploadserver.trans.oss.err")
    transfer_publish_attempts: int = Field(default=3)
    transfer_poll_timeout_seconds: int = Field(default=5, description="Worker BLMOVE block timeout")
    orphan_sweep_interval_seconds: int = Field(
        default=60 * 60,
        description="How often the transfer worker removes orphaned StoredFile rows (0 = never)",
    )

    # S3-compatible Object Storage (durable home of file content)
    s3_endpoint_url: str = Field(default="", description="S3 API endpoint (MinIO / OSS / NHN)")
    s3_access_key: str = Field(default="")
    s3_secret_key: str = Field(default="")
    s3_region_name: str = Field(default="us-east-1")
    s3_bucket: str = Field(default="fcirno-test")

    # Rate limiting (slowapi)
    rate_limit_enabled: bool = Field(default=True)
    auth_rate_limit: str = Field(default="10/minute", description="signin/signup limit")

    # 인스턴스 식별용 사설 IP (로그용). 비우면 hostname 사용
    instance_ip: str = Field(default="", description="서버 사설 IP (비우면 자동 감지)")
    log_dir: str = Field(default="/var/log/cloudstorage")

    class Config:
        # 환경변수만 사용 (.env 파일 미사용)
        env_file = None
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Using lru_cache to avoid reading the environment on every request.
    """
    return Settings()

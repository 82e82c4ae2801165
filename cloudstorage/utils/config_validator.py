"""
설정 검증 유틸리티.

애플리케이션 시작 시 필수 설정과 의존 서비스 연결을 검증합니다.
프로덕션 환경에서만 실행됩니다.
"""
import logging
import os
import tempfile
from typing import List, Tuple

from sqlalchemy import text

from cloudstorage.config import Environment, Settings, get_settings
from cloudstorage.database import engine
from cloudstorage.session_store import get_session_store

logger = logging.getLogger("cloudstorage.config_validator")


async def validate_all_config() -> Tuple[bool, List[str]]:
    """
    Check database, session store, staging directory and object storage settings.

    Returns:
        (ok, errors)
    """
    settings = get_settings()
    errors: List[str] = []

    # DB 연결 테스트
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        errors.append(f"Database connection failed: {type(e).__name__}")

    # 세션 스토어 연결 테스트
    if not settings.redis_url:
        errors.append("REDIS_URL is required in production (in-process store is single worker only)")
    elif not await get_session_store().ping():
        errors.append("Session store (Redis) is not reachable")

    errors.extend(_validate_staging(settings))
    errors.extend(_validate_storage_config(settings))
    return not errors, errors


def _validate_staging(settings: Settings) -> List[str]:
    """스테이징 디렉터리 쓰기 가능 여부."""
    try:
        os.makedirs(settings.temp_file_path, exist_ok=True)
        with tempfile.NamedTemporaryFile(dir=settings.temp_file_path):
            pass
    except OSError as e:
        return [f"TEMP_FILE_PATH is not writable: {settings.temp_file_path} ({e.strerror})"]
    return []


def _validate_storage_config(settings: Settings) -> List[str]:
    """Object Storage 설정 검증 (비동기 전송 사용 시 필수)."""
    if not settings.async_transfer_enable:
        logger.info(
            "Async transfer disabled, object storage not required",
            extra={"event": "config"},
        )
        return []

    errors: List[str] = []
    if not settings.s3_access_key:
        errors.append("S3_ACCESS_KEY is required when ASYNC_TRANSFER_ENABLE is set")
    if not settings.s3_secret_key:
        errors.append("S3_SECRET_KEY is required when ASYNC_TRANSFER_ENABLE is set")
    if not settings.s3_bucket:
        errors.append("S3_BUCKET is required")
    return errors


async def validate_configuration() -> None:
    """
    프로덕션에서 설정을 검증합니다. 실패 시 예외로 시작을 중단합니다.
    """
    settings = get_settings()
    if settings.environment != Environment.PRODUCTION:
        logger.info(
            "Config validation skipped (not production)",
            extra={"event": "config", "environment": settings.environment.value},
        )
        return

    ok, errors = await validate_all_config()
    if not ok:
        logger.error(
            "Configuration validation failed",
            extra={"event": "config", "errors": errors},
        )
        error_summary = "\n".join(f"  - {e}" for e in errors)
        raise ValueError(f"Configuration validation failed:\n{error_summary}")

    logger.info("Configuration validation completed successfully", extra={"event": "config"})

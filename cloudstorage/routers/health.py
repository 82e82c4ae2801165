"""
Health Check 라우터.

애플리케이션과 의존 서비스(DB, 세션 스토어)의 상태를 확인하는 엔드포인트를 제공합니다.
"""
import asyncio
import logging
import time
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status
from prometheus_client import REGISTRY, Gauge
from sqlalchemy import text

from cloudstorage.config import get_settings
from cloudstorage.database import engine
from cloudstorage.dependencies.services import provide_session_store
from cloudstorage.session_store import SessionStore
from cloudstorage.utils.prometheus_metrics import ready

logger = logging.getLogger("cloudstorage.health")
router = APIRouter(prefix="/health", tags=["Health"])

settings = get_settings()

# Health check 상태 메트릭
health_check_status = Gauge(
    "cloudstorage_health_check_status",
    "Health check status (1=healthy, 0=unhealthy)",
    ["check_type"],
    registry=REGISTRY,
)


def _is_ready() -> bool:
    return ready._value.get() != 0


async def _check_db(timeout: float = 1.0) -> None:
    async def _ping():
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    await asyncio.wait_for(_ping(), timeout=timeout)


async def _check_store(store: SessionStore, timeout: float = 1.0) -> bool:
    return await asyncio.wait_for(store.ping(), timeout=timeout)


@router.get("", summary="Health check (fast)")
async def health_check() -> Dict[str, Any]:
    """
    빠른 Health Check (로드밸런서용).

    애플리케이션 실행 상태와 DB 연결만 짧은 타임아웃으로 확인합니다.
    """
    start_time = time.perf_counter()

    if not _is_ready():
        health_check_status.labels(check_type="fast").set(0)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Application is shutting down",
        )

    try:
        await _check_db()
    except asyncio.TimeoutError:
        logger.warning("DB health check timeout", extra={"event": "health"})
        health_check_status.labels(check_type="fast").set(0)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database connection timeout",
        )
    except Exception as e:
        logger.warning("DB health check failed", extra={"event": "health", "error": str(e)[:200]})
        health_check_status.labels(check_type="fast").set(0)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database connection failed",
        )

    health_check_status.labels(check_type="fast").set(1)
    return {
        "status": "healthy",
        "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
        "instance": settings.instance_ip or "unknown",
    }


@router.get("/liveness", summary="Liveness probe (Kubernetes)")
async def liveness_probe() -> Dict[str, str]:
    """애플리케이션이 살아있는지만 확인합니다."""
    if not _is_ready():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Application is shutting down",
        )
    return {"status": "alive"}


@router.get("/readiness", summary="Readiness probe (Kubernetes)")
async def readiness_probe(
    store: SessionStore = Depends(provide_session_store),
) -> Dict[str, str]:
    """
    요청을 처리할 준비가 되었는지 확인합니다.

    업로드 세션은 세션 스토어 없이는 처리할 수 없으므로 DB와 함께 확인합니다.
    """
    if not _is_ready():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Application is not ready",
        )

    try:
        await _check_db()
    except Exception as e:
        logger.warning("Readiness check failed: DB", extra={"event": "health", "error": str(e)[:200]})
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not ready",
        )

    try:
        store_ok = await _check_store(store)
    except asyncio.TimeoutError:
        store_ok = False
    if not store_ok:
        logger.warning("Readiness check failed: session store", extra={"event": "health"})
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session store not ready",
        )

    return {"status": "ready"}


@router.get("/detailed", summary="Detailed health check (monitoring)")
async def detailed_health_check(
    store: SessionStore = Depends(provide_session_store),
) -> Dict[str, Any]:
    """
    상세 Health Check (모니터링 시스템용).

    - DB 연결 확인
    - 세션 스토어 연결 확인
    """
    start_time = time.perf_counter()
    checks: Dict[str, Any] = {"status": "healthy", "checks": {}}

    if not _is_ready():
        checks["status"] = "unhealthy"
        checks["checks"]["ready"] = {"status": "down", "error": "Application is shutting down"}
        health_check_status.labels(check_type="detailed").set(0)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=checks)

    try:
        await _check_db()
        checks["checks"]["database"] = {"status": "up"}
    except asyncio.TimeoutError:
        checks["status"] = "unhealthy"
        checks["checks"]["database"] = {"status": "down", "error": "Timeout"}
    except Exception as e:
        checks["status"] = "unhealthy"
        checks["checks"]["database"] = {"status": "down", "error": str(e)[:200]}
        logger.warning("DB health check failed", extra={"event": "health", "error": str(e)[:200]})

    try:
        store_ok = await _check_store(store)
        checks["checks"]["session_store"] = {
            "status": "up" if store_ok else "down",
            "backend": "redis" if settings.redis_url else "memory",
        }
        if not store_ok:
            checks["status"] = "unhealthy"
    except asyncio.TimeoutError:
        checks["status"] = "unhealthy"
        checks["checks"]["session_store"] = {"status": "down", "error": "Timeout"}

    checks["duration_ms"] = round((time.perf_counter() - start_time) * 1000, 2)
    checks["instance"] = settings.instance_ip or "unknown"

    if checks["status"] == "unhealthy":
        health_check_status.labels(check_type="detailed").set(0)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=checks)

    health_check_status.labels(check_type="detailed").set(1)
    return checks

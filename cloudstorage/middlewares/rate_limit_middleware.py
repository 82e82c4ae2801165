"""
Rate limiting using slowapi.
Protects signin/signup against brute force.
"""
import logging
from typing import Callable

from fastapi import Request
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from cloudstorage.config import get_settings
from cloudstorage.utils.client_ip import get_client_ip
from cloudstorage.utils.prometheus_metrics import rate_limit_hits_total

logger = logging.getLogger("cloudstorage.rate_limit")
settings = get_settings()


def get_client_identifier(request: Request) -> str:
    """Rate limiting 키: 프록시 헤더를 고려한 클라이언트 IP."""
    return get_client_ip(request) or "unknown"


# 메모리 기반 (인스턴스별 한도)
limiter = Limiter(
    key_func=get_client_identifier,
    enabled=settings.rate_limit_enabled,
    storage_uri="memory://",
)


def setup_rate_limit_exception_handler(app) -> None:
    """Rate limit 초과 시 예외 처리 핸들러 등록."""
    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        endpoint = request.url.path
        rate_limit_hits_total.labels(endpoint=endpoint).inc()
        logger.warning(
            "Rate limit exceeded",
            extra={
                "event": "rate_limit",
                "client_id": get_client_identifier(request),
                "endpoint": endpoint,
                "limit": getattr(exc, "detail", "unknown"),
            },
        )
        return _rate_limit_exceeded_handler(request, exc)


def get_rate_limit_decorator(limit: str) -> Callable:
    """
    Rate limit 데코레이터 생성 헬퍼.

    비활성화 시 엔드포인트를 그대로 반환합니다.
    """
    if not settings.rate_limit_enabled:
        def noop_decorator(func: Callable) -> Callable:
            return func
        return noop_decorator

    return limiter.limit(limit)

"""
진행 중인 요청 추적 미들웨어.

Graceful shutdown 시 진행 중인 요청(특히 청크 업로드/병합)이 끝날 때까지 기다릴 수 있게 합니다.
"""
import asyncio
import logging
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from cloudstorage.utils.prometheus_metrics import in_flight_requests

logger = logging.getLogger("cloudstorage.request_tracking")

# Health check 경로는 제외 (shutdown 시에도 체크 가능해야 함)
EXCLUDED_PATHS = {"/health", "/health/liveness", "/health/readiness", "/health/detailed"}

# 프로세스 단위 진행 중 요청 수 (lifespan 종료 시 참조)
_in_flight = 0


def in_flight_count() -> int:
    return _in_flight


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """진행 중인 요청 수를 추적하는 미들웨어."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        global _in_flight
        if request.url.path in EXCLUDED_PATHS:
            return await call_next(request)

        # 단일 이벤트 루프 안에서 await 없이 증감하므로 락 불필요
        _in_flight += 1
        in_flight_requests.set(_in_flight)
        try:
            return await call_next(request)
        finally:
            _in_flight = max(_in_flight - 1, 0)
            in_flight_requests.set(_in_flight)


async def wait_for_requests(timeout: float = 30.0) -> bool:
    """
    진행 중인 요청이 완료될 때까지 대기.

    Returns:
        True: 모든 요청 완료, False: 타임아웃
    """
    deadline = time.monotonic() + timeout
    while _in_flight > 0:
        if time.monotonic() >= deadline:
            logger.warning(
                f"Timeout waiting for requests (remaining: {_in_flight})",
                extra={"event": "shutdown", "remaining_requests": _in_flight, "timeout": timeout},
            )
            return False
        await asyncio.sleep(0.5)

    logger.info("All in-flight requests completed", extra={"event": "shutdown"})
    return True

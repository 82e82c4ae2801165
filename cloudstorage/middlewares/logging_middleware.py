"""
구조화된 로깅 미들웨어.

모든 HTTP 요청에 Request ID를 부여하고, 실패/지연 요청을 로깅합니다.
"""
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from cloudstorage.utils.client_ip import get_client_ip
from cloudstorage.utils.logger import log_error, log_warning, set_request_id

# 느린 응답 임계값 (ms)
SLOW_REQUEST_THRESHOLD_MS = 3000

# Request ID 헤더 이름
REQUEST_ID_HEADER = "X-Request-ID"

# 로깅 제외할 경로
EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc", "/metrics", "/favicon.ico"}


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    구조화된 로깅을 위한 미들웨어.

    로깅 기준 (운영 노이즈 최소화):
    - 5xx 에러 응답 → ERROR
    - 4xx 에러 응답 → WARNING (청크 누락, 권한 없음, 동시 완료 충돌 등)
    - 느린 응답 (3초 이상) → WARNING (대용량 병합 추적)
    - 정상 응답 → 로깅 안 함
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in EXCLUDED_PATHS:
            return await call_next(request)

        # Request ID 설정 (클라이언트 제공 또는 새로 생성)
        rid = set_request_id(request.headers.get(REQUEST_ID_HEADER))
        context = {
            "http_method": request.method,
            "http_path": request.url.path,
            "client_ip": get_client_ip(request),
            "request_id": rid,
            "event": "request",
        }

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            log_error(
                f"Request exception: {type(e).__name__}",
                error_type=type(e).__name__,
                duration_ms=duration_ms,
                exc_info=True,
                **context,
            )
            # global exception handler가 처리하도록 다시 발생
            raise

        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        response.headers[REQUEST_ID_HEADER] = rid
        status_code = response.status_code

        if status_code >= 500:
            log_error(
                "Request error - Server error occurred",
                http_status=status_code,
                duration_ms=duration_ms,
                **context,
            )
        elif status_code >= 400:
            log_warning(
                "Request failed - Client error",
                http_status=status_code,
                duration_ms=duration_ms,
                **context,
            )
        elif duration_ms >= SLOW_REQUEST_THRESHOLD_MS:
            log_warning(
                "Slow request detected",
                http_status=status_code,
                duration_ms=duration_ms,
                performance_issue=True,
                **context,
            )
        return response

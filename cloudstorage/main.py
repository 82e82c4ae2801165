"""
FastAPI Cloud Storage Application.

Main application entry point that configures:
- CORS middleware
- API routers (users, files, multipart upload, health)
- Database and session store lifecycle
- Logging system
- Exception handlers (domain errors rendered as the response envelope)
- Prometheus metrics
- Graceful shutdown
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cloudstorage.config import get_settings
from cloudstorage.database import close_db, init_db
from cloudstorage.exceptions import Incomplete, UploadError
from cloudstorage.middlewares.logging_middleware import LoggingMiddleware
from cloudstorage.middlewares.rate_limit_middleware import setup_rate_limit_exception_handler
from cloudstorage.middlewares.request_tracking_middleware import (
    RequestTrackingMiddleware,
    wait_for_requests,
)
from cloudstorage.routers import files_router, mpupload_router, user_router
from cloudstorage.routers.health import router as health_router
from cloudstorage.schemas.common import fail
from cloudstorage.services.staging import get_staging_area
from cloudstorage.session_store import close_session_store
from cloudstorage.utils.config_validator import validate_configuration
from cloudstorage.utils.logger import get_request_id, log_error, log_info, setup_logging
from cloudstorage.utils.prometheus_metrics import exceptions_total, ready, setup_prometheus

settings = get_settings()
logger = logging.getLogger("cloudstorage")

# Python logging 설정
setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan with graceful shutdown.

    Graceful shutdown 흐름:
    1. Health check 즉시 실패 (ready=0)
    2. 로드밸런서가 새 요청 차단
    3. 진행 중인 요청 (청크 업로드, 병합) 완료 대기 (최대 30초)
    4. 세션 스토어 / DB 연결 종료
    """
    # 설정 검증 (프로덕션 환경에서만, 실패 시 시작 중단)
    await validate_configuration()

    await init_db()
    get_staging_area().ensure_dirs()

    ready.set(1)
    log_info(
        "Application startup completed",
        event="lifecycle",
        version=settings.app_version,
        environment=settings.environment.value,
    )

    yield

    ready.set(0)
    log_info("Application shutdown initiated", event="lifecycle")

    if await wait_for_requests(timeout=30.0):
        log_info("All requests completed", event="lifecycle")
    else:
        log_info("Shutdown timeout reached with requests still in-flight", event="lifecycle")

    await close_session_store()
    await close_db()

    log_info("Graceful shutdown completed", event="lifecycle")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
## Cloud Storage API

A file storage backend built with FastAPI, featuring:

### Features
- **User Management**: Registration and JWT authentication
- **Uploads**: Single-shot, instant (by content hash) and resumable chunked uploads
- **Deduplication**: Identical content is stored once and shared between users
- **Files**: Metadata, listing, download, rename and delete

### Storage
Uploaded content is staged locally and migrated to S3-compatible object storage by the
transfer worker (`python -m cloudstorage.workers.transfer`).

### Authentication
Most endpoints require authentication via Bearer token.
Use the `/user/signin` endpoint to get a token.
    """,
    openapi_tags=[
        {"name": "User", "description": "User registration and login"},
        {"name": "Files", "description": "File upload, query and management"},
        {"name": "Multipart Upload", "description": "Resumable chunked upload"},
        {"name": "Health", "description": "Health checks"},
    ],
    lifespan=lifespan,
)

# Prometheus: FastAPI metrics + node info at /metrics
setup_prometheus(app)

# Rate limiting: 예외 처리 핸들러 등록
setup_rate_limit_exception_handler(app)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add structured logging middleware
app.add_middleware(LoggingMiddleware)
# 진행 중인 요청 추적: Graceful shutdown을 위한 요청 카운트
app.add_middleware(RequestTrackingMiddleware)


@app.exception_handler(UploadError)
async def upload_error_handler(request: Request, exc: UploadError):
    """
    Render domain errors as the response envelope with the mapped HTTP status.

    Incomplete carries the missing chunk indices in ``data``.
    """
    data = {"missing": exc.missing} if isinstance(exc, Incomplete) else None
    return JSONResponse(
        status_code=exc.status_code,
        content=fail(exc.code, exc.detail, data),
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Unhandled exception handler with structured logging.

    모든 처리되지 않은 예외를 캐치하여:
    - ERROR 로그 남김 (구조화된 포맷)
    - 500 응답 반환
    - Request ID 포함 (장애 추적용)
    """
    exceptions_total.inc()
    rid = get_request_id()

    log_error(
        "Unhandled exception occurred",
        error_type=type(exc).__name__,
        error_message=str(exc),
        error_code="INTERNAL_SERVER_ERROR",
        http_method=request.method,
        http_path=request.url.path,
        request_id=rid,
        event="exception",
        exc_info=True,
    )

    # 클라이언트에게 Request ID 반환 (장애 추적용)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "request_id": rid,
        },
    )


# Include routers
app.include_router(health_router)
app.include_router(user_router)
app.include_router(files_router)
app.include_router(mpupload_router)


@app.get("/", tags=["Root"], summary="API information")
async def root():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }

"""
Prometheus metrics for stability, availability, and upload throughput.

- FastAPI: request count, latency (Instrumentator)
- Node/instance: app_info
- Stability: exceptions_total, db_errors_total, external_request_errors_total
- HA: ready gauge (1=up, 0=shutting down), in_flight_requests
- Upload pipeline: sessions, chunks, finalize outcomes, dedup hits, transfer publishes
"""
import logging
import socket
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from prometheus_client import REGISTRY, Counter, Gauge, Histogram
from prometheus_fastapi_instrumentator import Instrumentator

from cloudstorage.config import get_settings

logger = logging.getLogger(__name__)

# --- Stability ---
exceptions_total = Counter(
    "cloudstorage_exceptions_total",
    "Total unhandled exceptions",
    registry=REGISTRY,
)
db_errors_total = Counter(
    "cloudstorage_db_errors_total",
    "Total database session/transaction errors",
    registry=REGISTRY,
)
external_request_errors_total = Counter(
    "cloudstorage_external_request_errors_total",
    "Total external request failures",
    ["service"],
    registry=REGISTRY,
)

# 외부 서비스 요청 수 (성공/실패 구분), 에러율 계산용
external_request_total = Counter(
    "cloudstorage_external_request_total",
    "Total external requests by service and outcome",
    ["service", "status"],  # status: success | failure
    registry=REGISTRY,
)

# --- Circuit Breaker ---
circuit_breaker_requests_total = Counter(
    "cloudstorage_circuit_breaker_requests_total",
    "Total number of requests passed through circuit breaker",
    ["service", "status"],  # status: success | failure | rejected
    registry=REGISTRY,
)

circuit_breaker_failures_total = Counter(
    "cloudstorage_circuit_breaker_failures_total",
    "Total number of failures by exception type",
    ["service", "exception_type"],
    registry=REGISTRY,
)

circuit_breaker_state_transitions_total = Counter(
    "cloudstorage_circuit_breaker_state_transitions_total",
    "Total number of state transitions",
    ["service", "from_state", "to_state"],
    registry=REGISTRY,
)

circuit_breaker_state = Gauge(
    "cloudstorage_circuit_breaker_state",
    "Circuit breaker state (0=CLOSED, 1=OPEN, 2=HALF_OPEN)",
    ["service"],
    registry=REGISTRY,
)

# --- HA ---
ready = Gauge(
    "cloudstorage_ready",
    "Application ready (1=up, 0=shutting down)",
    registry=REGISTRY,
)

# 진행 중인 요청 수 (Graceful shutdown용)
in_flight_requests = Gauge(
    "cloudstorage_in_flight_requests",
    "Number of requests currently being processed",
    registry=REGISTRY,
)

# --- Performance ---
external_request_duration_seconds = Histogram(
    "cloudstorage_external_request_duration_seconds",
    "External request duration in seconds",
    ["service", "result"],  # result: success | failure
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=REGISTRY,
)

login_duration_seconds = Histogram(
    "cloudstorage_login_duration_seconds",
    "Login request duration in seconds",
    ["result"],  # success | failure
    buckets=(0.05, 0.1, 0.2, 0.5, 1.0, 2.0, 3.0, 5.0),
    registry=REGISTRY,
)

# --- Rate Limiting ---
rate_limit_hits_total = Counter(
    "cloudstorage_rate_limit_hits_total",
    "Total number of rate limit hits (requests blocked)",
    ["endpoint"],
    registry=REGISTRY,
)

# --- Auth ---
user_registration_total = Counter(
    "cloudstorage_user_registration_total",
    "Total number of signup attempts",
    ["result"],  # success | failure
    registry=REGISTRY,
)
user_login_total = Counter(
    "cloudstorage_user_login_total",
    "Total number of signin attempts",
    ["result"],  # success | failure
    registry=REGISTRY,
)

# --- Multipart upload ---
upload_sessions_total = Counter(
    "cloudstorage_upload_sessions_total",
    "Multipart upload initiations",
    ["result"],  # created | resumed
    registry=REGISTRY,
)

upload_chunks_total = Counter(
    "cloudstorage_upload_chunks_total",
    "Chunk upload attempts",
    ["result"],  # success | failure
    registry=REGISTRY,
)

upload_chunk_size_bytes = Histogram(
    "cloudstorage_upload_chunk_size_bytes",
    "Size of accepted chunks in bytes",
    buckets=(1024, 65536, 262144, 1048576, 2097152, 5242880, 10485760),
    registry=REGISTRY,
)

upload_complete_total = Counter(
    "cloudstorage_upload_complete_total",
    "Multipart finalization outcomes",
    ["result"],  # stored | deduplicated | conflict | incomplete | failure
    registry=REGISTRY,
)

upload_complete_duration_seconds = Histogram(
    "cloudstorage_upload_complete_duration_seconds",
    "Multipart finalization duration (merge + metadata) in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
    registry=REGISTRY,
)

upload_cancel_total = Counter(
    "cloudstorage_upload_cancel_total",
    "Multipart upload cancellations",
    registry=REGISTRY,
)

# 중복 제거 적중 (어떤 경로에서 바이트 저장을 생략했는지)
dedup_hits_total = Counter(
    "cloudstorage_dedup_hits_total",
    "Uploads satisfied by already stored content",
    ["path"],  # fast_upload | single | multipart
    registry=REGISTRY,
)

file_upload_total = Counter(
    "cloudstorage_file_upload_total",
    "Completed file uploads",
    ["upload_method", "result"],  # upload_method: single | multipart | fast
    registry=REGISTRY,
)

file_operations_total = Counter(
    "cloudstorage_file_operations_total",
    "User file operations",
    ["operation", "result"],  # operation: download | rename | delete
    registry=REGISTRY,
)

# --- Transfer ---
transfer_publish_total = Counter(
    "cloudstorage_transfer_publish_total",
    "Transfer (staging -> object storage) messages published",
    ["result"],  # success | failure | skipped
    registry=REGISTRY,
)

transfer_processed_total = Counter(
    "cloudstorage_transfer_processed_total",
    "Transfer messages handled by the worker",
    ["result"],  # migrated | skipped | failure | deferred
    registry=REGISTRY,
)


def _node_identity() -> str:
    """Instance identity for labels: INSTANCE_IP or hostname."""
    settings = get_settings()
    ip = (settings.instance_ip or "").strip()
    if ip:
        return ip
    try:
        return socket.gethostname()
    except OSError:
        return "unknown"


@asynccontextmanager
async def record_external_request(service: str) -> AsyncGenerator[None, None]:
    """
    Context manager to record external request duration, total count, and errors.
    Use around session store, broker and object storage calls.
    """
    start = time.perf_counter()
    exc_raised = None
    try:
        yield
    except Exception as e:
        exc_raised = e
        external_request_errors_total.labels(service=service).inc()
        external_request_total.labels(service=service, status="failure").inc()
        raise
    finally:
        duration = time.perf_counter() - start
        result = "failure" if exc_raised is not None else "success"
        if exc_raised is None:
            external_request_total.labels(service=service, status="success").inc()
        external_request_duration_seconds.labels(service=service, result=result).observe(duration)


def setup_prometheus(app) -> None:
    """
    Register Prometheus instrumentation and custom metrics.

    1. app_info + Instrumentator (FastAPI request metrics).
    2. /metrics 엔드포인트 노출 (스크래핑용).
    """
    settings = get_settings()

    app_info = Gauge(
        "cloudstorage_app_info",
        "Application and node identity (labels only, value is 1)",
        ["node", "app", "version", "environment"],
        registry=REGISTRY,
    )
    app_info.labels(
        node=_node_identity(),
        app=settings.app_name,
        version=settings.app_version,
        environment=settings.environment.value,
    ).set(1)

    # status 라벨을 2xx 대신 구체 코드(200, 404, 429 등)로 노출
    Instrumentator(should_group_status_codes=False).instrument(app).expose(
        app, endpoint="/metrics"
    )

"""
운영 환경용 Python 로깅 설정.

원칙:
- INFO: 중요 비즈니스 이벤트 (가입, 업로드 세션 생성/재개, 업로드 완료, 중복 제거, 전송 발행)
- WARNING: 클라이언트 오류 (잘못된 인증, 권한 없음, 미완료 업로드)
- ERROR: 시스템 오류, 외부 서비스 실패 (DB, Redis, 브로커, Object Storage)
- 개인정보 제외 (password, token 등은 로깅하지 않음)

로그 출력:
- stdout: 사람이 읽기 쉬운 텍스트
- {log_dir}/*.log: NDJSON

장애 대응:
- Request ID: 요청 추적을 위한 고유 식별자
- Instance IP: 멀티 인스턴스 환경에서 출처 식별
"""
import contextvars
import json
import logging
import socket
import sys
import uuid
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from cloudstorage.config import get_settings

settings = get_settings()

# 로깅에서 제외할 민감 필드
_SENSITIVE_FIELDS = frozenset({"password", "token", "access_token", "secret"})

# Request ID를 저장하는 context variable (비동기 안전)
request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_id", default=None
)


def _get_instance_ip() -> str:
    """환경변수 INSTANCE_IP 사용. 없으면 hostname."""
    ip = (settings.instance_ip or "").strip()
    if ip:
        return ip
    return socket.gethostname()


INSTANCE_IP = _get_instance_ip()


def generate_request_id() -> str:
    """새 Request ID 생성. 짧고 읽기 쉬운 형식."""
    return uuid.uuid4().hex[:12]


def get_request_id() -> Optional[str]:
    """현재 Request ID 반환."""
    return request_id_var.get()


def set_request_id(request_id: Optional[str] = None) -> str:
    """Request ID 설정. None이면 새로 생성."""
    rid = request_id or generate_request_id()
    request_id_var.set(rid)
    return rid


class FlushingRotatingFileHandler(RotatingFileHandler):
    """매 로그마다 디스크에 flush. 수집기가 최신 줄을 바로 읽을 수 있도록 함."""

    def emit(self, record: logging.LogRecord) -> None:
        super().emit(record)
        self.flush()


# 로그 레코드의 표준 필드 (ctx에 넣지 않음)
_STANDARD_ATTRS = frozenset(
    {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "message", "asctime", "taskName",
    }
)


class JsonLinesFormatter(logging.Formatter):
    """
    운영용 NDJSON 포맷터.

    출력 필드:
    - ts: 타임스탬프 (UTC)
    - level: 로그 레벨
    - instance: 인스턴스 IP
    - rid: Request ID
    - event: 이벤트 타입 (lifecycle, request, auth, mpupload, file, transfer, store)
    - msg: 메시지
    - ctx: 추가 컨텍스트 (민감 정보 제외)
    - exc: 예외 정보 (에러 시)
    """

    def format(self, record: logging.LogRecord) -> str:
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        msecs = int(record.msecs) % 1000
        payload = {
            "ts": dt.strftime("%Y-%m-%dT%H:%M:%S") + f".{msecs:03d}Z",
            "level": record.levelname,
            "instance": INSTANCE_IP,
        }

        rid = get_request_id()
        if rid:
            payload["rid"] = rid

        if getattr(record, "event", None):
            payload["event"] = record.event

        payload["msg"] = record.getMessage()

        _skip_in_ctx = _STANDARD_ATTRS | {"event", "instance"}
        extra_ctx = {
            k: v for k, v in record.__dict__.items()
            if k not in _skip_in_ctx
            and k not in _SENSITIVE_FIELDS
            and v is not None
        }
        if extra_ctx:
            payload["ctx"] = extra_ctx

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def _log(level: int, message: str, exc_info: bool = False, **context: Any) -> None:
    """키워드 컨텍스트를 extra로 전달 (민감 필드 제거)."""
    extra = {k: v for k, v in context.items() if k not in _SENSITIVE_FIELDS}
    logging.getLogger("cloudstorage").log(level, message, exc_info=exc_info, extra=extra)


def log_info(message: str, **context: Any) -> None:
    """Log a business event."""
    _log(logging.INFO, message, **context)


def log_warning(message: str, **context: Any) -> None:
    """Log a client-caused failure."""
    _log(logging.WARNING, message, **context)


def log_error(message: str, exc_info: bool = False, **context: Any) -> None:
    """Log a system failure."""
    _log(logging.ERROR, message, exc_info=exc_info, **context)


def setup_logging() -> None:
    """
    운영 환경용 로깅 설정.

    - stdout: 텍스트 포맷
    - {log_dir}/app.log: INFO 이상 NDJSON
    - {log_dir}/error.log: ERROR 이상 NDJSON
    - 외부 라이브러리 로그 억제
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if settings.debug else logging.INFO)
    root_logger.handlers.clear()

    text_formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(logging.INFO)
    stdout_handler.setFormatter(text_formatter)
    root_logger.addHandler(stdout_handler)

    # stderr: ERROR 이상만
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.ERROR)
    stderr_handler.setFormatter(text_formatter)
    root_logger.addHandler(stderr_handler)

    json_formatter = JsonLinesFormatter()
    log_dir = Path(settings.log_dir)
    try:
        log_dir.mkdir(parents=True, exist_ok=True)

        file_handler = FlushingRotatingFileHandler(
            log_dir / "app.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(json_formatter)
        root_logger.addHandler(file_handler)

        error_handler = FlushingRotatingFileHandler(
            log_dir / "error.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(json_formatter)
        root_logger.addHandler(error_handler)
    except OSError as e:
        root_logger.warning("File logging disabled: %s", e)

    # 외부 라이브러리 로그 억제 (운영에서 노이즈 방지)
    for name in (
        "uvicorn", "uvicorn.access", "uvicorn.error",
        "httpx", "httpcore", "asyncio",
        "botocore", "boto3", "s3transfer",
        "sqlalchemy", "sqlalchemy.engine", "sqlalchemy.pool",
    ):
        logging.getLogger(name).setLevel(logging.WARNING)

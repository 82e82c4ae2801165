"""
Circuit Breaker 패턴 구현.

전송 워커가 Object Storage 장애 시 매 메시지마다 타임아웃을 기다리지 않도록 빠르게 실패시킵니다.
상태 전이: CLOSED → OPEN → HALF_OPEN → CLOSED

참고: https://martinfowler.com/bliki/CircuitBreaker.html
"""
import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from cloudstorage.utils.prometheus_metrics import (
    circuit_breaker_failures_total,
    circuit_breaker_requests_total,
    circuit_breaker_state,
    circuit_breaker_state_transitions_total,
)

logger = logging.getLogger("cloudstorage.circuit_breaker")

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit Breaker 상태."""
    CLOSED = "CLOSED"  # 정상 동작, 요청 허용
    OPEN = "OPEN"  # 장애 상태, 요청 차단
    HALF_OPEN = "HALF_OPEN"  # 복구 시도 중, 제한적 요청 허용


# Gauge 값 (0=CLOSED, 1=OPEN, 2=HALF_OPEN)
_STATE_GAUGE = {
    CircuitState.CLOSED: 0,
    CircuitState.OPEN: 1,
    CircuitState.HALF_OPEN: 2,
}


class CircuitBreakerOpenError(Exception):
    """Circuit Breaker가 OPEN 상태일 때 발생하는 예외."""
    pass


class CircuitBreaker:
    """
    Circuit Breaker 구현.

    사용 예시:
        breaker = CircuitBreaker("object_storage", failure_threshold=5, timeout=30)
        await breaker.call(storage.upload_file, local_path, key)
    """

    def __init__(
        self,
        service_name: str,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            service_name: 서비스 이름 (메트릭 라벨용)
            failure_threshold: OPEN 상태로 전이하기 위한 연속 실패 횟수
            success_threshold: HALF_OPEN에서 CLOSED로 전이하기 위한 성공 횟수
            timeout: OPEN 상태에서 HALF_OPEN으로 전이하기까지의 시간 (초)
            clock: 시간 함수 (테스트에서 교체)
        """
        self.service_name = service_name
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.timeout = timeout
        self._clock = clock

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.opened_at: Optional[float] = None
        self._lock = asyncio.Lock()

        circuit_breaker_state.labels(service=service_name).set(0)

    def _transition(self, to_state: CircuitState) -> None:
        circuit_breaker_state_transitions_total.labels(
            service=self.service_name,
            from_state=self.state.value,
            to_state=to_state.value,
        ).inc()
        logger.warning(
            f"Circuit breaker {self.state.value} -> {to_state.value} for {self.service_name}",
            extra={
                "event": "circuit_breaker",
                "service": self.service_name,
                "failure_count": self.failure_count,
            },
        )
        self.state = to_state
        self.failure_count = 0
        self.success_count = 0
        self.opened_at = self._clock() if to_state == CircuitState.OPEN else None
        circuit_breaker_state.labels(service=self.service_name).set(_STATE_GAUGE[to_state])

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """
        Circuit Breaker를 통해 async 함수를 호출.

        Raises:
            CircuitBreakerOpenError: OPEN 상태일 때
            원본 함수의 예외: 함수 실행 중 발생한 예외
        """
        async with self._lock:
            if (
                self.state == CircuitState.OPEN
                and self.opened_at is not None
                and self._clock() - self.opened_at >= self.timeout
            ):
                self._transition(CircuitState.HALF_OPEN)

            if self.state == CircuitState.OPEN:
                circuit_breaker_requests_total.labels(
                    service=self.service_name, status="rejected"
                ).inc()
                raise CircuitBreakerOpenError(
                    f"Circuit breaker is OPEN for {self.service_name}"
                )

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            async with self._lock:
                self._on_failure(e)
            circuit_breaker_requests_total.labels(
                service=self.service_name, status="failure"
            ).inc()
            raise

        async with self._lock:
            self._on_success()
        circuit_breaker_requests_total.labels(
            service=self.service_name, status="success"
        ).inc()
        return result

    def _on_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._transition(CircuitState.CLOSED)
        else:
            self.failure_count = 0

    def _on_failure(self, exception: Exception) -> None:
        circuit_breaker_failures_total.labels(
            service=self.service_name, exception_type=type(exception).__name__
        ).inc()

        # HALF_OPEN에서 실패하면 즉시 OPEN으로
        if self.state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
            return

        self.failure_count += 1
        if self.state == CircuitState.CLOSED and self.failure_count >= self.failure_threshold:
            self._transition(CircuitState.OPEN)

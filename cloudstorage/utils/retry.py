"""
재시도 로직 구현 (Exponential Backoff).

브로커 발행처럼 일시적으로 실패할 수 있는 외부 호출에 사용합니다.
지수 백오프 + 지터로 동시에 몰리는 재시도를 분산합니다.
"""
import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger("cloudstorage.retry")

T = TypeVar("T")


def backoff_delay(
    attempt: int,
    initial_delay: float,
    max_delay: float,
    exponential_base: float = 2.0,
    jitter: bool = True,
) -> float:
    """Delay before retry number ``attempt + 1`` (0-based attempt)."""
    delay = min(initial_delay * (exponential_base ** attempt), max_delay)
    if jitter:
        delay = delay * (0.5 + random.random() * 0.5)
    return delay


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    *args,
    max_attempts: int = 3,
    initial_delay: float = 0.2,
    max_delay: float = 5.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    target: Optional[str] = None,
    **kwargs,
) -> T:
    """
    Exponential Backoff를 사용한 재시도 로직.

    Args:
        func: 호출할 async 함수
        max_attempts: 총 시도 횟수
        initial_delay: 초기 지연 시간 (초)
        max_delay: 최대 지연 시간 (초)
        exponential_base: 지수 백오프 베이스
        jitter: 지터(랜덤 지연) 추가 여부
        retryable_exceptions: 재시도할 예외 타입
        target: 재시도 대상 식별 (예: "transfer.publish") - 로그용
        *args, **kwargs: 함수 인자

    Returns:
        함수 반환값

    Raises:
        마지막 시도에서 발생한 예외
    """
    for attempt in range(max_attempts):
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            extra = {
                "event": "retry",
                "attempt": attempt + 1,
                "max_attempts": max_attempts,
                "error_type": type(e).__name__,
                "retry_target": target,
            }
            # 마지막 시도면 예외 전파
            if attempt == max_attempts - 1:
                logger.error(
                    f"Retry exhausted after {max_attempts} attempts",
                    extra=extra,
                )
                raise

            delay = backoff_delay(attempt, initial_delay, max_delay, exponential_base, jitter)
            extra["delay"] = round(delay, 3)
            logger.warning(
                f"Retry attempt {attempt + 1}/{max_attempts} after {delay:.2f}s",
                extra=extra,
            )
            await asyncio.sleep(delay)

    raise RuntimeError("max_attempts must be >= 1")

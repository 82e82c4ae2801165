"""
Transfer worker: migrates staged content to object storage.

    python -m cloudstorage.workers.transfer

Consumes the Redis list queue written by ``RedisTransferPublisher``. Each message is
moved atomically (BLMOVE) to ``<queue>.processing`` while it is handled and removed
from there afterwards, so a crashed worker leaves its message recoverable instead of
lost. Messages that fail are pushed to the error queue.

Handling is idempotent per content hash: a StoredFile that already points outside
staging (or no longer exists) is acknowledged without work, and the object key is the
hash itself, so a duplicate delivery only overwrites identical bytes.
"""
import asyncio
import logging
import signal
import time
from pathlib import Path
from typing import Callable, Optional

import redis.asyncio as redis
from pydantic import ValidationError
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from cloudstorage.config import get_settings
from cloudstorage.database import close_db, get_db_context, init_db
from cloudstorage.services.file_meta import FileMetaRepository
from cloudstorage.services.object_storage import (
    ObjectStorageError,
    ObjectStorageService,
    get_storage_service,
)
from cloudstorage.services.staging import StagingArea, get_staging_area
from cloudstorage.services.transfer import TransferMessage, transfer_queue_name
from cloudstorage.utils.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from cloudstorage.utils.logger import log_error, log_info, log_warning, setup_logging
from cloudstorage.utils.prometheus_metrics import transfer_processed_total
from cloudstorage.utils.retry import backoff_delay

logger = logging.getLogger("cloudstorage.transfer_worker")

MIGRATED = "migrated"
SKIPPED = "skipped"
FAILED = "failure"


class TransferError(Exception):
    """A message could not be migrated."""
    pass


class TransferWorker:
    """Consumes transfer messages one at a time."""

    def __init__(
        self,
        client: redis.Redis,
        storage: ObjectStorageService,
        staging: StagingArea,
        queue: Optional[str] = None,
        err_queue: Optional[str] = None,
        session_factory: Callable = get_db_context,
        breaker: Optional[CircuitBreaker] = None,
    ):
        settings = get_settings()
        self.client = client
        self.storage = storage
        self.staging = staging
        self.queue = queue or transfer_queue_name(settings)
        self.processing_queue = f"{self.queue}.processing"
        self.err_queue = err_queue or settings.transfer_err_queue_name
        self.session_factory = session_factory
        self.breaker = breaker or CircuitBreaker("object_storage", failure_threshold=5, timeout=30.0)

    async def handle(self, raw: str) -> str:
        """
        Migrate the content named by one message.

        Returns:
            "migrated" or "skipped"

        Raises:
            TransferError, ObjectStorageError, CircuitBreakerOpenError, ValidationError
        """
        message = TransferMessage.model_validate_json(raw)

        async with self.session_factory() as db:
            file_meta = FileMetaRepository(db)
            stored = await file_meta.get_by_hash(message.file_hash)
            if stored is None or not self.staging.is_staged_location(stored.file_location):
                # 이미 이전됐거나 정리 작업으로 메타가 삭제됨
                log_info(
                    "Transfer skipped",
                    event="transfer",
                    file_hash=message.file_hash,
                    reason="gone" if stored is None else "already_migrated",
                )
                return SKIPPED

            staged = Path(stored.file_location)
            if not staged.is_file():
                raise TransferError(f"Staged file missing: {staged}")

            location = await self.breaker.call(
                self.storage.upload_file, str(staged), message.dst_location
            )
            await file_meta.update_location(message.file_hash, location)

        await self.staging.discard(staged)
        log_info(
            "Transfer completed",
            event="transfer",
            file_hash=message.file_hash,
            location=location,
        )
        return MIGRATED

    async def recover(self) -> int:
        """Return messages left in the processing list by a previous run to the queue."""
        moved = 0
        while await self.client.lmove(self.processing_queue, self.queue, "LEFT", "RIGHT"):
            moved += 1
        if moved:
            log_warning("Recovered in-flight transfer messages", event="transfer", count=moved)
        return moved

    async def run_once(self, timeout: int = 5) -> Optional[str]:
        """
        Wait up to ``timeout`` seconds for one message and handle it.

        Returns:
            The outcome, or None if no message arrived
        """
        raw = await self.client.blmove(self.queue, self.processing_queue, timeout, "RIGHT", "LEFT")
        if raw is None:
            return None

        try:
            result = await self.handle(raw)
        except CircuitBreakerOpenError:
            # 스토리지 장애 중: 큐로 되돌리고 나중에 재시도
            await self.client.rpush(self.queue, raw)
            await self.client.lrem(self.processing_queue, 1, raw)
            transfer_processed_total.labels(result="deferred").inc()
            raise
        except (TransferError, ObjectStorageError, ValidationError, SQLAlchemyError, OSError) as e:
            await self.client.lpush(self.err_queue, raw)
            log_error(
                "Transfer failed",
                event="transfer",
                error_type=type(e).__name__,
                error=str(e)[:200],
                err_queue=self.err_queue,
            )
            result = FAILED

        await self.client.lrem(self.processing_queue, 1, raw)
        transfer_processed_total.labels(result=result).inc()
        return result

    async def sweep_orphans(self) -> int:
        async with self.session_factory() as db:
            removed = await FileMetaRepository(db).sweep_orphaned(str(self.staging.root))
        return len(removed)

    async def run(self, stop_event: asyncio.Event, poll_timeout: int = 5, sweep_interval: int = 0) -> None:
        """Consume until ``stop_event`` is set."""
        await self.recover()
        log_info("Transfer worker started", event="lifecycle", queue=self.queue)

        failures = 0
        last_sweep = time.monotonic()
        while not stop_event.is_set():
            try:
                await self.run_once(poll_timeout)
                failures = 0
            except CircuitBreakerOpenError:
                await asyncio.sleep(self.breaker.timeout)
            except RedisError as e:
                delay = backoff_delay(failures, initial_delay=0.5, max_delay=30.0)
                failures += 1
                log_error(
                    "Transfer queue unavailable",
                    event="transfer",
                    error_type=type(e).__name__,
                    retry_in=round(delay, 2),
                )
                await asyncio.sleep(delay)

            if sweep_interval and time.monotonic() - last_sweep >= sweep_interval:
                last_sweep = time.monotonic()
                try:
                    await self.sweep_orphans()
                except SQLAlchemyError as e:
                    log_error("Orphan sweep failed", event="transfer", error_type=type(e).__name__)

        log_info("Transfer worker stopped", event="lifecycle")


async def main() -> int:
    setup_logging()
    settings = get_settings()
    if not settings.redis_url:
        log_error("REDIS_URL is required for the transfer worker", event="lifecycle")
        return 1

    await init_db()
    staging = get_staging_area()
    staging.ensure_dirs()
    client = redis.from_url(
        settings.redis_url,
        decode_responses=True,
        max_connections=settings.redis_max_connections,
    )
    worker = TransferWorker(client, get_storage_service(), staging)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await worker.run(
            stop_event,
            poll_timeout=settings.transfer_poll_timeout_seconds,
            sweep_interval=settings.orphan_sweep_interval_seconds,
        )
    finally:
        await client.aclose()
        await close_db()
    return 0


def run_worker() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    run_worker()

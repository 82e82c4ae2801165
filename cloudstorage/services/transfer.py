"""
Transfer publisher: asks the transfer worker to migrate staged content to object storage.

The queue is a Redis list named ``<exchange>.<routing_key>`` (``uploadserver.trans.oss``).
Producers LPUSH, the worker consumes from the other end, so delivery is FIFO and
at-least-once. Messages are keyed by content hash and the worker tolerates duplicates.
"""
import logging
from typing import Optional, Protocol

import redis.asyncio as redis
from pydantic import BaseModel
from redis.exceptions import RedisError

from cloudstorage.config import Settings, get_settings
from cloudstorage.exceptions import Unavailable
from cloudstorage.session_store import RedisSessionStore, get_session_store
from cloudstorage.utils.logger import log_error, log_info
from cloudstorage.utils.prometheus_metrics import record_external_request, transfer_publish_total
from cloudstorage.utils.retry import retry_with_backoff

logger = logging.getLogger("cloudstorage.transfer")


class TransferMessage(BaseModel):
    """Migration request for one piece of content."""

    file_hash: str
    cur_location: str
    dst_location: str
    dst_type: str = "oss"


def transfer_queue_name(settings: Settings) -> str:
    return f"{settings.transfer_exchange_name}.{settings.transfer_routing_key}"


class TransferPublisher(Protocol):
    async def publish(self, file_hash: str, cur_location: str, dst_location: str) -> None: ...


class RedisTransferPublisher:
    """LPUSH transfer messages onto the Redis list queue, with retry."""

    def __init__(self, client: redis.Redis, queue: str, max_attempts: int = 3):
        self.client = client
        self.queue = queue
        self.max_attempts = max_attempts

    async def _push(self, payload: str) -> None:
        async with record_external_request("broker"):
            await self.client.lpush(self.queue, payload)

    async def publish(self, file_hash: str, cur_location: str, dst_location: str) -> None:
        """
        Raises:
            Unavailable: the broker did not accept the message after retries
        """
        message = TransferMessage(
            file_hash=file_hash,
            cur_location=cur_location,
            dst_location=dst_location,
        )
        try:
            await retry_with_backoff(
                self._push,
                message.model_dump_json(),
                max_attempts=self.max_attempts,
                retryable_exceptions=(RedisError,),
                target="transfer.publish",
            )
        except RedisError as e:
            transfer_publish_total.labels(result="failure").inc()
            log_error(
                "Transfer publish failed",
                event="transfer",
                file_hash=file_hash,
                queue=self.queue,
                error_type=type(e).__name__,
            )
            raise Unavailable("Transfer queue unavailable") from e

        transfer_publish_total.labels(result="success").inc()
        log_info(
            "Transfer published",
            event="transfer",
            file_hash=file_hash,
            queue=self.queue,
        )


class NullTransferPublisher:
    """Used when async transfer is disabled: content stays in staging."""

    async def publish(self, file_hash: str, cur_location: str, dst_location: str) -> None:
        transfer_publish_total.labels(result="skipped").inc()
        logger.info(
            "Async transfer disabled, content kept in staging",
            extra={"event": "transfer", "file_hash": file_hash},
        )


# Singleton instance
_publisher: Optional[TransferPublisher] = None


def get_transfer_publisher() -> TransferPublisher:
    """Redis list publisher when async transfer is enabled and Redis is configured."""
    global _publisher
    if _publisher is None:
        settings = get_settings()
        store = get_session_store()
        if settings.async_transfer_enable and isinstance(store, RedisSessionStore):
            _publisher = RedisTransferPublisher(
                store.client,
                transfer_queue_name(settings),
                max_attempts=settings.transfer_publish_attempts,
            )
        else:
            _publisher = NullTransferPublisher()
    return _publisher

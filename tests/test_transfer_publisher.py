"""
Transfer message publishing.
"""
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from cloudstorage.config import get_settings
from cloudstorage.exceptions import Unavailable
from cloudstorage.services.transfer import (
    NullTransferPublisher,
    RedisTransferPublisher,
    transfer_queue_name,
)


def test_queue_name():
    assert transfer_queue_name(get_settings()) == "uploadserver.trans.oss"


async def test_publish_pushes_message():
    client = MagicMock()
    client.lpush = AsyncMock(return_value=1)
    publisher = RedisTransferPublisher(client, "uploadserver.trans.oss")

    await publisher.publish("a" * 40, "/tmp/staging/files/" + "a" * 40, "a" * 40)

    queue, payload = client.lpush.await_args.args
    assert queue == "uploadserver.trans.oss"
    assert json.loads(payload) == {
        "file_hash": "a" * 40,
        "cur_location": "/tmp/staging/files/" + "a" * 40,
        "dst_location": "a" * 40,
        "dst_type": "oss",
    }


async def test_publish_retries_then_fails(monkeypatch):
    monkeypatch.setattr("cloudstorage.utils.retry.backoff_delay", lambda *args, **kwargs: 0)
    client = MagicMock()
    client.lpush = AsyncMock(side_effect=RedisConnectionError("refused"))
    publisher = RedisTransferPublisher(client, "q", max_attempts=3)

    with pytest.raises(Unavailable):
        await publisher.publish("a" * 40, "/x", "a" * 40)
    assert client.lpush.await_count == 3


async def test_null_publisher_is_a_no_op():
    await NullTransferPublisher().publish("a" * 40, "/x", "a" * 40)

"""
Message bus feeding the indexer.

Batches are appended to a Redis stream; the indexer consumes the stream and
writes the documents into OpenSearch.
"""

from __future__ import annotations

import logging
from typing import Callable, Protocol, Sequence

from redis import Redis
from redis.exceptions import RedisError

from .config import settings
from .errors import PublishError

logger = logging.getLogger(__name__)

# (key, payload) pairs; the key is the canonical message uuid.
BusRecord = tuple[str, str]
CompletionCallback = Callable[[Sequence[BusRecord], Exception | None], None]


class MessageBus(Protocol):
    def publish_batch(self, records: Sequence[BusRecord]) -> None: ...


def log_delivery(records: Sequence[BusRecord], error: Exception | None) -> None:
    """Default delivery confirmation: log failures, never raise."""
    if error is not None:
        logger.error("Message bus failed to deliver %d records: %s", len(records), error)
    else:
        logger.debug("Message bus delivered %d records", len(records))


class RedisStreamBus:
    """Publishes batches to a Redis stream in one pipeline round trip."""

    def __init__(
        self,
        client: Redis,
        stream: str | None = None,
        completion: CompletionCallback | None = None,
        max_len: int | None = None,
    ) -> None:
        self.client = client
        self.stream = stream or settings.MESSAGE_STREAM
        self.completion = completion or log_delivery
        self.max_len = max_len

    @classmethod
    def from_settings(cls) -> "RedisStreamBus":
        return cls(Redis.from_url(settings.REDIS_URL), settings.MESSAGE_STREAM)

    def publish_batch(self, records: Sequence[BusRecord]) -> None:
        if not records:
            return
        try:
            pipe = self.client.pipeline(transaction=False)
            for key, payload in records:
                pipe.xadd(
                    self.stream,
                    {"key": key, "value": payload},
                    maxlen=self.max_len,
                    approximate=True,
                )
            results = pipe.execute(raise_on_error=False)
        except RedisError as e:
            raise PublishError(f"Failed to publish batch of {len(records)}: {e}") from e

        failures = [r for r in results if isinstance(r, Exception)]
        try:
            self.completion(records, failures[0] if failures else None)
        except Exception:
            logger.exception("Delivery callback raised")

from __future__ import annotations

import logging
from typing import Callable

from .bus import BusRecord, MessageBus
from .config import settings
from .schemas import Message

logger = logging.getLogger(__name__)


class BatchPublisher:
    """
    Buffers canonical messages and publishes them in fixed-size batches.

    A batch is sent as soon as the buffer holds batch_size messages; flush()
    sends whatever remains. Bus errors propagate to the caller unchanged.
    on_flush receives the running total of published messages and whether the
    call was the trailing flush, after every successful publish call.
    """

    def __init__(
        self,
        bus: MessageBus,
        batch_size: int | None = None,
        on_flush: Callable[[int, bool], None] | None = None,
    ) -> None:
        self.bus = bus
        self.batch_size = batch_size or settings.BATCH_SIZE
        self.on_flush = on_flush
        self._buffer: list[BusRecord] = []
        self.published_count = 0
        self.publish_calls = 0

    def add(self, message: Message) -> None:
        self._buffer.append((message.uuid, message.to_json()))
        if len(self._buffer) >= self.batch_size:
            self._publish(trailing=False)

    def flush(self) -> None:
        if self._buffer:
            self._publish(trailing=True)

    def close(self) -> None:
        self.flush()

    def discard(self) -> int:
        """Drop buffered messages without publishing; returns how many."""
        dropped = len(self._buffer)
        self._buffer = []
        return dropped

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def _publish(self, trailing: bool) -> None:
        batch = self._buffer
        self.bus.publish_batch(batch)
        self._buffer = []
        self.published_count += len(batch)
        self.publish_calls += 1
        logger.debug("Published batch of %d (total %d)", len(batch), self.published_count)
        if self.on_flush is not None:
            self.on_flush(self.published_count, trailing)

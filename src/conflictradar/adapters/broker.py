"""In-process message broker with keyed, partitioned topics.

Stands in for a Kafka-style broker: messages are routed to a partition by
key, each partition is an append-only log, and a consumer only moves past
a message once it is acknowledged. Good enough for tests, local runs and
single-process deployments; not a replicated transport.
"""

import asyncio
import logging
import zlib
from collections import defaultdict
from typing import Any

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

DEFAULT_PARTITIONS = 4


def partition_for(key: str, partitions: int) -> int:
    """Stable partition for a message key.

    The same key always maps to the same partition, across processes too
    (unlike the builtin hash(), which is salted per process).
    """
    if partitions < 1:
        raise ValueError(f"partitions must be >= 1, got {partitions}")
    return zlib.crc32(key.encode("utf-8")) % partitions


class BrokerMessage(BaseModel):
    """One message as stored in a partition log."""

    model_config = ConfigDict(frozen=True)

    topic: str
    partition: int
    offset: int
    key: str
    payload: dict[str, Any]


class InMemoryBroker:
    """Partitioned topics with committed consumer offsets.

    Offsets are tracked per (topic, partition) for a single consumer
    group, which is all the pipeline needs.
    """

    def __init__(self, partitions: int = DEFAULT_PARTITIONS) -> None:
        self.partitions = partitions
        self._logs: dict[tuple[str, int], list[BrokerMessage]] = defaultdict(list)
        self._committed: dict[tuple[str, int], int] = defaultdict(int)
        self._arrival = asyncio.Condition()

    async def send(self, topic: str, key: str, payload: dict[str, Any]) -> None:
        partition = partition_for(key, self.partitions)
        log = self._logs[(topic, partition)]
        log.append(
            BrokerMessage(
                topic=topic,
                partition=partition,
                offset=len(log),
                key=key,
                payload=payload,
            )
        )
        logger.debug(f"Sent {key} to {topic}[{partition}]@{len(log) - 1}")
        async with self._arrival:
            self._arrival.notify_all()

    def messages(self, topic: str) -> list[BrokerMessage]:
        """Every message on a topic, partition by partition."""
        result: list[BrokerMessage] = []
        for partition in range(self.partitions):
            result.extend(self._logs.get((topic, partition), []))
        return result

    def fetch(self, topic: str, partition: int) -> BrokerMessage | None:
        """Next unacknowledged message of a partition, if any.

        Fetching is idempotent: until the message is acknowledged the same
        message comes back.
        """
        log = self._logs.get((topic, partition), [])
        position = self._committed[(topic, partition)]
        if position < len(log):
            return log[position]
        return None

    def acknowledge(self, message: BrokerMessage) -> None:
        """Commit the offset past `message`."""
        key = (message.topic, message.partition)
        if self._committed[key] == message.offset:
            self._committed[key] = message.offset + 1
        else:
            logger.debug(
                f"Ignoring out-of-order ack for {message.topic}[{message.partition}]"
                f"@{message.offset}"
            )

    def committed(self, topic: str, partition: int) -> int:
        return self._committed[(topic, partition)]

    def lag(self, topic: str) -> int:
        """Messages on a topic not yet acknowledged."""
        return sum(
            len(self._logs.get((topic, p), [])) - self._committed[(topic, p)]
            for p in range(self.partitions)
        )

    async def wait_for_messages(self, timeout: float) -> None:
        """Block until something is sent or the timeout elapses."""
        async with self._arrival:
            try:
                await asyncio.wait_for(self._arrival.wait(), timeout)
            except asyncio.TimeoutError:
                pass


__all__ = ["BrokerMessage", "DEFAULT_PARTITIONS", "InMemoryBroker", "partition_for"]

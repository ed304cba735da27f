"""Worker pool pulling news-ingested messages from the broker.

Partitions are split across a fixed number of asyncio worker tasks, each
partition owned by exactly one worker. A worker runs one pipeline
invocation to completion before it acknowledges and fetches the next
message of that partition, so messages with the same article id (hence
the same partition) are processed in order.
"""

import asyncio
import logging

from conflictradar.adapters.broker import BrokerMessage, InMemoryBroker, partition_for
from conflictradar.config import Settings, get_settings
from conflictradar.pipeline import IngestionPipeline

logger = logging.getLogger(__name__)

IDLE_WAIT_SECONDS = 0.5


def assign_partitions(partitions: int, workers: int) -> list[list[int]]:
    """Round-robin partitions over workers; workers beyond the partition count get none."""
    assignment: list[list[int]] = [[] for _ in range(max(workers, 1))]
    for partition in range(partitions):
        assignment[partition % len(assignment)].append(partition)
    return [parts for parts in assignment if parts]


class ArticleConsumer:
    """Consumes the inbound topic with a small pool of worker tasks."""

    def __init__(
        self,
        broker: InMemoryBroker,
        pipeline: IngestionPipeline,
        settings: Settings | None = None,
        workers: int | None = None,
    ) -> None:
        self._broker = broker
        self._pipeline = pipeline
        self._settings = settings or get_settings()
        self.topic = self._settings.topic_news_ingested
        self.worker_count = workers or self._settings.consumer_workers
        self._tasks: list[asyncio.Task[None]] = []
        self._stopping = asyncio.Event()
        self.handled_count = 0

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def _next_message(self, partitions: list[int]) -> BrokerMessage | None:
        for partition in partitions:
            message = self._broker.fetch(self.topic, partition)
            if message is not None:
                return message
        return None

    async def _handle(self, message: BrokerMessage) -> bool:
        """Run the pipeline on one message; True if it was acknowledged."""
        outcome = await self._pipeline.handle(
            message.payload, lambda: self._broker.acknowledge(message)
        )
        self.handled_count += 1
        return outcome.acknowledged

    async def _work(self, worker_id: int, partitions: list[int]) -> None:
        logger.info(f"Worker {worker_id} consuming {self.topic} partitions {partitions}")
        while not self._stopping.is_set():
            message = self._next_message(partitions)
            if message is None:
                await self._broker.wait_for_messages(IDLE_WAIT_SECONDS)
                continue
            if not await self._handle(message):
                # Redelivered on the next fetch; back off first
                await asyncio.sleep(IDLE_WAIT_SECONDS)
        logger.info(f"Worker {worker_id} stopped")

    async def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        assignment = assign_partitions(self._broker.partitions, self.worker_count)
        self._tasks = [
            asyncio.create_task(self._work(i, parts), name=f"consumer-worker-{i}")
            for i, parts in enumerate(assignment)
        ]

    async def stop(self) -> None:
        """Let workers finish their current message, then flush the pipeline."""
        self._stopping.set()
        if self._tasks:
            await asyncio.gather(*self._tasks)
            self._tasks = []
        await self._pipeline.shutdown()

    async def run_until_idle(self) -> int:
        """Drain the inbound topic without background workers.

        Partitions are processed concurrently, one message at a time per
        partition. Returns the number of messages handled.
        """
        assignment = assign_partitions(self._broker.partitions, self.worker_count)
        before = self.handled_count

        async def drain(partitions: list[int]) -> None:
            while (message := self._next_message(partitions)) is not None:
                if not await self._handle(message):
                    break

        await asyncio.gather(*(drain(parts) for parts in assignment))
        await self._pipeline.drain()
        return self.handled_count - before


__all__ = ["ArticleConsumer", "assign_partitions", "partition_for"]

"""Producer/consumer refresh scheduler.

One producer task periodically asks for due work and offers it to a bounded
queue per refresh kind. Each kind has its own worker pool, so a slow upstream
for one kind never blocks another. Attempts for the same (source, kind) are
serialized; different sources run concurrently up to the pool size.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol, Set, Tuple

from govsync.core.config import RefreshKind, SyncConfig
from govsync.core.logging import get_logger

log = get_logger("sync.queue")

WorkKey = Tuple[str, RefreshKind]


@dataclass(frozen=True)
class WorkItem:
    source_id: str
    kind: RefreshKind
    voters: Tuple[str, ...] = ()

    @property
    def key(self) -> WorkKey:
        return (self.source_id, self.kind)


@dataclass
class RefreshOutcome:
    """Result of one refresh attempt. ``voters`` maps address -> success for vote kinds."""

    source_id: str
    ok: bool
    voters: Dict[str, bool] = field(default_factory=dict)

    @classmethod
    def failure(cls, item: WorkItem) -> "RefreshOutcome":
        return cls(source_id=item.source_id, ok=False, voters={v: False for v in item.voters})


class WorkSource(Protocol):
    def due_items(self, kind: RefreshKind) -> List[WorkItem]: ...

    def mark_enqueued(self, items: Iterable[WorkItem]) -> None: ...


class RefreshExecutor(Protocol):
    async def execute(self, item: WorkItem) -> RefreshOutcome: ...


class FeedbackSink(Protocol):
    def record(self, item: WorkItem, outcome: RefreshOutcome) -> None: ...


class RefreshScheduler:
    def __init__(
        self,
        config: SyncConfig,
        source: WorkSource,
        executor: RefreshExecutor,
        feedback: FeedbackSink,
        kinds: Optional[Iterable[RefreshKind]] = None,
    ):
        self.config = config
        self.source = source
        self.executor = executor
        self.feedback = feedback
        self.kinds = list(kinds) if kinds is not None else list(RefreshKind)

        self._queues: Dict[RefreshKind, asyncio.Queue] = {
            kind: asyncio.Queue(maxsize=config.tuning(kind).queue_maxsize) for kind in self.kinds
        }
        self._queued: Set[WorkKey] = set()
        self._in_flight: Set[WorkKey] = set()
        self._locks: Dict[WorkKey, asyncio.Lock] = {}
        self._dropped: Dict[RefreshKind, int] = {kind: 0 for kind in self.kinds}
        self._tasks: List[asyncio.Task] = []

    # -------------------------------------------------------------------------
    # Producer
    # -------------------------------------------------------------------------
    def offer(self, item: WorkItem) -> bool:
        """Try to enqueue without blocking. Duplicates and full queues are skipped."""
        if item.key in self._queued or item.key in self._in_flight:
            return False

        try:
            self._queues[item.kind].put_nowait(item)
        except asyncio.QueueFull:
            self._dropped[item.kind] += 1
            log.debug(f"Queue full for {item.kind.value}; dropping {item.source_id} this tick")
            return False

        self._queued.add(item.key)
        return True

    async def produce_once(self) -> int:
        accepted: List[WorkItem] = []
        for kind in self.kinds:
            try:
                items = self.source.due_items(kind)
            except Exception as exc:  # noqa: BLE001
                log.exception(f"Could not build {kind.value} queue: {exc}")
                continue

            accepted.extend(item for item in items if self.offer(item))

        if accepted:
            try:
                self.source.mark_enqueued(accepted)
            except Exception as exc:  # noqa: BLE001
                log.exception(f"Could not mark {len(accepted)} items as enqueued: {exc}")
            log.info(f"Enqueued {len(accepted)} refresh items")
        return len(accepted)

    async def _producer(self) -> None:
        log.info(f"Refresh producer started (tick: {self.config.producer_tick_seconds}s)")
        while True:
            try:
                await self.produce_once()
                await asyncio.sleep(self.config.producer_tick_seconds)
            except asyncio.CancelledError:
                log.info("Refresh producer cancelled")
                raise

    # -------------------------------------------------------------------------
    # Consumers
    # -------------------------------------------------------------------------
    async def process(self, item: WorkItem) -> RefreshOutcome:
        lock = self._locks.setdefault(item.key, asyncio.Lock())
        async with lock:
            self._queued.discard(item.key)
            self._in_flight.add(item.key)
            try:
                try:
                    outcome = await self.executor.execute(item)
                except Exception as exc:  # noqa: BLE001
                    log.exception(f"Refresh crashed for {item.kind.value} {item.source_id}: {exc}")
                    outcome = RefreshOutcome.failure(item)

                try:
                    self.feedback.record(item, outcome)
                except Exception as exc:  # noqa: BLE001
                    log.exception(f"Could not record outcome for {item.kind.value} {item.source_id}: {exc}")
                return outcome
            finally:
                self._in_flight.discard(item.key)

    async def _worker(self, kind: RefreshKind, number: int) -> None:
        queue = self._queues[kind]
        while True:
            item = await queue.get()
            try:
                await self.process(item)
            finally:
                queue.task_done()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    def start(self) -> None:
        if self._tasks:
            return
        self._tasks.append(asyncio.create_task(self._producer(), name="refresh-producer"))
        for kind in self.kinds:
            for number in range(self.config.tuning(kind).pool_size):
                self._tasks.append(asyncio.create_task(self._worker(kind, number), name=f"refresh-{kind.value}-{number}"))
        log.info(f"Refresh scheduler started with {len(self._tasks) - 1} workers")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        log.info("Refresh scheduler stopped")

    async def drain(self) -> None:
        """Wait until every queued item has been processed."""
        await asyncio.gather(*(queue.join() for queue in self._queues.values()))

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def is_busy(self, source_id: str, kind: RefreshKind) -> bool:
        key = (source_id, kind)
        return key in self._queued or key in self._in_flight

    def stats(self) -> Dict[str, Dict[str, int]]:
        return {
            kind.value: {
                "queued": self._queues[kind].qsize(),
                "in_flight": sum(1 for key in self._in_flight if key[1] is kind),
                "dropped": self._dropped[kind],
            }
            for kind in self.kinds
        }

"""Store sharding and batched concurrent store runs."""

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence

from clearance_crawler import metrics
from clearance_crawler.config import settings
from clearance_crawler.ingest.base import StoreRunFailure, StoreTarget

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """
    State shared by every store run of one process.

    The stop flag is only consulted before launching a batch or a store;
    a store already crawling runs to its own stop condition.
    """

    stop_requested: bool = False
    stop_reason: Optional[str] = None

    def request_stop(self, reason: str = "requested"):
        if not self.stop_requested:
            logger.warning(f"Stop requested ({reason}); no new stores will be launched")
        self.stop_requested = True
        self.stop_reason = reason


@dataclass(frozen=True)
class ShardAssignment:
    """1-based shard index out of ``total`` shards."""

    index: Optional[int] = None
    total: Optional[int] = None

    @property
    def is_valid(self) -> bool:
        return (
            self.index is not None
            and self.total is not None
            and self.total >= 1
            and 1 <= self.index <= self.total
        )

    @classmethod
    def from_settings(cls) -> "ShardAssignment":
        return cls(index=settings.shard_index, total=settings.total_shards)


@dataclass
class StoreRunResult:
    store: StoreTarget
    success: bool = True
    records: int = 0
    pages_visited: int = 0
    stop_reason: Optional[str] = None
    output_path: Optional[str] = None
    duration: float = 0.0
    error: Optional[StoreRunFailure] = None


@dataclass
class SchedulerReport:
    results: List[StoreRunResult] = field(default_factory=list)
    skipped: List[StoreTarget] = field(default_factory=list)

    @property
    def succeeded(self) -> List[StoreRunResult]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> List[StoreRunResult]:
        return [r for r in self.results if not r.success]


StoreRunner = Callable[[StoreTarget, RunContext], Awaitable[StoreRunResult]]


def select_shard(
    stores: Sequence[StoreTarget],
    shard: Optional[ShardAssignment] = None,
    max_per_shard: Optional[int] = None,
) -> List[StoreTarget]:
    """
    Pick this shard's slice of the store list.

    Each shard takes ``min(ceil(n / total), max_per_shard)`` consecutive
    stores. A missing or invalid assignment selects every store.
    """
    stores = list(stores)
    if shard is None or not shard.is_valid:
        if shard is not None and (shard.index is not None or shard.total is not None):
            logger.warning(f"Ignoring invalid shard assignment {shard.index}/{shard.total}")
        return stores

    max_per_shard = max_per_shard or settings.max_stores_per_shard
    per_shard = min(math.ceil(len(stores) / shard.total), max_per_shard)
    start = (shard.index - 1) * per_shard
    selected = stores[start:start + per_shard]
    logger.info(
        f"Shard {shard.index}/{shard.total}: {len(selected)} store(s) "
        f"(positions {start + 1}-{start + len(selected)} of {len(stores)})"
    )
    return selected


def batched(items: Sequence, size: int) -> List[list]:
    size = max(1, size)
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class StoreScheduler:
    """Runs stores in fixed-size concurrent batches."""

    def __init__(self, runner: StoreRunner, concurrency: Optional[int] = None):
        """
        Args:
            runner: Coroutine crawling one store; may raise
            concurrency: Batch size and cap on simultaneous browser sessions
        """
        self.runner = runner
        self.concurrency = concurrency or settings.store_concurrency
        self._semaphore = asyncio.Semaphore(self.concurrency)

    async def _run_one(self, store: StoreTarget, context: RunContext) -> Optional[StoreRunResult]:
        if context.stop_requested:
            logger.info(f"Skipping store {store.store_id}: stop requested")
            return None

        async with self._semaphore:
            start = time.monotonic()
            try:
                result = await self.runner(store, context)
            except Exception as e:
                failure = StoreRunFailure(store.store_id, e)
                duration = time.monotonic() - start
                logger.warning(str(failure), exc_info=True)
                metrics.record_store_run(False, duration)
                return StoreRunResult(store=store, success=False, duration=duration, error=failure)

            result.duration = result.duration or (time.monotonic() - start)
            metrics.record_store_run(result.success, result.duration, result.stop_reason)
            return result

    async def run(self, stores: Sequence[StoreTarget], context: Optional[RunContext] = None) -> SchedulerReport:
        """
        Crawl ``stores`` batch by batch.

        A failing store never affects its siblings or later batches.
        """
        context = context or RunContext()
        report = SchedulerReport()
        batches = batched(list(stores), self.concurrency)

        for number, batch in enumerate(batches, start=1):
            if context.stop_requested:
                logger.info(f"Stop requested; skipping {len(batches) - number + 1} remaining batch(es)")
                for remaining in batches[number - 1:]:
                    report.skipped.extend(remaining)
                break

            logger.info(
                f"Batch {number}/{len(batches)}: {', '.join(s.store_id for s in batch)}"
            )
            outcomes = await asyncio.gather(*(self._run_one(store, context) for store in batch))
            for store, outcome in zip(batch, outcomes):
                if outcome is None:
                    report.skipped.append(store)
                else:
                    report.results.append(outcome)

        logger.info(
            f"Scheduler done: {len(report.succeeded)} succeeded, {len(report.failed)} failed, "
            f"{len(report.skipped)} skipped"
        )
        return report

"""Tests for sharding and batched store runs."""

import asyncio
import json

import pytest

from clearance_crawler.ingest.base import GlobalFatalError, StoreRunFailure, StoreTarget
from clearance_crawler.worker.scheduler import (
    RunContext,
    ShardAssignment,
    StoreRunResult,
    StoreScheduler,
    batched,
    select_shard,
)
from clearance_crawler.worker.stores import filter_stores, load_stores


def _stores(count):
    return [StoreTarget(store_id=str(100 + i), store_name=f"Ville {i}") for i in range(count)]


def test_shard_slices_are_contiguous():
    stores = _stores(20)

    first = select_shard(stores, ShardAssignment(index=1, total=3))
    last = select_shard(stores, ShardAssignment(index=3, total=3))

    assert [s.store_id for s in first] == [str(100 + i) for i in range(7)]
    assert [s.store_id for s in last] == [str(100 + i) for i in range(14, 20)]


def test_shard_size_is_capped():
    stores = _stores(100)

    second = select_shard(stores, ShardAssignment(index=2, total=2), max_per_shard=8)

    assert [s.store_id for s in second] == [str(100 + i) for i in range(8, 16)]


@pytest.mark.parametrize(
    "shard",
    [None, ShardAssignment(), ShardAssignment(index=0, total=3), ShardAssignment(index=4, total=3),
     ShardAssignment(index=1, total=0)],
)
def test_invalid_shard_selects_all(shard):
    stores = _stores(5)

    assert select_shard(stores, shard) == stores


def test_batched():
    assert batched([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]


@pytest.mark.asyncio
async def test_failing_store_does_not_affect_siblings():
    """One store raising leaves the rest of its batch and later batches untouched."""
    crawled = []

    async def runner(store, context):
        await asyncio.sleep(0)
        if store.store_id == "101":
            raise RuntimeError("browser crashed")
        crawled.append(store.store_id)
        return StoreRunResult(store=store, records=3, stop_reason="max-pages")

    report = await StoreScheduler(runner, concurrency=2).run(_stores(5))

    assert sorted(crawled) == ["100", "102", "103", "104"]
    assert len(report.succeeded) == 4
    assert len(report.failed) == 1
    failure = report.failed[0].error
    assert isinstance(failure, StoreRunFailure)
    assert failure.store_id == "101"
    assert isinstance(failure.cause, RuntimeError)


@pytest.mark.asyncio
async def test_concurrency_is_capped():
    active = 0
    peak = 0

    async def runner(store, context):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return StoreRunResult(store=store)

    await StoreScheduler(runner, concurrency=3).run(_stores(7))

    assert peak == 3


@pytest.mark.asyncio
async def test_stop_flag_skips_later_batches():
    async def runner(store, context):
        context.request_stop("time limit")
        return StoreRunResult(store=store)

    context = RunContext()
    report = await StoreScheduler(runner, concurrency=2).run(_stores(6), context)

    skipped = [s.store_id for s in report.skipped]
    assert "100" in [r.store.store_id for r in report.results]
    assert {"102", "103", "104", "105"} <= set(skipped)
    assert context.stop_reason == "time limit"


def test_load_stores_from_file(tmp_path):
    path = tmp_path / "stores.json"
    path.write_text(json.dumps([
        {"storeId": "0418", "storeName": "Rosemère, QC"},
        {"storeId": 218, "storeName": "St. Eustache"},
        {"storeName": "missing id"},
    ]))

    stores = load_stores(path)

    assert stores == [
        StoreTarget(store_id="0418", store_name="Rosemère, QC"),
        StoreTarget(store_id="218", store_name="St. Eustache"),
    ]
    assert [s.store_id for s in filter_stores(stores, "418")] == ["0418"]


def test_load_stores_fallback(tmp_path):
    stores = load_stores(tmp_path / "missing.json", fallback_store_id="418", fallback_store_name="Rosemère")

    assert stores == [StoreTarget(store_id="418", store_name="Rosemère")]


def test_load_stores_without_fallback_is_fatal(tmp_path):
    with pytest.raises(GlobalFatalError):
        load_stores(tmp_path / "missing.json")

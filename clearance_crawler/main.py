"""Command-line entry point: crawl this shard's stores."""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from clearance_crawler import metrics
from clearance_crawler.config import settings
from clearance_crawler.ingest.base import GlobalFatalError
from clearance_crawler.ingest.browser import BrowserSessionFactory
from clearance_crawler.logging_config import setup_logging
from clearance_crawler.output.writer import JsonRecordWriter
from clearance_crawler.worker.scheduler import (
    RunContext,
    SchedulerReport,
    ShardAssignment,
    StoreScheduler,
    select_shard,
)
from clearance_crawler.worker.store_crawler import StoreCrawler
from clearance_crawler.worker.stores import filter_stores, load_stores

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clearance-crawler",
        description="Crawl clearance listings per store and write discounted products to JSON",
    )
    parser.add_argument("--store-id", help="Crawl only this store (also the fallback when no store list exists)")
    parser.add_argument("--store-name", default="", help="Name of the fallback store")
    parser.add_argument("--max-pages", type=int, default=None, help=f"Page cap per store (default {settings.max_pages})")
    parser.add_argument("--shard-index", type=int, default=None, help="1-based shard index")
    parser.add_argument("--total-shards", type=int, default=None, help="Total number of shards")
    parser.add_argument("--stores-path", default=None, help=f"Store list JSON (default {settings.stores_path})")
    parser.add_argument("--out-base", default=None, help=f"Output root (default {settings.output_base})")
    parser.add_argument("--pagination-mode", choices=["url", "click"], default=None)
    parser.add_argument("--headful", action="store_true", help="Show the browser window")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    return parser


def _install_stop_handlers(context: RunContext):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, context.request_stop, sig.name)
        except (NotImplementedError, RuntimeError):
            # Windows event loops do not support signal handlers
            pass


async def run(args: argparse.Namespace) -> SchedulerReport:
    stores = load_stores(
        args.stores_path or settings.stores_path,
        fallback_store_id=args.store_id,
        fallback_store_name=args.store_name,
    )
    shard = ShardAssignment(
        index=args.shard_index if args.shard_index is not None else settings.shard_index,
        total=args.total_shards if args.total_shards is not None else settings.total_shards,
    )
    stores = select_shard(stores, shard)
    stores = filter_stores(stores, args.store_id)
    logger.info(f"{len(stores)} store(s) to crawl, {settings.store_concurrency} at a time")

    crawler = StoreCrawler(
        session_factory=BrowserSessionFactory(headless=False if args.headful else None),
        writer=JsonRecordWriter(args.out_base),
        pagination_mode=args.pagination_mode,
        max_pages=args.max_pages,
    )
    context = RunContext()
    _install_stop_handlers(context)

    report = await StoreScheduler(crawler).run(stores, context)
    metrics.record_shard_done(settings.metrics_textfile)
    return report


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.debug:
        settings.debug = True
    setup_logging()

    try:
        report = asyncio.run(run(args))
    except GlobalFatalError as e:
        logger.critical(f"Fatal: {e}")
        return 1

    for result in report.failed:
        logger.warning(f"Store {result.store.store_id} failed: {result.error}")
    logger.info("Shard done")
    return 0


if __name__ == "__main__":
    sys.exit(main())

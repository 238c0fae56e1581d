"""Prometheus metrics for the clearance crawler."""

import time

from prometheus_client import REGISTRY, Counter, Gauge, Histogram, Info, write_to_textfile

# Application info
app_info = Info("clearance_crawler", "Clearance crawler application info")
app_info.info({"version": "0.1.0", "name": "clearance-crawler"})

# Page metrics
pages_crawled_total = Counter(
    "listing_pages_crawled_total",
    "Total number of listing pages processed",
    ["store", "outcome"],
)

cards_extracted_total = Counter(
    "listing_cards_extracted_total",
    "Total number of product cards extracted",
    ["store"],
)

navigation_retries_total = Counter(
    "listing_navigation_retries_total",
    "Navigation attempts that failed and were retried",
)

placeholder_reloads_total = Counter(
    "listing_placeholder_reloads_total",
    "Reloads triggered by placeholder skeleton markup",
)

# Record metrics
records_accepted_total = Counter(
    "deal_records_accepted_total",
    "Total number of deal records retained after deduplication",
    ["store"],
)

duplicates_dropped_total = Counter(
    "deal_duplicates_dropped_total",
    "Total number of records dropped as duplicates",
    ["store"],
)

# Store run metrics
store_runs_total = Counter(
    "store_runs_total",
    "Total number of store runs",
    ["status"],
)

store_run_stop_reasons_total = Counter(
    "store_run_stop_reasons_total",
    "Pagination stop reasons",
    ["reason"],
)

store_run_duration_seconds = Histogram(
    "store_run_duration_seconds",
    "Time spent crawling one store",
    buckets=[30.0, 60.0, 120.0, 300.0, 600.0, 1200.0, 2400.0],
)

last_run_timestamp = Gauge(
    "crawler_last_run_timestamp",
    "Timestamp of the last completed shard run",
)


def record_page(store: str, outcome: str, cards: int = 0):
    """Record a processed listing page."""
    pages_crawled_total.labels(store=store, outcome=outcome).inc()
    if cards:
        cards_extracted_total.labels(store=store).inc(cards)


def record_dedupe(store: str, accepted: bool):
    """Record a deduplicator decision."""
    if accepted:
        records_accepted_total.labels(store=store).inc()
    else:
        duplicates_dropped_total.labels(store=store).inc()


def record_store_run(success: bool, duration: float, stop_reason: str | None = None):
    """Record a finished store run."""
    status = "success" if success else "error"
    store_runs_total.labels(status=status).inc()
    store_run_duration_seconds.observe(duration)
    if stop_reason:
        store_run_stop_reasons_total.labels(reason=stop_reason).inc()


def record_shard_done(textfile: str | None = None):
    """Mark the end of a shard run and optionally dump metrics to a textfile."""
    last_run_timestamp.set(time.time())
    if textfile:
        write_to_textfile(textfile, REGISTRY)

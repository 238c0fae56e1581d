#!/usr/bin/env python3
"""
Build the national deep-discount index from every store's data.json.

Walks the output roots, keeps records at or above the minimum discount and
writes them sorted by discount to a single JSON file.
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from clearance_crawler.logging_config import setup_logging
from clearance_crawler.output.deals_index import (
    DEFAULT_MIN_DISCOUNT,
    DEFAULT_ROOTS,
    build_deals_index,
    write_index,
)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Build the national deals index")
    parser.add_argument(
        "--roots",
        nargs="+",
        default=list(DEFAULT_ROOTS),
        help="Output directories to scan",
    )
    parser.add_argument(
        "--min-discount",
        type=float,
        default=DEFAULT_MIN_DISCOUNT,
        help="Minimum discount percent to include",
    )
    parser.add_argument(
        "--output",
        default="public/index/deals-80.json",
        help="Where to write the index",
    )
    args = parser.parse_args()

    setup_logging()
    index = build_deals_index(args.roots, min_discount=args.min_discount)
    write_index(index, args.output)
    print(f"Wrote {index['count']} deals to {args.output}")

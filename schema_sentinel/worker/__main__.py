"""
Audit worker CLI entry point.

Usage:
    python -m schema_sentinel.worker [OPTIONS]

Options:
    --poll-interval N   Keep polling every N seconds instead of draining once
"""
from __future__ import annotations

import argparse
import sys

from .loop import run_worker


def main() -> int:
    """Main entry point for worker CLI."""
    parser = argparse.ArgumentParser(
        description="Schema Sentinel worker - processes queued audit runs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Drain the queue once and exit
    python -m schema_sentinel.worker

    # Keep polling every 10 seconds
    python -m schema_sentinel.worker --poll-interval 10
        """,
    )

    parser.add_argument(
        "--poll-interval",
        type=int,
        default=None,
        help="Seconds between poll cycles (default: drain once and exit)",
    )

    args = parser.parse_args()

    print("Starting Schema Sentinel worker...")
    print(f"  Mode: {'poll every %ss' % args.poll_interval if args.poll_interval else 'drain once'}")
    print()

    try:
        processed = run_worker(poll_interval=args.poll_interval)
        if not args.poll_interval:
            print(f"Processed {processed} audit runs")
        return 0
    except KeyboardInterrupt:
        print("\nWorker stopped by user")
        return 0
    except Exception as e:
        print(f"Worker error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

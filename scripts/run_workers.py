#!/usr/bin/env python3
"""Dev entrypoint for draining the delivery queue.

Usage:
    # Single run of both channels
    python scripts/run_workers.py --once

    # Single run of one channel
    python scripts/run_workers.py --once --channel push

    # Continuous loop (Ctrl+C to stop)
    python scripts/run_workers.py --loop

    # Loop with custom interval
    python scripts/run_workers.py --loop --interval 10

    # Fail stale claims and requeue retryable failures, then exit
    python scripts/run_workers.py --maintenance

Environment variables:
    WORKER_BATCH_SIZE: Items per batch (default: 10)
    WORKER_CONCURRENCY: Parallel sends per batch (default: 4)
    WORKER_MAX_RETRIES: Retry cap per delivery (default: 3)
    WORKER_POLL_INTERVAL_SECONDS: Seconds between cycles (default: 30)
    SEND_TIMEOUT_SECONDS: Seconds allowed per send (default: 10)
"""

import argparse
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from notifier.models.delivery import DeliveryChannel
from notifier.workers import (
    QueueRunner,
    configure_worker_logging,
)


def main() -> int:
    """Main entrypoint for the queue runner."""
    parser = argparse.ArgumentParser(
        description="Drain the email and push delivery queue",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    # Mode selection
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument(
        "--once",
        action="store_true",
        help="Drain one batch per channel and exit",
    )
    mode.add_argument(
        "--loop",
        action="store_true",
        help="Drain continuously in a loop",
    )
    mode.add_argument(
        "--maintenance",
        action="store_true",
        help="Expire stale claims and requeue retryable failures, then exit",
    )

    # Configuration
    parser.add_argument(
        "--channel",
        choices=[c.value for c in DeliveryChannel],
        default=None,
        help="Only drain this channel (once mode only)",
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Seconds between cycles (loop mode only)",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help="Maximum iterations before stopping (loop mode only)",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Items to claim per batch",
    )

    # Logging
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Reduce logging to warnings only",
    )

    args = parser.parse_args()

    # Configure logging
    if args.verbose:
        configure_worker_logging(logging.DEBUG)
    elif args.quiet:
        configure_worker_logging(logging.WARNING)
    else:
        configure_worker_logging(logging.INFO)

    logger = logging.getLogger(__name__)
    runner = QueueRunner(batch_size=args.batch_size)

    try:
        if args.maintenance:
            counts = runner.run_maintenance()
            print(f"Expired claims: {counts['expired']}")
            print(f"Requeued: {counts['requeued']}")
            return 0

        if args.once and args.channel:
            channel = DeliveryChannel(args.channel)
            logger.info(f"Draining {channel.value} queue once...")
            worker_result = runner.run_channel(channel)
            response = worker_result.to_response()
            print(f"\n--- {worker_result.worker_name} ---")
            print(f"Processed: {response['processed']}")
            print(f"Sent: {response['sent']}")
            print(f"Failed: {response['failed']}")
            return 0 if not worker_result.errors else 1

        if args.once:
            logger.info("Draining queue once...")
            result = runner.run_once()

            # Print summary
            print("\n--- Queue Run Summary ---")
            print(f"Channels run: {result.workers_run}")
            print(f"Total processed: {result.total_processed}")
            print(f"Total sent: {result.total_sent}")
            print(f"Total failed: {result.total_failed}")

            if result.errors:
                print(f"Errors: {len(result.errors)}")
                for err in result.errors:
                    print(f"  - {err}")

            for channel, worker_result in result.worker_results.items():
                print(f"\n{channel.value}:")
                print(f"  Status: {worker_result.status.value}")
                print(f"  Sent: {worker_result.sent_count}")
                print(f"  Failed: {worker_result.failed_count}")

            return 0 if not result.errors else 1

        logger.info("Starting queue loop (Ctrl+C to stop)...")
        runner.run_loop(
            interval_seconds=args.interval,
            max_iterations=args.max_iterations,
        )
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.error(f"Queue runner failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
# =============================================================================
# scripts/start_worker.py - Celery Worker Entry Point
# =============================================================================
# Starts a Celery worker to process background tasks.
#
# Usage:
#   # Start worker (development), with the beat scheduler embedded
#   python scripts/start_worker.py --beat
#
#   # Or use Celery CLI directly
#   celery -A workers.celery_app worker --loglevel=info -Q default,maintenance
#
# Prerequisites:
#   - Redis must be running (REDIS_URL)
#   - Environment variables must be set (.env file)
# =============================================================================

import argparse
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from workers.celery_app import celery_app


def main():
    """Start the Celery worker."""
    parser = argparse.ArgumentParser(description="Start the flight school Celery worker")
    parser.add_argument("--concurrency", type=int, default=2, help="Worker processes")
    parser.add_argument(
        "--beat",
        action="store_true",
        help="Also run the periodic scheduler (use in exactly one worker)",
    )
    args = parser.parse_args()

    print("=" * 60)
    print("Flight School Celery Worker")
    print("=" * 60)
    print()
    print("Starting worker...")
    print("Press Ctrl+C to stop")
    print()

    argv = [
        "worker",
        "--loglevel=info",
        f"--concurrency={args.concurrency}",
        "--queues=default,maintenance",
    ]
    if args.beat:
        argv.append("--beat")

    celery_app.worker_main(argv)


if __name__ == "__main__":
    main()

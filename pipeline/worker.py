#!/usr/bin/env python3
"""
RQ Worker for queued pipeline deliveries.

Runs the rq scheduler alongside the worker so delayed jobs
(``enqueue_in``) are moved onto the queue when due.

Usage:
    python -m pipeline.worker
    python -m pipeline.worker --burst
    python -m pipeline.worker --verbose
"""

import sys
import argparse
import logging
from typing import List, Optional

from redis import Redis
from rq import Worker

from core.config_loader import get_config

logger = logging.getLogger(__name__)


def start_worker(burst: bool = False, queues: Optional[List[str]] = None):
    """Start the RQ worker with its scheduler."""
    config = get_config()
    redis_url = config.redis.url

    if queues is None:
        queues = [config.queue.name]

    logger.info("Starting RQ Worker")
    logger.info(f"Queues: {', '.join(queues)}")
    logger.info(f"Burst mode: {burst}")

    try:
        redis_conn = Redis.from_url(redis_url)
        redis_conn.ping()
        logger.info("Connected to Redis")

        worker = Worker(queues, connection=redis_conn)

        if burst:
            logger.info("Running in burst mode...")
            worker.work(burst=True, with_scheduler=True)
        else:
            logger.info("Worker started. Press Ctrl+C to stop.")
            worker.work(with_scheduler=True)

    except KeyboardInterrupt:
        logger.info("Worker stopped")
    except Exception as e:
        logger.error(f"Worker error: {e}")
        sys.exit(1)


def main():
    parser = argparse.ArgumentParser(description='Sourcing pipeline queue worker')
    parser.add_argument('--burst', action='store_true', help='Process all and exit')
    parser.add_argument('--queues', nargs='+', default=None)
    parser.add_argument('--verbose', action='store_true')

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    start_worker(burst=args.burst, queues=args.queues)


if __name__ == '__main__':
    main()

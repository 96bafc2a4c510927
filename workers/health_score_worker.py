#!/usr/bin/env python3
"""
ClientPulse - Health Score Worker

Background worker process that keeps every client's health score current.

Registers the repeating FullRecompute sweep (replacing any earlier
registration) and then either:
- interval: runs the sweep on an in-process timer until SIGTERM/SIGINT
- rq: runs an rq worker (with its scheduler) on the health score queue

Usage:
    python3 workers/health_score_worker.py [--scheduler interval|rq] [--once]

Configuration (environment variables):
    HEALTH_SCORE_INTERVAL_SECONDS: Interval between sweeps (default: 600)
    HEALTH_SCORE_QUEUE: rq queue name (default: health-scores)
    SCHEDULER_BACKEND: interval or rq (default: interval)
    LOG_LEVEL: Logging level (default: INFO)
"""

import argparse
import json
import os
import sys
import time
import logging
import signal

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from redis import Redis
from rq import Worker

from clientpulse.config import get_config
from clientpulse.health.scheduler import IntervalScheduler, RQScheduler
from clientpulse.health.service import build_health_service

app_config = get_config()

# Set up logging
logging.basicConfig(
    level=getattr(logging, app_config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger('health_score_worker')


class HealthScoreWorker:
    """
    In-process health score worker.

    The sweep runs on the scheduler's timer thread; this loop only waits
    for a shutdown signal.
    """

    def __init__(self, interval_seconds: int):
        self.running = True
        self.interval_seconds = interval_seconds
        self.scheduler = IntervalScheduler(build_health_service(app_config), run_immediately=True)

        # Set up signal handlers for graceful shutdown
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals gracefully"""
        logger.info(f"Received signal {signum}, shutting down...")
        self.running = False

    def run(self):
        """Main worker loop"""
        logger.info("Health score worker started")
        logger.info(f"Sweep interval: {self.interval_seconds} seconds")

        self.scheduler.register_full_recompute(self.interval_seconds)

        while self.running:
            time.sleep(1)

        # Stops the sweep before its next client; applied updates stay committed
        self.scheduler.shutdown()

        result = self.scheduler.last_result
        if result is not None:
            logger.info(f"Last sweep: {result.updated}/{result.total} updated")
        logger.info("Health score worker stopped")


def run_rq_worker(interval_seconds: int):
    """Register the sweep on the rq queue and process it"""
    logger.info(f"Connecting to Redis at {app_config.REDIS_URL}")
    redis_conn = Redis.from_url(app_config.REDIS_URL)

    # Test connection
    try:
        redis_conn.ping()
        logger.info("Redis connection successful")
    except Exception as e:
        logger.error(f"Redis connection failed: {e}")
        sys.exit(1)

    scheduler = RQScheduler(redis_conn, app_config.HEALTH_SCORE_QUEUE)
    scheduler.register_full_recompute(interval_seconds)

    worker = Worker(
        [scheduler.queue],
        connection=redis_conn,
        name=f"health-score-worker-{os.getpid()}",
    )
    logger.info(f"Starting worker for queue: {app_config.HEALTH_SCORE_QUEUE}")
    worker.work(with_scheduler=True)


def main(argv=None):
    parser = argparse.ArgumentParser(description='ClientPulse health score worker')
    parser.add_argument('--scheduler', choices=['interval', 'rq'],
                        default=app_config.SCHEDULER_BACKEND,
                        help='Where the repeating sweep runs')
    parser.add_argument('--interval', type=int,
                        default=app_config.HEALTH_SCORE_INTERVAL_SECONDS,
                        help='Seconds between sweeps')
    parser.add_argument('--once', action='store_true',
                        help='Run a single sweep and exit')
    args = parser.parse_args(argv)

    if args.once:
        result = build_health_service(app_config).recompute_all()
        print(json.dumps(result.to_dict()))
        return 1 if result.failures and not result.updated else 0

    if args.scheduler == 'rq':
        run_rq_worker(args.interval)
    else:
        HealthScoreWorker(args.interval).run()
    return 0


if __name__ == '__main__':
    sys.exit(main())

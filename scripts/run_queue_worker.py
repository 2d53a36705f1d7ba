#!/usr/bin/env python3
"""
Queue Worker — drains the durable job queue on an interval.

Usage:
    python scripts/run_queue_worker.py
    python scripts/run_queue_worker.py --batch-size 25 --interval 10

    # One drain and exit (what a cron job would do):
    python scripts/run_queue_worker.py --once
"""
import asyncio
import os
import signal
import sys
import argparse

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

import structlog

logger = structlog.get_logger()


async def run(batch_size: int = None, interval: float = None, once: bool = False) -> int:
    from config.log_setup import configure_logging
    from config.settings import load_settings
    from core.container import build_services
    from core.errors import ConfigurationError
    from job_queue.worker import QueueWorker

    settings = load_settings()
    configure_logging(settings.debug)

    try:
        services = build_services(settings)
    except ConfigurationError as e:
        logger.error("queue_worker_misconfigured", error=str(e))
        return 1

    await services.job_queue.connect()
    worker = QueueWorker(
        services.job_queue,
        batch_size=batch_size or settings.queue.batch_size,
        interval_seconds=interval or settings.queue.drain_interval_seconds,
    )

    try:
        if once:
            result = await worker.run_once()
            print(f"Processed {result.processed} jobs, {result.failed} failed")
            return 0

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        await worker.start_background()
        await stop.wait()
        await worker.stop()
        return 0
    finally:
        await services.close()


def main():
    parser = argparse.ArgumentParser(description="Durable job queue worker")
    parser.add_argument("--batch-size", type=int, help="Jobs per drain (default: queue.batch_size)")
    parser.add_argument("--interval", type=float, help="Seconds between drains")
    parser.add_argument("--once", action="store_true", help="Drain one batch and exit")
    args = parser.parse_args()

    sys.exit(asyncio.run(run(args.batch_size, args.interval, args.once)))


if __name__ == "__main__":
    main()

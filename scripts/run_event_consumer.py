#!/usr/bin/env python3
"""
Event Consumer — subscribes one handler per event type and runs until signalled.

Usage:
    python scripts/run_event_consumer.py

    # Different settings file:
    CHECKOUT_PIPELINE_CONFIG=/etc/pipeline.yaml python scripts/run_event_consumer.py

Exits 0 after SIGINT/SIGTERM/SIGQUIT, 1 when startup fails or an unhandled
error forces shutdown.
"""
import asyncio
import os
import sys

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

import structlog

logger = structlog.get_logger()


async def run() -> int:
    from config.log_setup import configure_logging
    from config.settings import load_settings
    from core.container import build_broker, build_event_consumer, build_invoice_service, build_mailer
    from core.errors import ConfigurationError

    settings = load_settings()
    configure_logging(settings.debug)

    try:
        mailer = build_mailer(settings)
        invoices = build_invoice_service(settings, mailer)
        broker = build_broker(settings)
    except ConfigurationError as e:
        logger.error("event_consumer_misconfigured", error=str(e))
        return 1

    consumer = build_event_consumer(settings, broker, mailer, invoices)
    try:
        await consumer.start()
    except Exception as e:
        logger.error("event_consumer_start_failed", error=str(e))
        return 1

    consumer.install_signal_handlers()
    logger.info("event_consumer_ready", status=consumer.status())
    try:
        return await consumer.run_forever()
    finally:
        for closable in (invoices.renderer, invoices.storage, invoices.orders, mailer.transport):
            await closable.close()


def main():
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Sender Process
Drains the dispatch queue and delivers web push notifications. Run as many
processes as needed: they compete for messages on the same queue.

    python -m reminder_service.workers.sender_process
"""

import logging
import sys
import threading

from dotenv import load_dotenv
load_dotenv()

from prometheus_client import start_http_server

from reminder_service.core.config import settings
from reminder_service.db.session import init_db
from reminder_service.reminders.errors import TransportError
from reminder_service.reminders.push import WebPushProvider
from reminder_service.reminders.sender import SenderPool
from reminder_service.workers.dispatcher_process import configure_logging, install_signal_handlers

logger = logging.getLogger(__name__)


def main() -> int:
    """Main entry point for the sender process"""
    configure_logging("sender.log")
    logger.info("🚀 Starting reminder sender")

    if settings.METRICS_ENABLED:
        start_http_server(settings.METRICS_PORT)
        logger.info(f"📊 Metrics exposed on port {settings.METRICS_PORT}")

    init_db()
    pool = SenderPool(WebPushProvider())
    try:
        pool.start()
    except TransportError as e:
        logger.error(f"❌ Could not connect to the dispatch queue: {e.message}")
        return 1

    stop_event = threading.Event()
    install_signal_handlers(stop_event)
    stop_event.wait()

    try:
        pool.stop()
    except TransportError as e:
        logger.error(f"❌ Could not release the dispatch queue: {e.message}")
        return 1
    finally:
        logger.info("👋 Sender terminated")
    return 0


if __name__ == "__main__":
    sys.exit(main())

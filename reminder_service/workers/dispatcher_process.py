#!/usr/bin/env python3
"""
Dispatcher Process
Scans for due reminders on a fixed interval and fans them out to the dispatch queue.

    python -m reminder_service.workers.dispatcher_process
"""

import logging
import signal
import sys
import threading

# Load environment variables from .env file before importing app modules
from dotenv import load_dotenv
load_dotenv()

from prometheus_client import start_http_server

from reminder_service.core.config import settings
from reminder_service.db.session import init_db
from reminder_service.reminders.dispatcher import Dispatcher, DispatcherService
from reminder_service.reminders.errors import TransportError
from reminder_service.reminders.queue import QueueTransport

logger = logging.getLogger(__name__)


def configure_logging(log_file: str) -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stdout)
        ]
    )


def install_signal_handlers(stop_event: threading.Event) -> None:
    def _request_stop(signum, frame):
        logger.info(f"🛑 Received signal {signum}, shutting down")
        stop_event.set()

    signal.signal(signal.SIGTERM, _request_stop)
    signal.signal(signal.SIGINT, _request_stop)


def main() -> int:
    """Main entry point for the dispatcher process"""
    configure_logging("dispatcher.log")
    logger.info("🚀 Starting reminder dispatcher")

    if settings.METRICS_ENABLED:
        start_http_server(settings.METRICS_PORT)
        logger.info(f"📊 Metrics exposed on port {settings.METRICS_PORT}")

    init_db()
    service = DispatcherService(Dispatcher(QueueTransport()))
    try:
        service.start()
    except TransportError as e:
        logger.error(f"❌ Could not bind the dispatch queue: {e.message}")
        return 1

    stop_event = threading.Event()
    install_signal_handlers(stop_event)
    stop_event.wait()

    try:
        service.stop()
    except TransportError as e:
        logger.error(f"❌ Could not release the dispatch queue: {e.message}")
        return 1
    finally:
        logger.info("👋 Dispatcher terminated")
    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Run a single notification queue tick.

Meant for hosts that schedule delivery with cron instead of running the
in-process queue worker.

Usage:
    python scripts/process_queue.py
"""

import asyncio
import sys

from reminder_engine.config import settings
from reminder_engine.core.firebase import initialize_firebase
from reminder_engine.core.redis_client import TickLock, close_redis_connection, get_redis_client
from reminder_engine.database import AsyncSessionLocal, engine
from reminder_engine.middleware.logging import configure_logging
from reminder_engine.services.notification_service import validate_notification_config
from reminder_engine.services.providers import build_provider_registry
from reminder_engine.services.queue_worker import QueueWorker


async def process_queue() -> int:
    """Process one batch of due notifications and print the counts."""
    configure_logging()
    if settings.is_live_delivery:
        initialize_firebase(settings.firebase_credentials_path, settings.firebase_config_json)
    registry = build_provider_registry(settings)
    validate_notification_config(settings, registry)

    lock = None
    if settings.queue_use_redis_lock:
        lock = TickLock(get_redis_client(), settings.queue_lock_key)

    worker = QueueWorker(AsyncSessionLocal, registry, settings, lock=lock)
    try:
        result = await worker.run_once()
    finally:
        await engine.dispose()
        close_redis_connection()

    if result is None:
        print("Another process is running a queue tick, skipped.")
        return 0

    print(
        f"✓ Processed {result.processed} notifications "
        f"({result.successful} sent, {result.failed} failed)"
    )
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(process_queue()))

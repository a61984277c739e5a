"""Periodic worker that drains the notification queue."""

import asyncio

import structlog
from prometheus_client import Counter
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reminder_engine.config import Settings
from reminder_engine.core.clock import Clock, utcnow
from reminder_engine.core.redis_client import TickLock
from reminder_engine.schemas.notifications import QueueProcessingResult
from reminder_engine.services.notification_service import NotificationService
from reminder_engine.services.providers import ProviderRegistry

logger = structlog.get_logger(__name__)

QUEUE_TICKS = Counter(
    "notification_queue_ticks_total",
    "Notification queue ticks by outcome",
    ["outcome"],
)
QUEUE_NOTIFICATIONS = Counter(
    "notification_queue_notifications_total",
    "Notifications attempted by the queue worker, by result",
    ["result"],
)


class QueueWorker:
    """
    Runs ``process_notification_queue`` on a fixed interval.

    The host owns the lifecycle: ``start()`` spawns the loop on the running
    event loop and ``stop()`` lets the current tick finish before returning.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: ProviderRegistry,
        config: Settings,
        lock: TickLock | None = None,
        clock: Clock = utcnow,
    ):
        """Initialize worker with a session factory and delivery providers."""
        self.session_factory = session_factory
        self.registry = registry
        self.config = config
        self.lock = lock
        self.clock = clock
        self.interval = config.queue_interval_seconds
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        """Whether the worker loop is active."""
        return self._task is not None and not self._task.done()

    async def run_once(self) -> QueueProcessingResult | None:
        """
        Process one batch of due notifications.

        Returns:
            Batch counts, or None when another process holds the tick lock
        """
        lock_token = None
        if self.lock is not None:
            # Redis calls block, keep them off the event loop
            lock_token = await asyncio.to_thread(
                self.lock.acquire, self.config.claim_lease_seconds
            )
            if lock_token is None:
                QUEUE_TICKS.labels(outcome="skipped").inc()
                logger.info("notification_queue_tick_skipped", reason="lock_held")
                return None

        try:
            async with self.session_factory() as session:
                service = NotificationService(
                    session,
                    registry=self.registry,
                    config=self.config,
                    clock=self.clock,
                )
                result = await service.process_notification_queue()
        finally:
            if lock_token is not None:
                await asyncio.to_thread(self.lock.release, lock_token)

        QUEUE_TICKS.labels(outcome="completed").inc()
        QUEUE_NOTIFICATIONS.labels(result="successful").inc(result.successful)
        QUEUE_NOTIFICATIONS.labels(result="failed").inc(result.failed)
        logger.info(
            "notification_queue_tick_completed",
            processed=result.processed,
            successful=result.successful,
            failed=result.failed,
        )
        return result

    async def _run(self) -> None:
        logger.info("queue_worker_started", interval_seconds=self.interval)
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                # Infrastructure errors are retried by the next tick
                QUEUE_TICKS.labels(outcome="error").inc()
                logger.error("notification_queue_tick_failed", error=str(e))

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except TimeoutError:
                pass
        logger.info("queue_worker_stopped")

    def start(self) -> None:
        """Start the worker loop on the running event loop."""
        if self.running:
            raise RuntimeError("Queue worker is already running")
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="notification-queue-worker")

    async def stop(self) -> None:
        """Signal the loop to stop and wait for the current tick to finish."""
        if self._task is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None

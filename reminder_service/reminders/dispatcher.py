"""
Due-reminder scanning and fan-out.

A scan picks every WAITING reminder whose due time has passed, resolves the
devices of all its recipients and enqueues one dispatch message per device.
The reminder is the retry unit: if resolving or enqueuing fails it stays
WAITING and the next scan handles it again from scratch.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from reminder_service.core.config import settings
from reminder_service.db.session import SessionLocal, session_scope
from reminder_service.utils.timestamps import now_ms
from . import repository
from .metrics import (
    scheduler_enqueued_total,
    scheduler_no_subscription_total,
    scheduler_reminder_failures_total,
    scheduler_scans_total,
    scheduler_skipped_ticks_total,
)
from .queue import QueueTransport
from .schemas import DispatchMessage, ReminderPayload, SubscriptionKeys, SubscriptionPayload
from .status import ReminderStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DueReminder:
    """Detached snapshot of a due reminder, safe to hand to a worker thread."""
    payload: ReminderPayload
    recipients: Tuple[int, ...]
    revision: int = 0

    @property
    def id(self) -> int:
        return self.payload.id


@dataclass
class ScanReport:
    now: int
    scanned: int = 0
    messages: int = 0
    pending: List[int] = field(default_factory=list)
    no_subscription: List[int] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class Dispatcher:
    def __init__(
        self,
        transport: QueueTransport,
        session_factory: Callable[[], Session] = SessionLocal,
        max_workers: Optional[int] = None,
        batch_size: Optional[int] = None,
    ):
        self.transport = transport
        self.session_factory = session_factory
        self.max_workers = max_workers or settings.SCAN_MAX_WORKERS
        self.batch_size = batch_size if batch_size is not None else settings.SCAN_BATCH_SIZE

    def run_scan(self, now: Optional[int] = None) -> ScanReport:
        """Handle every reminder due at ``now``.

        Failures are isolated per reminder and collected in the report; only a
        failure to query the due reminders themselves is raised.
        """
        if now is None:
            now = now_ms()
        logger.debug(f"[Dispatcher] Polling reminders that are due at {now}")

        with session_scope(self.session_factory) as db:
            due = [self._snapshot(reminder) for reminder in repository.find_due_reminders(db, now, limit=self.batch_size)]
        scheduler_scans_total.inc()

        report = ScanReport(now=now, scanned=len(due))
        if not due:
            return report

        logger.info(f"[Dispatcher] Found {len(due)} due reminder(s)")
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(due)), thread_name_prefix="dispatch") as pool:
            futures = {pool.submit(self.dispatch_reminder, reminder): reminder for reminder in due}
            for future in as_completed(futures):
                reminder = futures[future]
                try:
                    status, messages = future.result()
                except Exception as e:
                    logger.exception(f"[Dispatcher] Reminder #{reminder.id} left waiting: {e!r}")
                    scheduler_reminder_failures_total.inc()
                    report.failed[reminder.id] = repr(e)
                    continue
                report.messages += messages
                if status is ReminderStatus.NO_SUBSCRIPTION_WHEN_DUE:
                    report.no_subscription.append(reminder.id)
                else:
                    report.pending.append(reminder.id)

        logger.info(
            f"[Dispatcher] Scan at {now}: {len(report.pending)} pending, "
            f"{len(report.no_subscription)} without subscription, {len(report.failed)} failed, "
            f"{report.messages} message(s) enqueued"
        )
        return report

    def dispatch_reminder(self, reminder: DueReminder) -> Tuple[ReminderStatus, int]:
        """Fan one reminder out to the queue. Returns the new status and the message count."""
        subscriptions = self.resolve_subscriptions(reminder)

        if not subscriptions:
            with session_scope(self.session_factory) as db:
                repository.set_reminder_status(
                    db, reminder.id, ReminderStatus.NO_SUBSCRIPTION_WHEN_DUE, revision=reminder.revision
                )
            logger.info(
                f"[Dispatcher] Family {reminder.payload.family!r} has no subscription, "
                f"marking reminder #{reminder.id} as {ReminderStatus.NO_SUBSCRIPTION_WHEN_DUE.value!r}"
            )
            scheduler_no_subscription_total.inc()
            return ReminderStatus.NO_SUBSCRIPTION_WHEN_DUE, 0

        fanout = len(subscriptions)
        for subscription in subscriptions:
            message = DispatchMessage(
                reminder=reminder.payload,
                subscription=subscription,
                fanout=fanout,
                revision=reminder.revision,
            )
            self.transport.send(message.model_dump())
            scheduler_enqueued_total.inc()

        with session_scope(self.session_factory) as db:
            repository.set_reminder_status(db, reminder.id, ReminderStatus.PENDING, revision=reminder.revision)
            # Senders may have confirmed every message before PENDING was written
            repository.settle_reminder(db, reminder.id, reminder.revision, fanout)
        return ReminderStatus.PENDING, fanout

    def resolve_subscriptions(self, reminder: DueReminder) -> List[SubscriptionPayload]:
        """Devices of every recipient, deduplicated by endpoint, in recipient order."""
        resolved: Dict[str, SubscriptionPayload] = {}
        with session_scope(self.session_factory) as db:
            for recipient_id in reminder.recipients:
                for subscription in repository.find_subscriptions_for_recipient(db, recipient_id):
                    if subscription.endpoint in resolved:
                        continue
                    resolved[subscription.endpoint] = SubscriptionPayload(
                        endpoint=subscription.endpoint,
                        keys=SubscriptionKeys(p256dh=subscription.p256dh, auth=subscription.auth),
                    )
        return list(resolved.values())

    @staticmethod
    def _snapshot(reminder) -> DueReminder:
        return DueReminder(
            payload=ReminderPayload(
                id=reminder.id,
                action=reminder.action,
                due=reminder.due,
                family=reminder.family,
            ),
            recipients=tuple(reminder.recipient_ids),
            revision=reminder.revision or 0,
        )


class DispatcherService:
    """Owns the scan timer and the transport binding of a dispatcher process."""

    def __init__(self, dispatcher: Dispatcher, interval_seconds: Optional[float] = None):
        self.dispatcher = dispatcher
        self.interval_seconds = interval_seconds if interval_seconds is not None else settings.scan_interval_seconds
        self._scan_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Bind the transport and start ticking. A bind failure is raised to the caller."""
        if self.running:
            return
        self.dispatcher.transport.bind()
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="dispatcher-scheduler", daemon=True)
        self._thread.start()
        logger.info(f"[Dispatcher] Scanning every {self.interval_seconds:.1f}s")

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            self.tick()

    def tick(self, now: Optional[int] = None) -> Optional[ScanReport]:
        """Run one scan, unless the previous one is still in progress."""
        if not self._scan_lock.acquire(blocking=False):
            logger.warning("[Dispatcher] Previous scan still running, skipping this tick")
            scheduler_skipped_ticks_total.inc()
            return None
        try:
            return self.dispatcher.run_scan(now)
        except Exception as e:
            logger.exception(f"[Dispatcher] Scan failed: {e!r}")
            return None
        finally:
            self._scan_lock.release()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop ticking, let the current scan finish, then release the transport."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        with self._scan_lock:
            self.dispatcher.transport.unbind()
        logger.info("[Dispatcher] Stopped")

"""
Queue consumer that delivers web pushes.

Each message is attempted exactly once: the outcome is recorded as a delivery
attempt and the reminder is settled from the recorded outcomes. A failure for
one device never blocks the other messages.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from reminder_service.core.config import settings
from reminder_service.db.session import SessionLocal, session_scope
from . import repository
from .errors import DeliveryError, SubscriptionGoneError, TransportError
from .metrics import (
    reminders_dispatch_failed_total,
    reminders_dispatch_success_total,
    subscriptions_removed_total,
)
from .push import PushProvider
from .queue import QueueTransport
from .schemas import DispatchMessage
from .status import ReminderStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryOutcome:
    reminder_id: Optional[int]
    endpoint: Optional[str]
    delivered: bool
    error: Optional[str] = None
    status: Optional[ReminderStatus] = None  # terminal status applied while settling, if any


class Sender:
    def __init__(
        self,
        transport: QueueTransport,
        provider: PushProvider,
        session_factory: Callable[[], Session] = SessionLocal,
        poll_timeout: Optional[float] = None,
    ):
        self.transport = transport
        self.provider = provider
        self.session_factory = session_factory
        self.poll_timeout = poll_timeout if poll_timeout is not None else settings.QUEUE_POLL_TIMEOUT

    def handle(self, body: Dict[str, Any]) -> DeliveryOutcome:
        try:
            message = DispatchMessage.model_validate(body)
        except ValidationError as e:
            logger.error(f"[Sender] Dropping malformed message: {e}")
            reminders_dispatch_failed_total.inc()
            return DeliveryOutcome(reminder_id=None, endpoint=None, delivered=False, error=str(e))

        reminder = message.reminder
        endpoint = message.subscription.endpoint
        error: Optional[str] = None
        try:
            self.provider.send(message.subscription, reminder)
        except SubscriptionGoneError as e:
            error = e.message
            logger.warning(f"[Sender] Reminder #{reminder.id}: endpoint gone, removing subscription {endpoint[:40]}...")
            self._forget_subscription(endpoint)
        except DeliveryError as e:
            error = e.message
            logger.error(f"[Sender] Reminder #{reminder.id}: delivery failed for {endpoint[:40]}...: {error}")
        except Exception as e:
            error = repr(e)
            logger.exception(f"[Sender] Reminder #{reminder.id}: push provider crashed: {error}")

        delivered = error is None
        if delivered:
            reminders_dispatch_success_total.inc()
        else:
            reminders_dispatch_failed_total.inc()

        with session_scope(self.session_factory) as db:
            repository.record_delivery_attempt(
                db,
                reminder_id=reminder.id,
                due=reminder.due,
                endpoint=endpoint,
                succeeded=delivered,
                error=error,
                revision=message.revision,
            )
            status = repository.settle_reminder(db, reminder.id, message.revision, message.fanout)
        return DeliveryOutcome(
            reminder_id=reminder.id,
            endpoint=endpoint,
            delivered=delivered,
            error=error,
            status=status,
        )

    def _forget_subscription(self, endpoint: str) -> None:
        try:
            with session_scope(self.session_factory) as db:
                if repository.delete_subscription_by_endpoint(db, endpoint):
                    subscriptions_removed_total.inc()
        except Exception as e:
            logger.exception(f"[Sender] Could not remove expired subscription: {e!r}")

    def run(self, stop_event: threading.Event) -> None:
        """Consume until ``stop_event`` is set; no message error escapes the loop."""
        logger.info(f"[Sender] Consuming from {self.transport.queue.name}")
        while not stop_event.is_set():
            try:
                body = self.transport.receive(timeout=self.poll_timeout)
            except TransportError as e:
                logger.error(f"[Sender] Receive failed: {e.message}")
                stop_event.wait(self.poll_timeout)
                continue
            if body is None:
                continue
            try:
                self.handle(body)
            except Exception as e:
                logger.exception(f"[Sender] Failed to process message: {e!r}")
        logger.info("[Sender] Consumer stopped")


class SenderPool:
    """Competing consumers on the dispatch queue, one connection each."""

    def __init__(
        self,
        provider: PushProvider,
        transport_factory: Callable[[], QueueTransport] = QueueTransport,
        session_factory: Callable[[], Session] = SessionLocal,
        concurrency: Optional[int] = None,
    ):
        self.provider = provider
        self.transport_factory = transport_factory
        self.session_factory = session_factory
        self.concurrency = concurrency or settings.SENDER_CONCURRENCY
        self._stop_event = threading.Event()
        self._senders: List[Sender] = []
        self._threads: List[threading.Thread] = []

    def start(self) -> None:
        """Bind every consumer, then start them. A bind failure is raised to the caller."""
        self._stop_event.clear()
        try:
            for _ in range(self.concurrency):
                transport = self.transport_factory()
                transport.bind()
                self._senders.append(Sender(transport, self.provider, self.session_factory))
        except TransportError:
            self._release()
            raise
        for index, sender in enumerate(self._senders):
            thread = threading.Thread(target=sender.run, args=(self._stop_event,), name=f"sender-{index}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info(f"[Sender] Started {len(self._threads)} consumer(s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        self._release()

    def _release(self) -> None:
        errors: List[TransportError] = []
        for sender in self._senders:
            try:
                sender.transport.unbind()
            except TransportError as e:
                logger.error(f"[Sender] {e.message}")
                errors.append(e)
        self._senders = []
        if errors:
            raise errors[0]

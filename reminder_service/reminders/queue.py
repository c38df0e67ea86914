"""
Push/pull message channel between the dispatcher and the sender processes.

Messages are transient JSON documents on a non-durable queue. Consumers take
them with ``no_ack`` so the broker forgets a message as soon as one consumer
received it: delivery is at-most-once, unordered across consumers, and the
publisher never learns whether anyone accepted it.
"""
import logging
import threading
from queue import Empty
from typing import Any, Dict, Optional

from kombu import Connection, Exchange, Producer, Queue

from reminder_service.core.config import settings
from .errors import TransportError

logger = logging.getLogger(__name__)


class QueueTransport:
    def __init__(
        self,
        url: Optional[str] = None,
        queue_name: Optional[str] = None,
        exchange_name: Optional[str] = None,
        routing_key: Optional[str] = None,
        connect_timeout: Optional[float] = None,
        connect_retries: Optional[int] = None,
        poll_timeout: Optional[float] = None,
    ):
        self.url = url or settings.QUEUE_URL
        self.routing_key = routing_key or settings.QUEUE_ROUTING_KEY
        self.connect_timeout = connect_timeout if connect_timeout is not None else settings.QUEUE_CONNECT_TIMEOUT
        self.connect_retries = connect_retries if connect_retries is not None else settings.QUEUE_CONNECT_RETRIES
        self.poll_timeout = poll_timeout if poll_timeout is not None else settings.QUEUE_POLL_TIMEOUT

        self.exchange = Exchange(
            exchange_name or settings.QUEUE_EXCHANGE,
            type="direct",
            durable=False,
            delivery_mode="transient",
        )
        self.queue = Queue(
            queue_name or settings.QUEUE_NAME,
            exchange=self.exchange,
            routing_key=self.routing_key,
            durable=False,
            auto_delete=False,
        )

        self._connection: Optional[Connection] = None
        self._channel = None
        self._producer: Optional[Producer] = None
        self._consumer = None
        # kombu connections and channels are not thread-safe
        self._lock = threading.Lock()

    @property
    def is_bound(self) -> bool:
        return self._connection is not None

    def bind(self) -> None:
        """Connect to the broker and declare the exchange, queue and binding."""
        if self.is_bound:
            return
        connection = Connection(self.url, connect_timeout=self.connect_timeout)
        try:
            connection.ensure_connection(
                max_retries=self.connect_retries,
                interval_start=0,
                interval_step=1,
                interval_max=5,
            )
            channel = connection.channel()
            self.queue(channel).declare()
            producer = Producer(channel, exchange=self.exchange, routing_key=self.routing_key, serializer="json")
        except Exception as e:
            connection.release()
            raise TransportError(f"Could not bind queue {self.queue.name!r} at {self._safe_url()}: {e!r}") from e

        self._connection = connection
        self._channel = channel
        self._producer = producer
        logger.info(f"[Queue] Bound to {self._safe_url()} queue={self.queue.name}")

    def unbind(self) -> None:
        """Release the broker connection; safe to call when not bound."""
        with self._lock:
            connection, self._connection = self._connection, None
            if connection is None:
                return
            try:
                if self._consumer is not None:
                    self._consumer.close()
                if self._channel is not None:
                    self._channel.close()
                connection.release()
            except Exception as e:
                raise TransportError(f"Could not unbind queue {self.queue.name!r}: {e!r}") from e
            finally:
                self._consumer = None
                self._channel = None
                self._producer = None
        logger.info(f"[Queue] Unbound from {self._safe_url()}")

    def send(self, message: Dict[str, Any]) -> None:
        """Publish one message, fire-and-forget. Raises TransportError on failure."""
        with self._lock:
            if self._producer is None:
                raise TransportError("Queue transport is not bound")
            try:
                self._producer.publish(
                    message,
                    exchange=self.exchange,
                    routing_key=self.routing_key,
                    declare=[self.queue],
                    retry=False,
                )
            except Exception as e:
                raise TransportError(f"Could not publish to {self.queue.name!r}: {e!r}") from e

    def receive(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Next message body, or None when nothing arrived within ``timeout`` seconds.

        The wait is bounded (``poll_timeout`` when no timeout is given) because it
        holds the connection lock: ``send`` and ``unbind`` on the same transport wait
        for it. Consume from one thread per transport; competing consumers each
        bind their own.
        """
        if timeout is None:
            timeout = self.poll_timeout
        with self._lock:
            if self._connection is None:
                raise TransportError("Queue transport is not bound")
            try:
                if self._consumer is None:
                    self._consumer = self._connection.SimpleQueue(self.queue, no_ack=True, accept=["json"])
                message = self._consumer.get(block=True, timeout=timeout)
            except Empty:
                return None
            except Exception as e:
                raise TransportError(f"Could not receive from {self.queue.name!r}: {e!r}") from e
        return message.payload

    def _safe_url(self) -> str:
        if self._connection is not None:
            return self._connection.as_uri()
        return Connection(self.url).as_uri()

    def __enter__(self) -> "QueueTransport":
        self.bind()
        return self

    def __exit__(self, *exc_info) -> None:
        self.unbind()

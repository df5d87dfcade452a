"""
RabbitMQ event publisher and reliability topology.

Topology (asserted idempotently, safe to run on every start):

- a durable topic exchange carrying ``reminder.created``, ``reminder.due``
  and ``reminder.updated``
- a durable fanout dead-letter exchange bound to one dead-letter queue
- per routing key a primary queue that dead-letters to the DLX once its
  message TTL expires, and a ``.retry`` queue whose TTL hands messages back
  to the main exchange under the original routing key
"""
import logging
import uuid
from typing import Any, Dict, List, Optional

from kombu import Connection, Exchange, Queue
from kombu.pools import producers

from reminder_service.core.config import Settings
from reminder_service.utils.timezone import Clock, utc_now
from .metrics import event_publish_failures_total, events_published_total


logger = logging.getLogger(__name__)

ROUTING_KEY_CREATED = "reminder.created"
ROUTING_KEY_DUE = "reminder.due"
ROUTING_KEY_UPDATED = "reminder.updated"
ROUTING_KEYS = (ROUTING_KEY_CREATED, ROUTING_KEY_DUE, ROUTING_KEY_UPDATED)

EVENT_ROUTING_KEYS = {
    "reminder_created": ROUTING_KEY_CREATED,
    "reminder_due": ROUTING_KEY_DUE,
    "reminder_updated": ROUTING_KEY_UPDATED,
}

RETRY_COUNT_HEADER = "retry-count"


def queue_name_for(routing_key: str) -> str:
    return routing_key.replace(".", "_")


class EventPublisher:
    def __init__(
        self,
        connection: Connection,
        exchange_name: str = "reminders.exchange",
        dlx_name: str = "reminders.dlx",
        dlq_name: str = "reminders.dlq",
        message_ttl_ms: int = 300_000,
        retry_ttl_ms: int = 60_000,
        max_retries: int = 3,
        clock: Clock = utc_now,
    ):
        self.connection = connection
        self.exchange = Exchange(exchange_name, type="topic", durable=True)
        self.dead_letter_exchange = Exchange(dlx_name, type="fanout", durable=True)
        self.dead_letter_queue = Queue(
            dlq_name,
            exchange=self.dead_letter_exchange,
            routing_key="",
            durable=True,
        )
        self.message_ttl_ms = message_ttl_ms
        self.retry_ttl_ms = retry_ttl_ms
        self.max_retries = max_retries
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utc_now) -> "EventPublisher":
        return cls(
            Connection(settings.RABBITMQ_URL, connect_timeout=5),
            exchange_name=settings.RABBITMQ_EXCHANGE,
            dlx_name=settings.RABBITMQ_DEAD_LETTER_EXCHANGE,
            dlq_name=settings.RABBITMQ_DEAD_LETTER_QUEUE,
            message_ttl_ms=settings.RABBITMQ_MESSAGE_TTL_MS,
            retry_ttl_ms=settings.RABBITMQ_RETRY_TTL_MS,
            max_retries=settings.RABBITMQ_MAX_RETRIES,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Topology
    # ------------------------------------------------------------------

    def primary_queue(self, routing_key: str) -> Queue:
        return Queue(
            queue_name_for(routing_key),
            exchange=self.exchange,
            routing_key=routing_key,
            durable=True,
            queue_arguments={
                "x-dead-letter-exchange": self.dead_letter_exchange.name,
                "x-message-ttl": self.message_ttl_ms,
            },
        )

    def retry_queue(self, routing_key: str) -> Queue:
        # Bound to nothing; reached through the default exchange by name
        return Queue(
            f"{queue_name_for(routing_key)}.retry",
            durable=True,
            queue_arguments={
                "x-dead-letter-exchange": self.exchange.name,
                "x-dead-letter-routing-key": routing_key,
                "x-message-ttl": self.retry_ttl_ms,
            },
        )

    def queues(self) -> List[Queue]:
        result = [self.dead_letter_queue]
        for routing_key in ROUTING_KEYS:
            result.append(self.primary_queue(routing_key))
            result.append(self.retry_queue(routing_key))
        return result

    def declare_topology(self) -> None:
        channel = self.connection.default_channel
        self.exchange(channel).declare()
        self.dead_letter_exchange(channel).declare()
        for queue in self.queues():
            queue(channel).declare()
        logger.info(
            "Declared broker topology on exchange %s (dlx=%s)",
            self.exchange.name,
            self.dead_letter_exchange.name,
        )

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(self, routing_key: str, payload: Dict[str, Any]) -> bool:
        """Publish a persistent JSON message. Broker failures are logged and reported as False."""
        message_id = uuid.uuid4().hex
        now = self.clock()
        body = {**payload, "timestamp": now.isoformat(), "messageId": message_id}
        ok = self._send(
            body,
            exchange=self.exchange,
            routing_key=routing_key,
            headers={RETRY_COUNT_HEADER: 0},
            message_id=message_id,
            timestamp=int(now.timestamp()),
        )
        if ok:
            events_published_total.labels(routing_key=routing_key).inc()
        else:
            event_publish_failures_total.labels(routing_key=routing_key).inc()
        return ok

    def publish_reminder_event(self, event_type: str, data: Dict[str, Any]) -> bool:
        routing_key = EVENT_ROUTING_KEYS[event_type]
        return self.publish(routing_key, {"type": event_type, "data": data})

    def retry_or_dead_letter(
        self,
        routing_key: str,
        body: Dict[str, Any],
        headers: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Hand a failed delivery to the retry queue, or to the DLX once retries are spent.

        Consumers call this instead of requeueing; returns ``"retried"`` or
        ``"dead-lettered"``.
        """
        headers = dict(headers or {})
        retry_count = int(headers.get(RETRY_COUNT_HEADER, 0))

        if retry_count >= self.max_retries:
            logger.warning(
                "Dead-lettering message %s on %s after %d retries",
                body.get("messageId"),
                routing_key,
                retry_count,
            )
            self._send(
                body,
                exchange=self.dead_letter_exchange,
                routing_key=routing_key,
                headers=headers,
                raise_errors=True,
            )
            return "dead-lettered"

        headers[RETRY_COUNT_HEADER] = retry_count + 1
        retry_queue = self.retry_queue(routing_key)
        self._send(
            body,
            exchange="",
            routing_key=retry_queue.name,
            headers=headers,
            raise_errors=True,
        )
        return "retried"

    def _send(
        self,
        body: Dict[str, Any],
        exchange,
        routing_key: str,
        headers: Dict[str, Any],
        raise_errors: bool = False,
        **properties,
    ) -> bool:
        try:
            with producers[self.connection].acquire(block=True) as producer:
                producer.publish(
                    body,
                    exchange=exchange,
                    routing_key=routing_key,
                    serializer="json",
                    delivery_mode=2,
                    headers=headers,
                    retry=False,
                    **properties,
                )
            return True
        except Exception as exc:
            if raise_errors:
                raise
            logger.warning("Failed to publish to %s: %s", routing_key, exc)
            return False

    def close(self) -> None:
        self.connection.release()

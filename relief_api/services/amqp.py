# SPDX-License-Identifier: Apache-2.0

"""
AMQP relay for broadcast events.

Forwards every event published on the in-process BroadcastChannel to a
fanout exchange so listeners in other processes receive it too. Delivery is
transient and best-effort; a broker outage never fails a mutation.
"""

import asyncio
import json
import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Generator, Optional
from urllib.parse import urlparse

import pika
from opentelemetry import trace
from opentelemetry.propagate import inject
from opentelemetry.trace import Status, StatusCode

from .broadcast import BroadcastChannel, Subscription, WILDCARD

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class AMQPConfig:
    """AMQP configuration settings."""
    url: str
    exchange: str = 'relief.broadcast'
    connection_timeout: int = 30
    heartbeat: int = 600
    blocked_connection_timeout: int = 300
    retry_delay: float = 1.0
    max_retries: int = 3


class AMQPConnectionError(Exception):
    """Raised when AMQP connection fails."""
    pass


class AMQPBroadcastRelay:
    """
    Republishes broadcast events to a fanout exchange.

    The pika client is blocking, so every publish runs in a worker thread.
    Fresh connections are opened per publish and always closed afterwards.
    """

    def __init__(self, config: AMQPConfig, channel: BroadcastChannel):
        self.config = config
        self.channel = channel
        self._connection_params = self._parse_connection_url(config.url)
        self._subscription: Optional[Subscription] = None
        self._task: Optional[asyncio.Task] = None
        self.published = 0
        self.failed = 0

    def _parse_connection_url(self, url: str) -> pika.ConnectionParameters:
        """Parse AMQP URL and create connection parameters."""
        parsed = urlparse(url)

        return pika.ConnectionParameters(
            host=parsed.hostname or 'localhost',
            port=parsed.port or 5672,
            virtual_host=parsed.path.lstrip('/') or '/',
            credentials=pika.PlainCredentials(
                username=parsed.username or 'guest',
                password=parsed.password or 'guest'
            ),
            connection_attempts=self.config.max_retries,
            retry_delay=self.config.retry_delay,
            socket_timeout=self.config.connection_timeout,
            heartbeat=self.config.heartbeat,
            blocked_connection_timeout=self.config.blocked_connection_timeout
        )

    @contextmanager
    def _get_connection(self) -> Generator[Any, None, None]:
        """Open a connection and channel, closing both on exit."""
        connection = None
        amqp_channel = None

        try:
            with tracer.start_as_current_span("amqp.connection.create") as span:
                connection = pika.BlockingConnection(self._connection_params)
                amqp_channel = connection.channel()
                amqp_channel.exchange_declare(
                    exchange=self.config.exchange,
                    exchange_type='fanout',
                    durable=False
                )

                span.set_attributes({
                    "amqp.host": self._connection_params.host,
                    "amqp.port": self._connection_params.port,
                    "amqp.exchange": self.config.exchange
                })

            yield amqp_channel

        except pika.exceptions.AMQPConnectionError as e:
            logger.error(
                "AMQP connection failed",
                extra={
                    "extra_fields": {
                        "error": str(e),
                        "host": self._connection_params.host,
                        "port": self._connection_params.port
                    }
                }
            )
            raise AMQPConnectionError(f"Failed to connect to AMQP broker: {e}") from e

        finally:
            if amqp_channel is not None and not amqp_channel.is_closed:
                try:
                    amqp_channel.close()
                except Exception as e:
                    logger.warning(f"Error closing AMQP channel: {e}")

            if connection is not None and not connection.is_closed:
                try:
                    connection.close()
                except Exception as e:
                    logger.warning(f"Error closing AMQP connection: {e}")

    def _serialize_message(self, event_name: str, payload: Dict[str, Any]) -> str:
        message = {
            "event": event_name,
            "payload": payload,
            "timestamp": time.time()
        }
        return json.dumps(message, default=str, ensure_ascii=False, separators=(',', ':'))

    def publish_event(self, event_name: str, payload: Dict[str, Any]) -> bool:
        """
        Publish one event, blocking. Failures are logged, never raised.

        Returns:
            True if the broker accepted the message
        """
        correlation_id = str(uuid.uuid4())

        with tracer.start_as_current_span("amqp.publish.event") as span:
            span.set_attributes({
                "broadcast.event": event_name,
                "amqp.exchange": self.config.exchange,
                "amqp.correlation_id": correlation_id
            })

            headers: Dict[str, str] = {}
            inject(headers)

            try:
                body = self._serialize_message(event_name, payload)
                with self._get_connection() as amqp_channel:
                    amqp_channel.basic_publish(
                        exchange=self.config.exchange,
                        routing_key=event_name,
                        body=body,
                        properties=pika.BasicProperties(
                            correlation_id=correlation_id,
                            timestamp=int(time.time()),
                            delivery_mode=1,  # transient
                            content_type='application/json',
                            headers=headers
                        )
                    )
            except Exception as e:
                self.failed += 1
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                logger.error(
                    "Broadcast relay publish failed",
                    extra={
                        "extra_fields": {
                            "event": event_name,
                            "exchange": self.config.exchange,
                            "correlation_id": correlation_id,
                            "error": str(e)
                        }
                    }
                )
                return False

            self.published += 1
            logger.debug(
                "Broadcast event relayed",
                extra={
                    "extra_fields": {
                        "event": event_name,
                        "exchange": self.config.exchange,
                        "correlation_id": correlation_id
                    }
                }
            )
            return True

    async def forward(self, event_name: str, payload: Dict[str, Any]) -> bool:
        """Publish without blocking the event loop."""
        return await asyncio.to_thread(self.publish_event, event_name, payload)

    async def _pump(self, subscription: Subscription) -> None:
        async for event_name, payload in subscription:
            await self.forward(event_name, payload)

    def start(self) -> None:
        """Subscribe to every broadcast event and start relaying."""
        if self._task is not None:
            return
        self._subscription = self.channel.subscribe(WILDCARD)
        self._task = asyncio.get_running_loop().create_task(self._pump(self._subscription))
        logger.info(f"Broadcast relay started for exchange {self.config.exchange}")

    async def stop(self) -> None:
        """Stop relaying; events still queued are discarded."""
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Broadcast relay stopped")

    def health_check(self) -> Dict[str, Any]:
        """Attempt a broker connection."""
        try:
            with self._get_connection():
                pass
        except Exception as e:
            logger.warning(
                "AMQP health check failed",
                extra={"extra_fields": {"error": str(e), "host": self._connection_params.host}}
            )
            return {"status": "unhealthy", "message": str(e)}
        return {"status": "healthy", "published": self.published, "failed": self.failed}


def create_broadcast_relay(settings, channel: BroadcastChannel) -> Optional[AMQPBroadcastRelay]:
    """
    Build the relay from settings.

    Returns:
        The relay, or None when ``AMQP_URL`` is empty
    """
    if not settings.amqp_url:
        return None

    config = AMQPConfig(
        url=settings.amqp_url,
        exchange=settings.amqp_broadcast_exchange
    )
    return AMQPBroadcastRelay(config, channel)

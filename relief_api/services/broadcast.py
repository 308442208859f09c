# SPDX-License-Identifier: Apache-2.0

"""
In-process broadcast channel.

Best-effort fan-out to whoever is subscribed at publish time. No replay,
no persistence and no acknowledgments.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from opentelemetry import trace

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

WILDCARD = "*"
DEFAULT_QUEUE_SIZE = 100


class Subscription:
    """
    Handle returned by ``BroadcastChannel.subscribe``.

    Iterate it with ``async for`` to receive ``(event_name, payload)``
    tuples. Used as an async context manager it unsubscribes on exit.
    """

    def __init__(self, channel: "BroadcastChannel", event_name: str, queue_size: int):
        self.channel = channel
        self.event_name = event_name
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.dropped = 0

    def matches(self, event_name: str) -> bool:
        return self.event_name == WILDCARD or self.event_name == event_name

    async def get(self) -> Tuple[str, Dict[str, Any]]:
        """Wait for the next event."""
        return await self.queue.get()

    def get_nowait(self) -> Tuple[str, Dict[str, Any]]:
        return self.queue.get_nowait()

    def pending(self) -> int:
        return self.queue.qsize()

    def close(self) -> None:
        self.channel.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Tuple[str, Dict[str, Any]]:
        return await self.get()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class BroadcastChannel:
    """Named-event publish/subscribe with a ``"*"`` wildcard."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.queue_size = queue_size
        self._subscriptions: List[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, event_name: str = WILDCARD, queue_size: Optional[int] = None) -> Subscription:
        """Register a listener for one event name, or every event with ``"*"``."""
        if not event_name:
            raise ValueError("Event name is required")
        subscription = Subscription(self, event_name, queue_size or self.queue_size)
        self._subscriptions.append(subscription)
        logger.debug(f"Subscribed to {event_name} ({len(self._subscriptions)} subscribers)")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
            logger.debug(f"Unsubscribed from {subscription.event_name}")

    def publish(self, event_name: str, payload: Dict[str, Any]) -> int:
        """
        Deliver an event to every current matching subscriber.

        A subscriber whose queue is full misses the event. Never raises.

        Returns:
            Number of subscribers the event was delivered to
        """
        with tracer.start_as_current_span("broadcast.publish") as span:
            delivered = 0
            for subscription in list(self._subscriptions):
                if not subscription.matches(event_name):
                    continue
                try:
                    subscription.queue.put_nowait((event_name, payload))
                    delivered += 1
                except asyncio.QueueFull:
                    subscription.dropped += 1
                    logger.warning(
                        "Broadcast subscriber queue full, event dropped",
                        extra={"extra_fields": {
                            "event": event_name,
                            "subscription": subscription.event_name,
                            "dropped": subscription.dropped
                        }}
                    )

            span.set_attributes({"broadcast.event": event_name, "broadcast.delivered": delivered})
            logger.debug(f"Published {event_name} to {delivered} subscribers")
            return delivered

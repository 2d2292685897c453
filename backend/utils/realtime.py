"""
In-process fan-out of live sales events to websocket subscribers
"""
from typing import Any, Dict, Set
from datetime import datetime, timezone
import asyncio
import logging

logger = logging.getLogger(__name__)

SALES_CONFIRMED = "sales:confirmed"


class SalesEventHub:
    """Each subscriber gets its own bounded queue; slow subscribers drop events"""

    def __init__(self, max_queue_size: int = 100):
        self._subscribers: Set[asyncio.Queue] = set()
        self._max_queue_size = max_queue_size

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: str, payload: Dict[str, Any]) -> int:
        message = {"event": event, "data": payload}
        delivered = 0
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"Dropping {event} event for a slow subscriber")
        return delivered


sales_events = SalesEventHub()


def publish_sales_confirmed(order_id, amount: float, currency: str, **extra) -> int:
    payload = {
        "orderId": str(order_id),
        "amount": amount,
        "currency": currency,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    payload.update(extra)
    try:
        return sales_events.publish(SALES_CONFIRMED, payload)
    except Exception as e:
        logger.error(f"Failed to publish {SALES_CONFIRMED} for order {order_id}: {e}")
        return 0

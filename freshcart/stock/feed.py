import asyncio
import uuid
from typing import Iterable, Optional, Set
from freshcart.common.logging_setup import get_logger
from freshcart.stock.models import StockChangeEvent

logger = get_logger("freshcart.stock.feed")

_CLOSED = None  # queue sentinel


class StockSubscription:
    """A consumer's view of the feed: a bounded queue of events for the watched products."""

    def __init__(self, feed: "StockChangeFeed", product_ids: Iterable[uuid.UUID], max_queue_size: int):
        self._feed = feed
        self.product_ids: frozenset = frozenset(product_ids)
        self.queue: asyncio.Queue[Optional[StockChangeEvent]] = asyncio.Queue(maxsize=max_queue_size)
        self.closed = False

    def watches(self, product_id: uuid.UUID) -> bool:
        return product_id in self.product_ids

    def _offer(self, item: Optional[StockChangeEvent]):
        # drop the oldest pending event rather than block the publisher;
        # consumers re-read authoritative stock so a dropped event only delays them
        if self.queue.full():
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            logger.warning("stock_feed.subscriber_lagging", extra={"watched": len(self.product_ids)})
        self.queue.put_nowait(item)

    async def get(self) -> Optional[StockChangeEvent]:
        return await self.queue.get()

    def __aiter__(self):
        return self

    async def __anext__(self) -> StockChangeEvent:
        item = await self.queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def close(self):
        self._feed.unsubscribe(self)


class StockChangeFeed:
    """In-process fan-out of product stock changes to subscribers, per product in publish order."""

    def __init__(self, max_queue_size: int = 256):
        self._subscriptions: Set[StockSubscription] = set()
        self.max_queue_size = max_queue_size

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, product_ids: Iterable[uuid.UUID]) -> StockSubscription:
        sub = StockSubscription(self, product_ids, self.max_queue_size)
        self._subscriptions.add(sub)
        logger.debug("stock_feed.subscribed", extra={"watched": len(sub.product_ids)})
        return sub

    def retarget(self, sub: StockSubscription, product_ids: Iterable[uuid.UUID]):
        sub.product_ids = frozenset(product_ids)

    def unsubscribe(self, sub: StockSubscription):
        if sub.closed:
            return
        sub.closed = True
        self._subscriptions.discard(sub)
        sub._offer(_CLOSED)
        logger.debug("stock_feed.unsubscribed")

    def publish(self, event: StockChangeEvent) -> int:
        delivered = 0
        for sub in list(self._subscriptions):
            if sub.watches(event.product_id):
                sub._offer(event)
                delivered += 1
        return delivered

    def close(self):
        for sub in list(self._subscriptions):
            self.unsubscribe(sub)


stock_feed = StockChangeFeed()

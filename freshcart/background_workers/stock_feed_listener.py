import asyncio
from typing import Optional
from pydantic import ValidationError
from redis.exceptions import RedisError
from freshcart.cache._cache import redis_client
from freshcart.cache.utils import deserialize
from freshcart.common.logging_setup import get_logger
from freshcart.config.settings import config_settings
from freshcart.stock.feed import StockChangeFeed, stock_feed
from freshcart.stock.models import StockChangeEvent

logger = get_logger("freshcart.workers.stock_feed")


class StockFeedListener:
    """Fans stock events from the redis channel into this process's StockChangeFeed."""

    def __init__(self, client=redis_client, feed: StockChangeFeed = stock_feed,
                 channel: str = config_settings.STOCK_FEED_CHANNEL, reconnect_delay: float = 1.0):
        self.client = client
        self.feed = feed
        self.channel = channel
        self.reconnect_delay = reconnect_delay
        self._task: Optional[asyncio.Task] = None

    def handle_message(self, data: bytes) -> bool:
        try:
            event = StockChangeEvent.model_validate(deserialize(data))
        except (ValueError, ValidationError) as exc:
            logger.warning("stock_feed.bad_message", extra={"error": str(exc)})
            return False
        self.feed.publish(event)
        return True

    async def _listen(self):
        while True:
            pubsub = self.client.pubsub()
            try:
                await pubsub.subscribe(self.channel)
                logger.info("stock_feed.listening", extra={"channel": self.channel})
                async for message in pubsub.listen():
                    if message.get("type") == "message":
                        self.handle_message(message["data"])
            except RedisError as exc:
                logger.warning("stock_feed.listener_disconnected", extra={"error": str(exc)})
                await asyncio.sleep(self.reconnect_delay)
            finally:
                await pubsub.aclose()

    def start(self):
        if self._task is None:
            self._task = asyncio.create_task(self._listen())

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

from typing import Sequence
from redis.exceptions import RedisError
from freshcart.cache._cache import redis_client
from freshcart.cache.utils import serialize
from freshcart.common.logging_setup import get_logger
from freshcart.config.settings import config_settings
from freshcart.stock.feed import StockChangeFeed, stock_feed
from freshcart.stock.models import StockChangeEvent

logger = get_logger("freshcart.stock.publisher")


async def publish_stock_changes(events: Sequence[StockChangeEvent], *, feed: StockChangeFeed = stock_feed,
                                backend: str = config_settings.STOCK_FEED_BACKEND):
    """Announce committed stock changes. Called after commit; a failure here never undoes the write."""
    if not events:
        return

    if backend == "redis":
        # every process (this one included) receives them back through StockFeedListener
        for ev in events:
            try:
                await redis_client.publish(config_settings.STOCK_FEED_CHANNEL, serialize(ev.model_dump(mode="json")))
            except RedisError as exc:
                logger.warning("stock_feed.publish_failed", extra={"product_id": str(ev.product_id), "error": str(exc)})
        return

    for ev in events:
        feed.publish(ev)

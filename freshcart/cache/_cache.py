import redis.asyncio as redis
from freshcart.config.settings import config_settings

# the client connects lazily on first command
redis_client = redis.Redis(
    host=config_settings.REDIS_HOST, port=config_settings.REDIS_PORT, db=config_settings.REDIS_DB, 
    decode_responses=False)

REDIS_LOCK_TIMEOUT = 5   # seconds

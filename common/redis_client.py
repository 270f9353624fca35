import redis.asyncio as redis
import logging
from . import config

logger = logging.getLogger(__name__)

redis_pool = None


async def get_redis():
    global redis_pool
    if redis_pool is None:
        logger.info(f"Creating Redis connection pool for {config.REDIS_HOST}:{config.REDIS_PORT}")
        redis_pool = redis.ConnectionPool(
            host=config.REDIS_HOST,
            port=config.REDIS_PORT,
            db=config.REDIS_DB,
            decode_responses=True # Decode responses to strings
        )
    return redis.Redis(connection_pool=redis_pool)


async def connect_redis():
    """Returns a connected client, or None when Redis can't be reached at start-up."""
    try:
        r = await get_redis()
        await r.ping()
        logger.info("Connected to Redis")
        return r
    except Exception as e:
        logger.error(f"Redis connection error, dependent features unavailable: {e}")
        return None


async def close_redis():
    global redis_pool
    if redis_pool is not None:
        logger.info("Closing Redis connection pool...")
        await redis_pool.aclose()
        redis_pool = None

from redis.asyncio import ConnectionPool
from redis.asyncio.client import Redis

from video_api.cores.config import settings


pool = ConnectionPool.from_url(settings.REDIS_URL, decode_responses=True)

def get_redis_client() -> Redis:
    return Redis(connection_pool=pool)


async def close_redis_pool():
    await pool.aclose()

import json
import logging
from typing import Any, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from video_api.cores.errors import CacheError

logger = logging.getLogger(__name__)

VIDEO_LIST_PATTERN = "videos:*"


def video_key(video_id: str) -> str:
    return f"video:{video_id}"


class ResultCache:
    """JSON cache over a borrowed Redis handle."""

    def __init__(self, redis: Redis):
        self.redis = redis

    async def get_json(self, key: str) -> Optional[Any]:
        try:
            value = await self.redis.get(key)
        except RedisError as e:
            raise CacheError(f"get {key} failed", cause=e)
        return json.loads(value) if value else None

    async def set_json(self, key: str, value: Any, ttl: int = 3600):
        try:
            await self.redis.setex(key, ttl, json.dumps(value, default=str))
        except RedisError as e:
            raise CacheError(f"set {key} failed", cause=e)

    async def delete(self, key: str) -> int:
        try:
            return await self.redis.delete(key)
        except RedisError as e:
            raise CacheError(f"delete {key} failed", cause=e)

    async def invalidate(self, key_or_pattern: str) -> int:
        """Delete one key, or every key matching a glob pattern."""
        if not any(ch in key_or_pattern for ch in "*?["):
            return await self.delete(key_or_pattern)
        removed = 0
        try:
            batch = []
            async for key in self.redis.scan_iter(match=key_or_pattern, count=500):
                batch.append(key)
                if len(batch) >= 500:
                    removed += await self.redis.delete(*batch)
                    batch = []
            if batch:
                removed += await self.redis.delete(*batch)
        except RedisError as e:
            raise CacheError(f"invalidate {key_or_pattern} failed", cause=e)
        logger.debug(f"Invalidated {removed} keys for {key_or_pattern}")
        return removed

    async def invalidate_video(self, video_id: str):
        await self.invalidate(video_key(video_id))
        await self.invalidate(VIDEO_LIST_PATTERN)

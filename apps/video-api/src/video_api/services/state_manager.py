import json
import logging
from enum import Enum
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from video_api.cores.errors import CacheError

logger = logging.getLogger(__name__)


class IngestionStage(str, Enum):
    RECEIVED = "RECEIVED"
    VALIDATED = "VALIDATED"
    PROBED = "PROBED"
    TRANSCODED = "TRANSCODED"
    THUMBNAILED = "THUMBNAILED"
    PUBLISHED = "PUBLISHED"
    FAILED = "FAILED"
    CLEANED_UP = "CLEANED_UP"


TERMINAL_STAGES = {IngestionStage.PUBLISHED, IngestionStage.CLEANED_UP}


def job_key(upload_id: str) -> str:
    return f"job:{upload_id}"


def progress_channel(upload_id: str) -> str:
    return f"job_progress:{upload_id}"


class StateManager:
    """Mirrors each upload's stage into a Redis hash and pub/sub channel."""

    def __init__(self, redis: Redis, ttl: int = 3600):
        self.redis = redis
        self.ttl = ttl

    async def init_job(self, upload_id: str, user_id: str):
        key = job_key(upload_id)
        data = {
            "upload_id": upload_id,
            "user_id": user_id,
            "status": IngestionStage.RECEIVED.value,
            "progress": 0,
            "message": "Upload received",
        }
        try:
            await self.redis.hset(key, mapping=data)
            await self.redis.expire(key, self.ttl)
        except RedisError as e:
            raise CacheError(f"init job {upload_id} failed", cause=e)

    async def update_progress(self, upload_id: str, stage: IngestionStage, progress: int,
                              message: str = "", **extra: str):
        key = job_key(upload_id)
        data = {
            "status": stage.value,
            "progress": progress,
            "message": message,
            **extra,
        }
        try:
            await self.redis.hset(key, mapping=data)
            await self.redis.publish(progress_channel(upload_id), json.dumps({"upload_id": upload_id, **data}))
        except RedisError as e:
            raise CacheError(f"update job {upload_id} failed", cause=e)
        logger.debug(f"Upload {upload_id}: {stage.value} - {progress}%")

    async def get_job(self, upload_id: str) -> Optional[dict]:
        try:
            data = await self.redis.hgetall(job_key(upload_id))
        except RedisError as e:
            raise CacheError(f"read job {upload_id} failed", cause=e)
        return data or None

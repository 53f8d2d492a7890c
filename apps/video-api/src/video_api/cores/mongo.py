from beanie import init_beanie
from pymongo import AsyncMongoClient

from video_api.cores.config import settings
from video_api.models.video import Video

_client: AsyncMongoClient | None = None


async def init_db():
    global _client
    _client = AsyncMongoClient(settings.MONGODB_URL)

    await init_beanie(
        database=_client[settings.DATABASE_NAME],
        document_models=[
            Video,
        ]
    )


async def close_db():
    global _client
    if _client is not None:
        await _client.close()
        _client = None

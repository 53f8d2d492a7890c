import logging
from typing import Optional, Protocol

from beanie import PydanticObjectId
from bson.errors import InvalidId
from pymongo.errors import PyMongoError

from video_api.cores.errors import StoreError
from video_api.models.video import Video, VideoFields, VideoRecord

logger = logging.getLogger(__name__)


class CatalogStore(Protocol):
    async def insert_video(self, fields: VideoFields) -> str: ...

    async def get_video(self, video_id: str) -> Optional[VideoRecord]: ...

    async def delete_video(self, video_id: str) -> bool: ...

    async def find_by_file_url(self, url: str) -> Optional[VideoRecord]: ...


def _object_id(video_id: str) -> Optional[PydanticObjectId]:
    try:
        return PydanticObjectId(video_id)
    except (InvalidId, TypeError):
        return None


class BeanieCatalogStore:
    async def insert_video(self, fields: VideoFields) -> str:
        video = Video(**fields.model_dump())
        try:
            await video.insert()
        except PyMongoError as e:
            raise StoreError(f"Video insert failed: {e}", stage="publish", cause=e)
        return str(video.id)

    async def get_video(self, video_id: str) -> Optional[VideoRecord]:
        oid = _object_id(video_id)
        if oid is None:
            return None
        try:
            video = await Video.get(oid)
        except PyMongoError as e:
            raise StoreError(f"Video lookup failed: {e}", cause=e)
        return video.to_record() if video else None

    async def delete_video(self, video_id: str) -> bool:
        oid = _object_id(video_id)
        if oid is None:
            return False
        try:
            video = await Video.get(oid)
            if not video:
                return False
            await video.delete()
        except PyMongoError as e:
            raise StoreError(f"Video delete failed: {e}", cause=e)
        return True

    async def find_by_file_url(self, url: str) -> Optional[VideoRecord]:
        try:
            video = await Video.find_one({"$or": [{"video_url": url}, {"thumbnail_url": url}]})
        except PyMongoError as e:
            raise StoreError(f"Video lookup failed: {e}", cause=e)
        return video.to_record() if video else None

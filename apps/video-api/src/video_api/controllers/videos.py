import logging

from fastapi import APIRouter, Depends

from video_api.cores.config import settings
from video_api.cores.errors import CacheError, Forbidden, NotFound
from video_api.cores.injectable import get_cache, get_catalog, get_current_principal, get_storage
from video_api.cores.logger import audit
from video_api.cores.security import Principal
from video_api.dtos.response.upload import MessageResponse, VideoResponse
from video_api.services.cache import ResultCache, video_key
from video_api.services.catalog import CatalogStore
from video_api.services.storage import PermanentStorage

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{video_id}", response_model=VideoResponse)
async def get_video(
        video_id: str,
        catalog: CatalogStore = Depends(get_catalog),
        cache: ResultCache = Depends(get_cache),
):
    key = video_key(video_id)
    try:
        cached = await cache.get_json(key)
    except CacheError as e:
        logger.warning(f"Cache read failed for {key}: {e}")
        cached = None
    if cached:
        return VideoResponse.model_validate(cached)

    record = await catalog.get_video(video_id)
    if record is None:
        raise NotFound("Video not found")
    response = VideoResponse.from_record(record)
    try:
        await cache.set_json(key, response.model_dump(mode="json"), ttl=settings.VIDEO_CACHE_TTL)
    except CacheError as e:
        logger.warning(f"Cache write failed for {key}: {e}")
    return response


@router.delete("/{video_id}", response_model=MessageResponse)
async def delete_video(
        video_id: str,
        principal: Principal = Depends(get_current_principal),
        catalog: CatalogStore = Depends(get_catalog),
        cache: ResultCache = Depends(get_cache),
        storage: PermanentStorage = Depends(get_storage),
):
    record = await catalog.get_video(video_id)
    if record is None:
        raise NotFound("Video not found")
    if not principal.can_manage(record.user_id):
        raise Forbidden("You don't have permission to delete this video")

    if not await catalog.delete_video(video_id):
        raise NotFound("Video not found")
    try:
        await cache.invalidate_video(video_id)
    except CacheError as e:
        logger.warning(f"Cache invalidation failed for video {video_id}: {e}")

    files = [
        path for path in (
            storage.resolve_public_url(record.video_url),
            storage.resolve_public_url(record.thumbnail_url),
        )
        if path is not None
    ]
    storage.schedule_removal(files, context=f"video={video_id}")

    audit("Video deleted", video_id=video_id, title=record.title, user_id=principal.user_id)
    return MessageResponse(message="Video deleted successfully")

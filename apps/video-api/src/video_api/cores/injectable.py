from __future__ import annotations

from typing import Annotated, Any, AsyncGenerator

from fastapi import Depends, Header
from redis.asyncio import Redis

from video_api.cores.config import settings
from video_api.cores.errors import Unauthorized
from video_api.cores.redis import get_redis_client
from video_api.cores.security import Principal, decode_access_token
from video_api.services.cache import ResultCache
from video_api.services.catalog import BeanieCatalogStore, CatalogStore
from video_api.services.ingestion import IngestionOrchestrator
from video_api.services.prober import MediaProber
from video_api.services.staging import StagingArea
from video_api.services.state_manager import StateManager
from video_api.services.storage import PermanentStorage, StoragePaths
from video_api.services.thumbnail import ThumbnailExtractor
from video_api.services.transcoder import Transcoder
from video_api.services.validator import FormatValidator


async def get_redis() -> AsyncGenerator[Redis, Any]:
    client = get_redis_client()
    try:
        yield client
    finally:
        await client.aclose()


async def get_current_principal(
        authorization: Annotated[str | None, Header()] = None,
        redis: Redis = Depends(get_redis)
) -> Principal:
    if not authorization:
        raise Unauthorized("Missing bearer token")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise Unauthorized("Missing bearer token")
    if await redis.exists(f"blacklist:{token}"):
        raise Unauthorized("Token has been revoked")
    return decode_access_token(token)


def get_storage() -> PermanentStorage:
    return PermanentStorage(StoragePaths(settings.UPLOAD_ROOT), settings.PUBLIC_URL_PREFIX)


def get_validator() -> FormatValidator:
    return FormatValidator(settings.MAX_PAYLOAD_BYTES, settings.MAX_FILES)


def get_staging(storage: PermanentStorage = Depends(get_storage)) -> StagingArea:
    return StagingArea(storage.paths.temp_dir, settings.STAGING_CHUNK_SIZE)


def get_prober() -> MediaProber:
    return MediaProber(settings.FFPROBE_BINARY, settings.PROBE_TIMEOUT)


def get_transcoder() -> Transcoder:
    return Transcoder(settings.FFMPEG_BINARY, settings.TRANSCODE_TIMEOUT)


def get_thumbnails(prober: MediaProber = Depends(get_prober)) -> ThumbnailExtractor:
    return ThumbnailExtractor(prober, settings.FFMPEG_BINARY, settings.THUMBNAIL_TIMEOUT)


def get_catalog() -> CatalogStore:
    return BeanieCatalogStore()


def get_cache(redis: Redis = Depends(get_redis)) -> ResultCache:
    return ResultCache(redis)


def get_state_manager(redis: Redis = Depends(get_redis)) -> StateManager:
    return StateManager(redis, settings.JOB_STATE_TTL)


def get_orchestrator(
        validator: FormatValidator = Depends(get_validator),
        staging: StagingArea = Depends(get_staging),
        prober: MediaProber = Depends(get_prober),
        transcoder: Transcoder = Depends(get_transcoder),
        thumbnails: ThumbnailExtractor = Depends(get_thumbnails),
        storage: PermanentStorage = Depends(get_storage),
        catalog: CatalogStore = Depends(get_catalog),
        cache: ResultCache = Depends(get_cache),
        state: StateManager = Depends(get_state_manager),
) -> IngestionOrchestrator:
    return IngestionOrchestrator(
        validator=validator,
        staging=staging,
        prober=prober,
        transcoder=transcoder,
        thumbnails=thumbnails,
        storage=storage,
        catalog=catalog,
        cache=cache,
        state=state,
    )

import json
import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header, Request
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sse_starlette import EventSourceResponse

from video_api.cores.config import settings
from video_api.cores.errors import (
    Forbidden,
    MissingRequiredFields,
    NotFound,
    PlacementError,
    ValidationError,
)
from video_api.cores.injectable import (
    get_catalog,
    get_current_principal,
    get_orchestrator,
    get_redis,
    get_staging,
    get_state_manager,
    get_storage,
    get_thumbnails,
    get_validator,
)
from video_api.cores.logger import audit
from video_api.cores.security import Principal
from video_api.dtos.request.upload import UploadForm, parse_content_length, resolve_upload_id
from video_api.dtos.response.upload import (
    JobStatusResponse,
    MessageResponse,
    ThumbnailUploadResponse,
    UploadVideoResponse,
    VideoResponse,
)
from video_api.services.catalog import CatalogStore
from video_api.services.ingestion import IngestionOrchestrator, UploadPart, UploadRequest
from video_api.services.staging import StagingArea
from video_api.services.state_manager import (
    TERMINAL_STAGES,
    StateManager,
    job_key,
    progress_channel,
)
from video_api.services.storage import FILE_TYPES, PermanentStorage
from video_api.services.thumbnail import ThumbnailExtractor
from video_api.services.validator import FieldRole, FormatValidator
from video_api.utils.disconnect import cancel_on_disconnect

logger = logging.getLogger(__name__)

router = APIRouter()


def _check_declared_size(request: Request, validator: FormatValidator) -> Optional[int]:
    # before request.form(): an oversized body is refused without being read
    content_length = parse_content_length(request.headers.get("content-length"))
    validator.new_budget().check_declared(content_length)
    return content_length


@router.post("/video", status_code=201, response_model=UploadVideoResponse)
async def upload_video(
        request: Request,
        x_upload_id: Annotated[str | None, Header()] = None,
        principal: Principal = Depends(get_current_principal),
        validator: FormatValidator = Depends(get_validator),
        orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
):
    upload_id = resolve_upload_id(x_upload_id)
    content_length = _check_declared_size(request, validator)
    form = await request.form()
    try:
        parsed = UploadForm.from_form(form)
        upload = UploadRequest(
            upload_id=upload_id,
            principal=principal,
            title=parsed.title,
            description=parsed.description,
            category=parsed.category,
            parts=[
                UploadPart(field_name=name, filename=file.filename,
                           content_type=file.content_type, stream=file)
                for name, file in parsed.files
            ],
            content_length=content_length,
        )
        record = await cancel_on_disconnect(
            request, orchestrator.ingest(upload), settings.DISCONNECT_POLL_INTERVAL
        )
    finally:
        await form.close()
    return UploadVideoResponse(video=VideoResponse.from_record(record))


@router.post("/thumbnail", status_code=201, response_model=ThumbnailUploadResponse)
async def upload_thumbnail(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        validator: FormatValidator = Depends(get_validator),
        staging: StagingArea = Depends(get_staging),
        storage: PermanentStorage = Depends(get_storage),
        thumbnails: ThumbnailExtractor = Depends(get_thumbnails),
):
    content_length = _check_declared_size(request, validator)
    form = await request.form()
    try:
        parsed = UploadForm.from_form(form)
        counts: dict[str, int] = {}
        for name, _ in parsed.files:
            counts[name] = counts.get(name, 0) + 1
        validator.check_fields(counts, require_media=False)
        posters = [file for name, file in parsed.files if name == FieldRole.POSTER.value]
        if len(parsed.files) != len(posters):
            raise ValidationError("Only a thumbnail file is accepted here")
        if not posters:
            raise MissingRequiredFields("No thumbnail file provided")
        poster = posters[0]
        validator.validate(FieldRole.POSTER, poster.content_type)

        budget = validator.new_budget()
        budget.check_declared(content_length)
        staged = await staging.stage(FieldRole.POSTER, poster.filename, poster, poster.content_type, budget)
        target = storage.new_thumbnail_path()
        try:
            await thumbnails.adopt_user_image(staged.path, target)
        except PlacementError:
            await staging.release(staged)
            raise
    finally:
        await form.close()

    thumbnail_url = storage.public_url(target)
    audit("Thumbnail uploaded", thumbnail_url=thumbnail_url, file_size=staged.size,
          user_id=principal.user_id)
    return ThumbnailUploadResponse(thumbnail_url=thumbnail_url)


@router.delete("/file/{file_type}/{filename}", response_model=MessageResponse)
async def delete_file(
        file_type: str,
        filename: str,
        principal: Principal = Depends(get_current_principal),
        storage: PermanentStorage = Depends(get_storage),
        catalog: CatalogStore = Depends(get_catalog),
):
    if file_type not in FILE_TYPES:
        raise ValidationError("Invalid file type", details={"allowed": list(FILE_TYPES)})
    path = storage.file_path(file_type, filename)
    if path is None:
        raise ValidationError("Invalid filename")
    if not path.is_file():
        raise NotFound("File not found")

    owner = await catalog.find_by_file_url(storage.public_url(path))
    if owner is not None and not principal.can_manage(owner.user_id):
        raise Forbidden("You don't have permission to delete this file")

    await storage.remove(path)
    audit("File deleted", file_type=file_type, filename=filename, user_id=principal.user_id)
    return MessageResponse(message="File deleted successfully")


async def _owned_job(upload_id: str, principal: Principal, state: StateManager) -> dict:
    job = await state.get_job(upload_id)
    if not job:
        raise NotFound("Upload not found or expired")
    owner = job.get("user_id")
    if owner and not principal.can_manage(owner):
        raise Forbidden("You don't have permission to view this upload")
    return job


@router.get("/progress/{upload_id}", response_model=JobStatusResponse)
async def get_upload_status(
        upload_id: str,
        principal: Principal = Depends(get_current_principal),
        state: StateManager = Depends(get_state_manager),
):
    job = await _owned_job(upload_id, principal, state)
    return JobStatusResponse(
        upload_id=upload_id,
        status=job.get("status", "UNKNOWN"),
        progress=int(job.get("progress", 0)),
        message=job.get("message", ""),
        video_id=job.get("video_id"),
    )


@router.get("/progress/{upload_id}/stream")
async def stream_progress(
        upload_id: str,
        request: Request,
        principal: Principal = Depends(get_current_principal),
        redis: Redis = Depends(get_redis),
        state: StateManager = Depends(get_state_manager),
):
    await _owned_job(upload_id, principal, state)
    terminal = {stage.value for stage in TERMINAL_STAGES}

    async def event_generator():
        pubsub = redis.pubsub()
        channel = progress_channel(upload_id)
        await pubsub.subscribe(channel)
        try:
            # subscribed first so no update between this read and the listen is lost
            current = await redis.hgetall(job_key(upload_id))
            if current:
                yield {"event": "update", "data": json.dumps(current)}
                if current.get("status") in terminal:
                    yield {"event": "close", "data": "Stream closed"}
                    return
            async for message in pubsub.listen():
                if await request.is_disconnected():
                    break
                if message["type"] != "message":
                    continue
                data = message["data"]
                yield {"event": "update", "data": data}
                if json.loads(data).get("status") in terminal:
                    yield {"event": "close", "data": "Stream closed"}
                    break
        except RedisError as e:
            logger.error(f"Progress stream for {job_key(upload_id)} broke: {e}")
            yield {"event": "error", "data": "Progress stream unavailable"}
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()

    return EventSourceResponse(event_generator())

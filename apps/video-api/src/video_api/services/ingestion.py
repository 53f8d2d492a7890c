"""Upload ingestion pipeline.

Stages run strictly in order for one request::

    RECEIVED -> VALIDATED -> PROBED -> TRANSCODED -> THUMBNAILED -> PUBLISHED

Any failure (or cancellation) before the catalog insert moves the attempt to
FAILED and removes every file it created, newest first, then CLEANED_UP. The
catalog insert is the only commit point: nothing is visible to readers until
both permanent files exist.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from video_api.cores.errors import (
    CacheError,
    MediaTimeout,
    TranscodeFailed,
    UploadFailed,
    ValidationError,
    VideoApiError,
)
from video_api.cores.logger import audit
from video_api.cores.security import Principal
from video_api.models.video import VideoFields, VideoRecord, VideoStatus
from video_api.services.cache import ResultCache
from video_api.services.catalog import CatalogStore
from video_api.services.prober import MediaProber
from video_api.services.staging import ByteStream, StagedFile, StagingArea
from video_api.services.state_manager import IngestionStage, StateManager
from video_api.services.storage import PermanentStorage
from video_api.services.thumbnail import ThumbnailExtractor
from video_api.services.transcoder import DEFAULT_PROFILE, EncodingProfile, TranscodeJob, Transcoder
from video_api.services.validator import FieldRole, FormatValidator, PayloadBudget
from video_api.utils.filesystem import CleanupReport, remove_files

logger = logging.getLogger(__name__)


@dataclass
class UploadPart:
    field_name: str
    filename: Optional[str]
    content_type: Optional[str]
    stream: ByteStream


@dataclass
class UploadRequest:
    upload_id: str
    principal: Principal
    title: Optional[str]
    description: Optional[str]
    category: Optional[str]
    parts: list[UploadPart] = field(default_factory=list)
    content_length: Optional[int] = None

    def part(self, role: FieldRole) -> Optional[UploadPart]:
        for part in self.parts:
            if part.field_name == role.value:
                return part
        return None

    def file_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for part in self.parts:
            counts[part.field_name] = counts.get(part.field_name, 0) + 1
        return counts


class CleanupLedger:
    """Files created by one attempt, in creation order."""

    def __init__(self, context: str = ""):
        self.context = context
        self._paths: list[Path] = []

    def track(self, path: Path):
        if path not in self._paths:
            self._paths.append(path)

    @property
    def paths(self) -> tuple[Path, ...]:
        return tuple(self._paths)

    async def cleanup(self) -> CleanupReport:
        """Delete everything tracked, newest first. Individual failures are
        collected and logged, never raised; running it twice is harmless."""
        return await remove_files(list(reversed(self._paths)), context=self.context)


@dataclass
class _Attempt:
    request: UploadRequest
    ledger: CleanupLedger
    state: IngestionStage = IngestionStage.RECEIVED
    step: str = "validate"
    staged: list[StagedFile] = field(default_factory=list)
    job: Optional[TranscodeJob] = None
    insert: Optional[asyncio.Future] = None
    committed: bool = False

    @property
    def tag(self) -> str:
        return (f"upload={self.request.upload_id} user={self.request.principal.user_id} "
                f"stage={self.step}")


class IngestionOrchestrator:
    """Borrows every collaborator; owns none of their lifecycles."""

    def __init__(
            self,
            validator: FormatValidator,
            staging: StagingArea,
            prober: MediaProber,
            transcoder: Transcoder,
            thumbnails: ThumbnailExtractor,
            storage: PermanentStorage,
            catalog: CatalogStore,
            cache: ResultCache,
            state: Optional[StateManager] = None,
            profile: EncodingProfile = DEFAULT_PROFILE,
    ):
        self.validator = validator
        self.staging = staging
        self.prober = prober
        self.transcoder = transcoder
        self.thumbnails = thumbnails
        self.storage = storage
        self.catalog = catalog
        self.cache = cache
        self.state = state
        self.profile = profile

    async def ingest(self, request: UploadRequest) -> VideoRecord:
        attempt = _Attempt(request=request, ledger=CleanupLedger(context=f"upload={request.upload_id}"))
        await self._init_job(attempt)
        try:
            return await self._run(attempt)
        except asyncio.CancelledError:
            logger.warning(f"[{attempt.tag}] Request aborted before publish")
            await asyncio.shield(self._abort(attempt, "request aborted"))
            raise
        except ValidationError as e:
            await asyncio.shield(self._abort(attempt, e.code))
            raise
        except VideoApiError as e:
            await asyncio.shield(self._abort(attempt, e.code))
            raise UploadFailed(stage=attempt.step, cause=e,
                               details={"stage": attempt.step, "cause": e.code}) from e
        except Exception as e:
            logger.exception(f"[{attempt.tag}] Unexpected pipeline error")
            await asyncio.shield(self._abort(attempt, type(e).__name__))
            raise UploadFailed(stage=attempt.step, cause=e,
                               details={"stage": attempt.step, "cause": type(e).__name__}) from e

    async def _run(self, attempt: _Attempt) -> VideoRecord:
        request = attempt.request

        # 1. Received -> Validated: nothing is staged until every part passes
        attempt.step = "validate"
        self.validator.check_fields(request.file_counts())
        self.validator.validate_parts([(p.field_name, p.content_type) for p in request.parts])
        title, description, category = self.validator.check_metadata(
            request.title, request.description, request.category
        )
        budget = self.validator.new_budget()
        budget.check_declared(request.content_length)
        await self._advance(attempt, IngestionStage.VALIDATED, 5, "Upload validated")

        # 2. Validated -> Probed
        attempt.step = "stage"
        media = await self._stage(attempt, request.part(FieldRole.MEDIA), budget)
        poster_part = request.part(FieldRole.POSTER)
        poster = await self._stage(attempt, poster_part, budget) if poster_part else None
        attempt.step = "probe"
        info = await self.prober.probe(media.path)
        await self._advance(attempt, IngestionStage.PROBED, 10, "Media probed")

        # 3. Probed -> Transcoded
        attempt.step = "transcode"
        slot = self.storage.allocate()
        attempt.ledger.track(slot.video_path)
        await self._transcode(attempt, media.path, slot.video_path, info.duration)
        await self._advance(attempt, IngestionStage.TRANSCODED, 90, "Video transcoded")

        # 4. Transcoded -> Thumbnailed
        attempt.step = "thumbnail"
        attempt.ledger.track(slot.thumbnail_path)
        if poster is not None:
            await self.thumbnails.adopt_user_image(poster.path, slot.thumbnail_path)
        else:
            await self.thumbnails.extract_from_video(slot.video_path, slot.thumbnail_path)
        await self._advance(attempt, IngestionStage.THUMBNAILED, 95, "Thumbnail ready")

        # 5. Thumbnailed -> Published: the insert is the commit point
        attempt.step = "publish"
        fields = VideoFields(
            user_id=request.principal.user_id,
            title=title,
            description=description,
            category=category,
            video_url=self.storage.public_url(slot.video_path),
            thumbnail_url=self.storage.public_url(slot.thumbnail_path),
            duration=info.duration,
            file_size=info.size,
            status=VideoStatus.PUBLISHED,
        )
        # shielded: once the write is on the wire its outcome decides commit or cleanup
        attempt.insert = asyncio.ensure_future(self.catalog.insert_video(fields))
        video_id = await asyncio.shield(attempt.insert)
        attempt.committed = True
        record = VideoRecord(id=video_id, **fields.model_dump())
        await self._release_staged(attempt)

        # 6. Evict cached views of the catalog
        attempt.step = "invalidate"
        await self._invalidate(attempt, video_id)
        await self._advance(attempt, IngestionStage.PUBLISHED, 100, "Video published", video_id=video_id)

        audit(
            "Video uploaded",
            video_id=video_id,
            upload_id=request.upload_id,
            title=title,
            category=category.value,
            duration=info.duration,
            file_size=info.size,
            user_id=request.principal.user_id,
        )
        return record

    async def _stage(self, attempt: _Attempt, part: UploadPart, budget: PayloadBudget) -> StagedFile:
        role = self.validator.role_of(part.field_name)
        # content type is client-supplied; check again right before writing bytes
        self.validator.validate(role, part.content_type)
        staged = await self.staging.stage(role, part.filename, part.stream, part.content_type, budget)
        attempt.staged.append(staged)
        attempt.ledger.track(staged.path)
        return staged

    async def _transcode(self, attempt: _Attempt, source: Path, target: Path, duration: int):
        job = await self.transcoder.transcode(source, target, self.profile, duration=duration)
        attempt.job = job
        async for percent in job.progress():
            logger.debug(f"[{attempt.tag}] Transcoding {percent}%")
            await self._report(attempt, IngestionStage.PROBED, 10 + percent * 80 // 100,
                               f"Transcoding {percent}%")
        outcome = await job.wait()
        if not outcome.succeeded:
            if outcome.cause == "timeout":
                raise MediaTimeout(outcome.detail or "Transcode timed out", stage="transcode")
            raise TranscodeFailed(f"Transcode failed ({outcome.cause})", stage="transcode",
                                  details=outcome.detail)

    async def _release_staged(self, attempt: _Attempt):
        for staged in attempt.staged:
            try:
                await self.staging.release(staged)
            except OSError as e:
                logger.error(f"[{attempt.tag}] Could not release {staged.path.name}: {e}")

    async def _invalidate(self, attempt: _Attempt, video_id: str):
        try:
            await self.cache.invalidate_video(video_id)
        except CacheError as e:
            logger.warning(f"[{attempt.tag}] Cache invalidation failed, serving stale lists: {e}")

    async def _abort(self, attempt: _Attempt, cause: str):
        if attempt.job is not None:
            await attempt.job.cancel()
        if not attempt.committed and attempt.insert is not None:
            await self._settle_insert(attempt)
        if attempt.committed:
            # already published; only the temp copies are left to drop
            await self._release_staged(attempt)
            return
        logger.error(f"[{attempt.tag}] Upload failed after {attempt.state.value}: {cause}")
        await self._report(attempt, IngestionStage.FAILED, 0, f"Failed at {attempt.step}: {cause}")
        report = await attempt.ledger.cleanup()
        if not report.ok:
            logger.error(f"[{attempt.tag}] Cleanup left {len(report.failed)} file(s) behind")
        await self._report(attempt, IngestionStage.CLEANED_UP, 0, f"Failed at {attempt.step}: {cause}")

    async def _settle_insert(self, attempt: _Attempt):
        """Wait out an insert that was in flight when the request went away.

        A row that landed is published, so its files must stay."""
        try:
            video_id = await attempt.insert
        except Exception as e:
            logger.error(f"[{attempt.tag}] Catalog insert did not complete: {e}")
            return
        attempt.committed = True
        logger.warning(f"[{attempt.tag}] Request aborted after publish of video {video_id}")
        await self._invalidate(attempt, video_id)
        await self._advance(attempt, IngestionStage.PUBLISHED, 100, "Video published", video_id=video_id)

    async def _init_job(self, attempt: _Attempt):
        if self.state is None:
            return
        try:
            await self.state.init_job(attempt.request.upload_id, attempt.request.principal.user_id)
        except CacheError as e:
            logger.warning(f"[{attempt.tag}] Could not record job state: {e}")

    async def _advance(self, attempt: _Attempt, stage: IngestionStage, progress: int,
                       message: str, **extra: str):
        attempt.state = stage
        logger.info(f"[{attempt.tag}] {stage.value}")
        await self._report(attempt, stage, progress, message, **extra)

    async def _report(self, attempt: _Attempt, stage: IngestionStage, progress: int,
                      message: str, **extra: str):
        if self.state is None:
            return
        try:
            await self.state.update_progress(attempt.request.upload_id, stage, progress, message, **extra)
        except CacheError as e:
            logger.warning(f"[{attempt.tag}] Could not record job state: {e}")

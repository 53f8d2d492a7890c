import asyncio
import uuid
from pathlib import Path
from typing import Optional

import fakeredis
import pytest

from video_api.cores.security import Principal
from video_api.models.video import VideoFields, VideoRecord
from video_api.services.cache import ResultCache
from video_api.services.ingestion import IngestionOrchestrator, UploadPart, UploadRequest
from video_api.services.prober import ProbeResult
from video_api.services.staging import StagingArea
from video_api.services.state_manager import StateManager
from video_api.services.storage import PermanentStorage, StoragePaths
from video_api.services.thumbnail import ThumbnailExtractor
from video_api.services.transcoder import DEFAULT_PROFILE, TranscodeOutcome
from video_api.services.validator import FormatValidator

MP4_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 2048
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 256


class BytesStream:
    """Minimal async reader over an in-memory payload."""

    def __init__(self, data: bytes, fail_at: Optional[int] = None):
        self.data = data
        self.offset = 0
        self.fail_at = fail_at

    async def read(self, size: int = -1) -> bytes:
        if self.fail_at is not None and self.offset >= self.fail_at:
            raise ConnectionResetError("client went away")
        if size < 0:
            size = len(self.data) - self.offset
        chunk = self.data[self.offset:self.offset + size]
        self.offset += len(chunk)
        return chunk


class InMemoryCatalog:
    def __init__(self, fail_insert: Optional[Exception] = None):
        self.videos: dict[str, VideoRecord] = {}
        self.fail_insert = fail_insert

    async def insert_video(self, fields: VideoFields) -> str:
        if self.fail_insert is not None:
            raise self.fail_insert
        video_id = uuid.uuid4().hex[:24]
        self.videos[video_id] = VideoRecord(id=video_id, **fields.model_dump())
        return video_id

    async def get_video(self, video_id: str) -> Optional[VideoRecord]:
        return self.videos.get(video_id)

    async def delete_video(self, video_id: str) -> bool:
        return self.videos.pop(video_id, None) is not None

    async def find_by_file_url(self, url: str) -> Optional[VideoRecord]:
        for record in self.videos.values():
            if url in (record.video_url, record.thumbnail_url):
                return record
        return None


class FakeProber:
    def __init__(self, result: ProbeResult = ProbeResult(duration=125, size=len(MP4_BYTES), bitrate=0),
                 error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.calls: list[Path] = []

    async def probe(self, path: Path) -> ProbeResult:
        self.calls.append(Path(path))
        if self.error is not None:
            raise self.error
        return self.result


class FakeJob:
    """Writes a partial output straight away, like ffmpeg does once it starts."""

    def __init__(self, output_path: Path, outcome: TranscodeOutcome, steps, gate: Optional[asyncio.Event]):
        self.output_path = Path(output_path)
        self.outcome = outcome
        self.steps = steps
        self.gate = gate
        self.cancelled = False
        self.finished = False
        self.output_path.write_bytes(b"partial")

    async def progress(self):
        for percent in self.steps:
            yield percent
            if self.gate is not None:
                await self.gate.wait()

    async def wait(self) -> TranscodeOutcome:
        self.finished = True
        if self.outcome.succeeded:
            self.output_path.write_bytes(b"transcoded-mp4")
        return self.outcome

    async def cancel(self):
        self.cancelled = True
        if not (self.finished and self.outcome.succeeded):
            self.output_path.unlink(missing_ok=True)


class FakeTranscoder:
    def __init__(self, outcome: TranscodeOutcome = TranscodeOutcome.success(),
                 steps=(25, 50, 99, 100), gate: Optional[asyncio.Event] = None):
        self.outcome = outcome
        self.steps = steps
        self.gate = gate
        self.jobs: list[FakeJob] = []
        self.calls: list[tuple] = []

    async def transcode(self, input_path, output_path, profile=DEFAULT_PROFILE, duration=None):
        self.calls.append((Path(input_path), Path(output_path), profile, duration))
        job = FakeJob(output_path, self.outcome, self.steps, self.gate)
        self.jobs.append(job)
        return job


class FakeThumbnails(ThumbnailExtractor):
    """Real poster adoption; frame extraction replaced by a file write."""

    def __init__(self, error: Optional[Exception] = None):
        super().__init__(FakeProber())
        self.error = error
        self.extracted: list[tuple] = []

    async def extract_from_video(self, video_path, output_path, offset_percent=10, size="640x360"):
        if self.error is not None:
            raise self.error
        Path(output_path).write_bytes(b"\xff\xd8\xff\xe0jpeg")
        self.extracted.append((Path(video_path), Path(output_path), offset_percent, size))


def files_under(root: Path) -> list[Path]:
    return sorted(p for p in root.rglob("*") if p.is_file())


def make_request(*, title: Optional[str] = "My clip", category: Optional[str] = "education",
                 description: Optional[str] = "", video: Optional[bytes] = MP4_BYTES,
                 video_type: str = "video/mp4", poster: Optional[bytes] = None,
                 poster_type: str = "image/png", user_id: str = "user-1",
                 extra_parts: tuple = (), content_length: Optional[int] = None,
                 upload_id: str = "upload-1") -> UploadRequest:
    parts = []
    if video is not None:
        parts.append(UploadPart("video", "clip.MOV", video_type, BytesStream(video)))
    if poster is not None:
        parts.append(UploadPart("thumbnail", "poster.png", poster_type, BytesStream(poster)))
    parts.extend(extra_parts)
    return UploadRequest(
        upload_id=upload_id,
        principal=Principal(user_id=user_id),
        title=title,
        description=description,
        category=category,
        parts=parts,
        content_length=content_length,
    )


@pytest.fixture
def upload_root(tmp_path) -> Path:
    return tmp_path / "uploads"


@pytest.fixture
def storage(upload_root) -> PermanentStorage:
    store = PermanentStorage(StoragePaths(upload_root), "/uploads")
    store.paths.ensure()
    return store


@pytest.fixture
def staging(storage) -> StagingArea:
    return StagingArea(storage.paths.temp_dir, chunk_size=512)


@pytest.fixture
def validator() -> FormatValidator:
    return FormatValidator(max_payload_bytes=64 * 1024, max_files=2)


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def redis(redis_server):
    return fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)


@pytest.fixture
def cache(redis) -> ResultCache:
    return ResultCache(redis)


@pytest.fixture
def state(redis) -> StateManager:
    return StateManager(redis, ttl=60)


@pytest.fixture
def catalog() -> InMemoryCatalog:
    return InMemoryCatalog()


@pytest.fixture
def prober() -> FakeProber:
    return FakeProber()


@pytest.fixture
def transcoder() -> FakeTranscoder:
    return FakeTranscoder()


@pytest.fixture
def thumbnails() -> FakeThumbnails:
    return FakeThumbnails()


@pytest.fixture
def orchestrator(validator, staging, prober, transcoder, thumbnails, storage, catalog, cache, state):
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


class FakeProcess:
    """Stands in for an asyncio subprocess; ``hang`` keeps it running until terminated."""

    def __init__(self, stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0, hang: bool = False):
        self.pid = 4242
        self.returncode = None
        self.final_returncode = returncode
        self.hang = hang
        self.terminated = False
        self.killed = False
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self._exited = asyncio.Event()
        if not hang:
            self.stdout.feed_data(stdout)
            self.stdout.feed_eof()
            self.stderr.feed_data(stderr)
            self.stderr.feed_eof()

    async def wait(self) -> int:
        if self.hang:
            await self._exited.wait()
        elif self.returncode is None:
            self.returncode = self.final_returncode
        return self.returncode

    async def communicate(self):
        out = await self.stdout.read()
        err = await self.stderr.read()
        await self.wait()
        return out, err

    def _exit(self, code: int):
        if self.returncode is None:
            self.returncode = code
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()

    def terminate(self):
        self.terminated = True
        self._exit(-15)

    def kill(self):
        self.killed = True
        self._exit(-9)


class ProcessFactory:
    """Replacement for ``asyncio.create_subprocess_exec`` that replays queued processes."""

    def __init__(self):
        self.calls: list[list[str]] = []
        self.processes: list[FakeProcess] = []
        self._queue: list = []

    def add(self, error: Optional[Exception] = None, effect=None, **kwargs):
        self._queue.append((error, effect, kwargs))

    async def __call__(self, *args, **kwargs):
        self.calls.append(list(args))
        error, effect, spec = self._queue.pop(0)
        if error is not None:
            raise error
        if effect is not None:
            effect(list(args))
        process = FakeProcess(**spec)
        self.processes.append(process)
        return process


@pytest.fixture
def processes(monkeypatch) -> ProcessFactory:
    factory = ProcessFactory()
    monkeypatch.setattr(asyncio, "create_subprocess_exec", factory)
    return factory

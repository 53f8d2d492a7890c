import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Optional, Sequence

import ffmpeg

from video_api.utils.ffmpeg_ops import spawn, terminate
from video_api.utils.filesystem import remove_file

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncodingProfile:
    container: str = "mp4"
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    width: int = 1280
    height: int = 720
    video_bitrate: str = "2000k"
    audio_bitrate: str = "128k"
    buffer_size: str = "4000k"

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


DEFAULT_PROFILE = EncodingProfile()


class TranscodeState(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class TranscodeOutcome:
    succeeded: bool
    cause: Optional[str] = None  # ffmpeg | timeout | spawn | cancelled | error
    detail: str = ""

    @classmethod
    def success(cls) -> "TranscodeOutcome":
        return cls(succeeded=True)

    @classmethod
    def failure(cls, cause: str, detail: str = "") -> "TranscodeOutcome":
        return cls(succeeded=False, cause=cause, detail=detail)


def percent_from_progress(line: str, duration: Optional[float]) -> Optional[int]:
    """Map one ``-progress`` line to a percentage below 100, or None."""
    key, _, value = line.strip().partition("=")
    if key not in ("out_time_us", "out_time_ms") or not duration:
        return None
    try:
        micros = int(value)
    except ValueError:
        return None
    # out_time_ms is microseconds too (long-standing ffmpeg quirk)
    return max(0, min(99, int(micros / (duration * 1_000_000) * 100)))


class TranscodeJob:
    """One ffmpeg invocation: awaitable outcome plus a finite progress stream."""

    def __init__(self, args: Sequence[str], output_path: Path, timeout: float,
                 duration: Optional[float] = None):
        self.args = list(args)
        self.output_path = Path(output_path)
        self.timeout = timeout
        self.duration = duration
        self.state = TranscodeState.PENDING
        self._process: Optional[asyncio.subprocess.Process] = None
        self._task: Optional[asyncio.Task] = None
        self._outcome: Optional[TranscodeOutcome] = None
        self._progress: asyncio.Queue = asyncio.Queue()
        self._last_percent = -1

    @property
    def outcome(self) -> Optional[TranscodeOutcome]:
        return self._outcome

    async def start(self) -> "TranscodeJob":
        try:
            self._process = await spawn(self.args)
        except OSError as e:
            logger.error(f"Could not start ffmpeg: {e}")
            self._finish(TranscodeOutcome.failure("spawn", str(e)))
            return self
        self.state = TranscodeState.RUNNING
        logger.info(f"Transcode started (pid {self._process.pid}) -> {self.output_path.name}")
        self._task = asyncio.create_task(self._supervise())
        return self

    async def progress(self) -> AsyncIterator[int]:
        while True:
            value = await self._progress.get()
            if value is None:
                return
            yield value

    async def wait(self) -> TranscodeOutcome:
        if self._task is not None:
            await asyncio.wait([self._task])
        return self._outcome

    async def cancel(self):
        """Stop the process and drop partial output. Safe to call more than once."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.wait([self._task])
        if self._outcome is None and self._process is not None:
            # cancelled before the supervisor ever ran
            await terminate(self._process)
            self._finish(TranscodeOutcome.failure("cancelled", "transcode cancelled"))
        if self._outcome is None or not self._outcome.succeeded:
            await asyncio.to_thread(remove_file, self.output_path)

    async def _supervise(self):
        process = self._process
        stderr_task = asyncio.create_task(process.stderr.read())
        try:
            await asyncio.wait_for(self._pump(process), self.timeout)
        except asyncio.TimeoutError:
            stderr_task.cancel()
            await terminate(process)
            logger.error(f"Transcode of {self.output_path.name} exceeded {self.timeout}s")
            self._finish(TranscodeOutcome.failure("timeout", f"ffmpeg exceeded {self.timeout}s"))
            return
        except asyncio.CancelledError:
            stderr_task.cancel()
            await asyncio.shield(terminate(process))
            logger.warning(f"Transcode of {self.output_path.name} cancelled")
            self._finish(TranscodeOutcome.failure("cancelled", "transcode cancelled"))
            raise
        except Exception as e:
            stderr_task.cancel()
            await terminate(process)
            logger.error(f"Transcode supervisor error: {e}")
            self._finish(TranscodeOutcome.failure("error", str(e)))
            return

        stderr = await stderr_task
        if process.returncode == 0:
            self._emit(100)
            logger.info(f"Transcode completed: {self.output_path.name}")
            self._finish(TranscodeOutcome.success())
        else:
            detail = stderr.decode("utf8", errors="replace").strip()[-2000:]
            logger.error(f"FFmpeg Transcode Error (exit {process.returncode}): {detail}")
            self._finish(TranscodeOutcome.failure("ffmpeg", detail))

    async def _pump(self, process: asyncio.subprocess.Process):
        async for raw in process.stdout:
            percent = percent_from_progress(raw.decode("utf8", errors="replace"), self.duration)
            if percent is not None:
                self._emit(percent)
        await process.wait()

    def _emit(self, percent: int):
        if percent > self._last_percent:
            self._last_percent = percent
            self._progress.put_nowait(percent)

    def _finish(self, outcome: TranscodeOutcome):
        self._outcome = outcome
        self.state = TranscodeState.SUCCEEDED if outcome.succeeded else TranscodeState.FAILED
        self._progress.put_nowait(None)


class Transcoder:
    def __init__(self, ffmpeg_binary: str = "ffmpeg", timeout: float = 1800.0):
        self.ffmpeg_binary = ffmpeg_binary
        self.timeout = timeout

    def command(self, input_path: Path, output_path: Path,
                profile: EncodingProfile = DEFAULT_PROFILE) -> list[str]:
        stream = (
            ffmpeg
            .input(str(input_path))
            .output(
                str(output_path),
                format=profile.container,
                vcodec=profile.video_codec,
                acodec=profile.audio_codec,
                s=profile.resolution,
                video_bitrate=profile.video_bitrate,
                maxrate=profile.video_bitrate,
                bufsize=profile.buffer_size,
                audio_bitrate=profile.audio_bitrate,
                movflags="+faststart",
            )
            .global_args("-n", "-progress", "pipe:1", "-nostats", "-loglevel", "error")
        )
        return ffmpeg.compile(stream, cmd=self.ffmpeg_binary)

    async def transcode(self, input_path: Path, output_path: Path,
                        profile: EncodingProfile = DEFAULT_PROFILE,
                        duration: Optional[float] = None) -> TranscodeJob:
        job = TranscodeJob(
            self.command(input_path, output_path, profile),
            output_path=output_path,
            timeout=self.timeout,
            duration=duration,
        )
        return await job.start()

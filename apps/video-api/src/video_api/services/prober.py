import asyncio
import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import ffmpeg

from video_api.cores.errors import UnreadableMedia
from video_api.utils.ffmpeg_ops import describe_error, run_ffmpeg

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeResult:
    duration: int
    size: int
    bitrate: int


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class MediaProber:
    """Reads container metadata with ffprobe. Never touches the input file."""

    def __init__(self, ffprobe_binary: str = "ffprobe", timeout: float = 30.0):
        self.ffprobe_binary = ffprobe_binary
        self.timeout = timeout

    def command(self, path: Path) -> list[str]:
        # Same invocation ffmpeg.probe() builds, driven asynchronously here.
        return [
            self.ffprobe_binary,
            "-v", "error",
            "-show_format",
            "-show_streams",
            "-of", "json",
            str(path),
        ]

    async def probe(self, path: Path) -> ProbeResult:
        try:
            raw = await run_ffmpeg(self.command(path), self.timeout)
        except ffmpeg.Error as e:
            raise UnreadableMedia(f"ffprobe could not parse {Path(path).name}",
                                  stage="probe", details=describe_error(e), cause=e)
        except OSError as e:
            raise UnreadableMedia("ffprobe could not be started", stage="probe", cause=e)
        result = self.parse(raw)
        if result.size == 0:
            size = await asyncio.to_thread(lambda: Path(path).stat().st_size)
            result = ProbeResult(duration=result.duration, size=size, bitrate=result.bitrate)
        logger.info(f"Probed {Path(path).name}: {result}")
        return result

    @staticmethod
    def parse(raw: bytes) -> ProbeResult:
        try:
            data: dict[str, Any] = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise UnreadableMedia("ffprobe returned malformed output", stage="probe", cause=e)

        fmt = data.get("format") or {}
        duration = _to_float(fmt.get("duration"))
        if duration is None:
            stream_durations = [
                d for d in (_to_float(s.get("duration")) for s in data.get("streams") or [])
                if d is not None
            ]
            duration = max(stream_durations) if stream_durations else None
        if duration is None or duration <= 0:
            raise UnreadableMedia("Media has no readable duration", stage="probe")

        return ProbeResult(
            duration=round_half_up(duration),
            size=int(_to_float(fmt.get("size")) or 0),
            bitrate=int(_to_float(fmt.get("bit_rate")) or 0),
        )


def _to_float(value: Any) -> float | None:
    try:
        parsed = float(value) if value is not None else None
    except (TypeError, ValueError):
        return None
    if parsed is None or math.isnan(parsed) or math.isinf(parsed):
        return None
    return parsed

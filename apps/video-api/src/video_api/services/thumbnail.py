import asyncio
import logging
from pathlib import Path

import ffmpeg

from video_api.cores.errors import PlacementError, ThumbnailFailed
from video_api.services.prober import MediaProber
from video_api.utils.ffmpeg_ops import describe_error, run_ffmpeg
from video_api.utils.filesystem import move_file

logger = logging.getLogger(__name__)

DEFAULT_OFFSET_PERCENT = 10
DEFAULT_SIZE = "640x360"


class ThumbnailExtractor:
    def __init__(self, prober: MediaProber, ffmpeg_binary: str = "ffmpeg", timeout: float = 60.0):
        self.prober = prober
        self.ffmpeg_binary = ffmpeg_binary
        self.timeout = timeout

    def command(self, video_path: Path, output_path: Path, seek_seconds: float,
                size: str = DEFAULT_SIZE) -> list[str]:
        stream = (
            ffmpeg
            .input(str(video_path), ss=f"{seek_seconds:.3f}")
            .output(str(output_path), vframes=1, s=size, format="image2", vcodec="mjpeg")
            .global_args("-n", "-loglevel", "error")
        )
        return ffmpeg.compile(stream, cmd=self.ffmpeg_binary)

    async def extract_from_video(self, video_path: Path, output_path: Path,
                                 offset_percent: float = DEFAULT_OFFSET_PERCENT,
                                 size: str = DEFAULT_SIZE):
        """Sample one frame at ``offset_percent`` of the video's duration."""
        info = await self.prober.probe(video_path)
        seek = info.duration * offset_percent / 100
        try:
            await run_ffmpeg(self.command(video_path, output_path, seek, size), self.timeout)
        except ffmpeg.Error as e:
            raise ThumbnailFailed(stage="thumbnail", details=describe_error(e), cause=e)
        except OSError as e:
            raise ThumbnailFailed("ffmpeg could not be started", stage="thumbnail", cause=e)

        produced = await asyncio.to_thread(
            lambda: output_path.exists() and output_path.stat().st_size > 0
        )
        if not produced:
            raise ThumbnailFailed("ffmpeg produced no frame", stage="thumbnail")
        logger.info(f"Thumbnail generated: {output_path.name} at {seek:.2f}s")

    async def adopt_user_image(self, staged_path: Path, output_path: Path):
        """Relocate a user-supplied poster verbatim into the permanent slot."""
        try:
            await asyncio.to_thread(move_file, staged_path, output_path)
        except OSError as e:
            raise PlacementError(f"Could not place poster: {e}", stage="thumbnail", cause=e)
        logger.info(f"Adopted user poster as {output_path.name}")

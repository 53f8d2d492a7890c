import asyncio
import logging
from typing import Sequence

import ffmpeg

from video_api.cores.errors import MediaTimeout

logger = logging.getLogger(__name__)

TERMINATE_GRACE_SECONDS = 5.0


async def spawn(args: Sequence[str]) -> asyncio.subprocess.Process:
    logger.debug(f"Spawning: {' '.join(args)}")
    return await asyncio.create_subprocess_exec(
        *args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )


async def terminate(process: asyncio.subprocess.Process, grace: float = TERMINATE_GRACE_SECONDS):
    """SIGTERM, then SIGKILL if the process ignores it."""
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), grace)
    except asyncio.TimeoutError:
        logger.warning(f"Process {process.pid} ignored SIGTERM, killing")
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()


async def run_ffmpeg(args: Sequence[str], timeout: float) -> bytes:
    """Run one ffmpeg/ffprobe invocation to completion and return its stdout.

    Raises ``MediaTimeout`` past ``timeout`` seconds and ``ffmpeg.Error`` on a
    non-zero exit. The process is always reaped, including on cancellation.
    """
    tool = args[0]
    process = await spawn(args)
    try:
        out, err = await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError:
        await terminate(process)
        raise MediaTimeout(f"{tool} exceeded {timeout}s")
    except asyncio.CancelledError:
        await asyncio.shield(terminate(process))
        raise
    if process.returncode != 0:
        raise ffmpeg.Error(tool, out, err)
    return out


def describe_error(e: ffmpeg.Error) -> str:
    message = e.stderr.decode("utf8", errors="replace").strip() if e.stderr else str(e)
    return message[-2000:]

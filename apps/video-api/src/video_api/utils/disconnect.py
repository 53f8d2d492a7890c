import asyncio
import logging
from typing import Awaitable, TypeVar

from starlette.requests import Request

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def cancel_on_disconnect(request: Request, work: Awaitable[T], poll_interval: float = 1.0) -> T:
    """Run ``work`` as a task and cancel it once the client goes away."""
    task = asyncio.ensure_future(work)

    async def watch():
        while not task.done():
            if await request.is_disconnected():
                logger.warning(f"Client disconnected from {request.url.path}, cancelling")
                task.cancel()
                return
            await asyncio.sleep(poll_interval)

    watcher = asyncio.create_task(watch())
    try:
        return await task
    finally:
        watcher.cancel()

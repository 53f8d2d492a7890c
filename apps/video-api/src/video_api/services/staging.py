import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from video_api.cores.errors import PayloadTooLarge, StagingError
from video_api.services.validator import FieldRole, PayloadBudget
from video_api.utils.filesystem import ensure_dir, remove_file

logger = logging.getLogger(__name__)


class ByteStream(Protocol):
    async def read(self, size: int = -1) -> bytes: ...


@dataclass(frozen=True)
class StagedFile:
    id: str
    path: Path
    mime_type: str
    role: FieldRole
    size: int


class StagingArea:
    """Temporary namespace that receives raw uploaded bytes."""

    def __init__(self, temp_dir: Path, chunk_size: int = 1024 * 1024):
        self.temp_dir = Path(temp_dir).resolve()
        self.chunk_size = chunk_size

    async def stage(self, role: FieldRole, original_name: Optional[str], stream: ByteStream,
                    declared_mime: str, budget: Optional[PayloadBudget] = None) -> StagedFile:
        staged_id = uuid.uuid4().hex
        suffix = Path(original_name or "").suffix.lower()
        path = self.temp_dir / f"{staged_id}{suffix}"
        try:
            await asyncio.to_thread(ensure_dir, self.temp_dir)
            handle = await asyncio.to_thread(open, path, "xb")
        except OSError as e:
            raise StagingError(f"Temp namespace is not writable: {e}", stage="staging", cause=e)

        size = 0
        try:
            while True:
                chunk = await stream.read(self.chunk_size)
                if not chunk:
                    break
                size += len(chunk)
                if budget is not None:
                    budget.consume(len(chunk))
                await asyncio.to_thread(handle.write, chunk)
        except (PayloadTooLarge, asyncio.CancelledError):
            await self._discard(handle, path)
            raise
        except Exception as e:
            await self._discard(handle, path)
            raise StagingError(f"Failed writing staged file: {e}", stage="staging", cause=e)
        await asyncio.to_thread(handle.close)

        logger.info(f"Staged {role.value} as {path.name} ({size} bytes)")
        return StagedFile(id=staged_id, path=path, mime_type=declared_mime, role=role, size=size)

    @staticmethod
    async def _discard(handle, path: Path):
        await asyncio.to_thread(handle.close)
        await asyncio.to_thread(remove_file, path)

    async def release(self, staged: StagedFile) -> bool:
        """Delete the temp file. Missing file is not an error."""
        removed = await asyncio.to_thread(remove_file, staged.path)
        if removed:
            logger.debug(f"Released staged file {staged.path.name}")
        return removed

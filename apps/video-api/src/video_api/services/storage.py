import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from video_api.utils.filesystem import CleanupReport, ensure_dir, remove_file, remove_files

logger = logging.getLogger(__name__)

VIDEO_EXTENSION = ".mp4"
THUMBNAIL_EXTENSION = ".jpg"
FILE_TYPES = ("videos", "thumbnails")


@dataclass(frozen=True)
class StoragePaths:
    root: Path

    @property
    def temp_dir(self) -> Path:
        return self.root / "temp"

    @property
    def video_dir(self) -> Path:
        return self.root / "videos"

    @property
    def thumbnail_dir(self) -> Path:
        return self.root / "thumbnails"

    def ensure(self):
        for path in (self.temp_dir, self.video_dir, self.thumbnail_dir):
            ensure_dir(path)


@dataclass(frozen=True)
class PermanentSlot:
    id: str
    video_path: Path
    thumbnail_path: Path


class PermanentStorage:
    """Two flat directories of published files, named by fresh opaque ids."""

    def __init__(self, paths: StoragePaths, public_prefix: str = "/uploads"):
        self.paths = StoragePaths(Path(paths.root).resolve())
        self.public_prefix = public_prefix.rstrip("/")

    def allocate(self) -> PermanentSlot:
        while True:
            slot_id = uuid.uuid4().hex
            slot = PermanentSlot(
                id=slot_id,
                video_path=self.paths.video_dir / f"{slot_id}{VIDEO_EXTENSION}",
                thumbnail_path=self.paths.thumbnail_dir / f"{slot_id}{THUMBNAIL_EXTENSION}",
            )
            if not slot.video_path.exists() and not slot.thumbnail_path.exists():
                return slot

    def new_thumbnail_path(self) -> Path:
        while True:
            path = self.paths.thumbnail_dir / f"{uuid.uuid4().hex}{THUMBNAIL_EXTENSION}"
            if not path.exists():
                return path

    def directory_for(self, file_type: str) -> Path:
        if file_type == "videos":
            return self.paths.video_dir
        if file_type == "thumbnails":
            return self.paths.thumbnail_dir
        raise ValueError(f"Unknown file type: {file_type}")

    def public_url(self, path: Path) -> str:
        return f"{self.public_prefix}/{path.parent.name}/{path.name}"

    def resolve_public_url(self, url: str) -> Optional[Path]:
        """Map a public URL back to its file; None for anything outside the two directories."""
        prefix = f"{self.public_prefix}/"
        if not url or not url.startswith(prefix):
            return None
        parts = url[len(prefix):].split("/")
        if len(parts) != 2 or parts[0] not in FILE_TYPES:
            return None
        return self.file_path(parts[0], parts[1])

    def file_path(self, file_type: str, filename: str) -> Optional[Path]:
        if not filename or filename in (".", "..") or "/" in filename or "\\" in filename:
            return None
        return self.directory_for(file_type) / filename

    async def remove(self, path: Path) -> bool:
        return await asyncio.to_thread(remove_file, path)

    async def remove_many(self, paths: Iterable[Path], context: str = "") -> CleanupReport:
        return await remove_files(paths, context=context)

    def schedule_removal(self, paths: Iterable[Path], context: str = "") -> asyncio.Task:
        """Delete files in the background; the caller does not wait for the outcome."""
        task = asyncio.create_task(self.remove_many(list(paths), context=context))
        _background.add(task)
        task.add_done_callback(_background.discard)
        return task


_background: set = set()

"""Filesystem helpers shared by staging, storage and cleanup."""

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Tuple

logger = logging.getLogger(__name__)


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def remove_file(path: Path) -> bool:
    """Delete ``path``. Returns False when it was already gone."""
    try:
        os.unlink(path)
    except FileNotFoundError:
        return False
    return True


def move_file(source: Path, destination: Path):
    """Move without overwriting. Falls back to copy+unlink across devices."""
    try:
        os.link(source, destination)
    except FileExistsError:
        raise
    except OSError:
        with open(source, "rb") as src, open(destination, "xb") as dst:
            shutil.copyfileobj(src, dst)
    os.unlink(source)


@dataclass
class CleanupReport:
    removed: List[Path] = field(default_factory=list)
    missing: List[Path] = field(default_factory=list)
    failed: List[Tuple[Path, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


async def remove_files(paths: Iterable[Path], context: str = "") -> CleanupReport:
    """Best-effort deletion: every path is attempted, failures are collected and logged."""
    report = CleanupReport()
    prefix = f"[{context}] " if context else ""
    for path in paths:
        try:
            if await asyncio.to_thread(remove_file, path):
                report.removed.append(path)
                logger.info(f"{prefix}Removed {path}")
            else:
                report.missing.append(path)
        except OSError as e:
            report.failed.append((path, str(e)))
            logger.error(f"{prefix}Failed to remove {path}: {e}")
    return report

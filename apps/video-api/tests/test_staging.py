import asyncio

import pytest

from conftest import MP4_BYTES, BytesStream, files_under
from video_api.cores.errors import PayloadTooLarge, StagingError
from video_api.services.staging import StagingArea
from video_api.services.validator import FieldRole, PayloadBudget


async def test_stage_writes_bytes_under_fresh_name(staging):
    staged = await staging.stage(FieldRole.MEDIA, "My Holiday.MP4", BytesStream(MP4_BYTES), "video/mp4")

    assert staged.path.parent == staging.temp_dir
    assert staged.path.name == f"{staged.id}.mp4"
    assert "Holiday" not in staged.path.name
    assert staged.path.read_bytes() == MP4_BYTES
    assert staged.size == len(MP4_BYTES)
    assert staged.role is FieldRole.MEDIA
    assert staged.mime_type == "video/mp4"


async def test_each_stage_gets_unique_id(staging):
    first = await staging.stage(FieldRole.MEDIA, "a.mp4", BytesStream(b"one"), "video/mp4")
    second = await staging.stage(FieldRole.MEDIA, "a.mp4", BytesStream(b"two"), "video/mp4")

    assert first.id != second.id
    assert first.path.read_bytes() == b"one"
    assert second.path.read_bytes() == b"two"


async def test_missing_extension_is_allowed(staging):
    staged = await staging.stage(FieldRole.POSTER, None, BytesStream(b"img"), "image/png")
    assert staged.path.name == staged.id


async def test_release_is_idempotent(staging):
    staged = await staging.stage(FieldRole.MEDIA, "a.mp4", BytesStream(b"data"), "video/mp4")

    assert await staging.release(staged) is True
    assert await staging.release(staged) is False
    assert not staged.path.exists()


async def test_budget_overrun_discards_partial_file(staging):
    budget = PayloadBudget(limit=1000)

    with pytest.raises(PayloadTooLarge):
        await staging.stage(FieldRole.MEDIA, "a.mp4", BytesStream(b"\x00" * 4096), "video/mp4", budget)

    assert files_under(staging.temp_dir) == []


async def test_broken_stream_becomes_staging_error(staging):
    with pytest.raises(StagingError) as exc_info:
        await staging.stage(FieldRole.MEDIA, "a.mp4", BytesStream(MP4_BYTES, fail_at=512), "video/mp4")

    assert isinstance(exc_info.value.cause, ConnectionResetError)
    assert files_under(staging.temp_dir) == []


async def test_unwritable_namespace(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_bytes(b"")
    area = StagingArea(blocker / "temp")

    with pytest.raises(StagingError):
        await area.stage(FieldRole.MEDIA, "a.mp4", BytesStream(b"data"), "video/mp4")


async def test_cancellation_discards_partial_file(staging):
    class SlowStream:
        def __init__(self):
            self.sent = False

        async def read(self, size=-1):
            if not self.sent:
                self.sent = True
                return b"\x00" * 100
            await asyncio.sleep(10)
            return b""

    task = asyncio.create_task(staging.stage(FieldRole.MEDIA, "a.mp4", SlowStream(), "video/mp4"))
    await asyncio.sleep(0.1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert files_under(staging.temp_dir) == []

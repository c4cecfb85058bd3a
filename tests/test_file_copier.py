"""
Tests for the retrying file copier.

Lock contention is simulated by holding an exclusive flock on the source
from the test itself; the copier's shared, non-blocking lock then fails
the same way it would against another process.
"""

import asyncio
import errno
import sys
from pathlib import Path
from unittest import mock

import pytest

from conftest import SlowStream
from ingest.enums import ErrorKind
from ingest.results import UploadCandidate
from worker.file_copier import (
    ResilientFileCopier,
    RetryPolicy,
    copy_with_retry,
    is_lock_error,
    persist_upload,
    write_upload,
)

if sys.platform != "win32":
    import fcntl

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses flock to simulate a locked source")

FAST_POLICY = RetryPolicy(max_attempts=3, delay=0.01)


class RecordingSleep:
    """Replacement for asyncio.sleep that records delays and can run a hook."""

    def __init__(self, on_sleep=None):
        self.delays = []
        self.on_sleep = on_sleep

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.on_sleep is not None:
            self.on_sleep()


def leftover_parts(directory: Path):
    return [p for p in directory.iterdir() if ".part" in p.name]


@pytest.fixture
def source(tmp_path: Path) -> Path:
    path = tmp_path / "upload.mp4"
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42" + bytes(range(256)) * 64)
    return path


class TestCopy:
    """Tests for ResilientFileCopier.copy()."""

    @pytest.mark.asyncio
    async def test_copies_byte_identical(self, source, test_storage):
        dest = test_storage["output"] / "clip.mp4"
        result = await ResilientFileCopier(FAST_POLICY).copy(source, dest, "video/mp4")

        assert result.ok
        assert result.payload == dest
        assert result.content_type == "video/mp4"
        assert dest.read_bytes() == source.read_bytes()
        assert leftover_parts(test_storage["output"]) == []

    @pytest.mark.asyncio
    async def test_overwrites_existing_destination(self, source, test_storage):
        dest = test_storage["output"] / "clip.mp4"
        dest.write_bytes(b"stale")
        result = await ResilientFileCopier(FAST_POLICY).copy(source, dest)
        assert result.ok
        assert dest.read_bytes() == source.read_bytes()

    @pytest.mark.asyncio
    async def test_missing_source_fails_without_retry(self, test_storage):
        sleep = RecordingSleep()
        copier = ResilientFileCopier(FAST_POLICY, sleep=sleep)
        dest = test_storage["output"] / "clip.mp4"

        result = await copier.copy(test_storage["uploads"] / "missing.mp4", dest)

        assert result.kind == ErrorKind.IO_ERROR
        assert sleep.delays == []
        assert not dest.exists()

    @pytest.mark.asyncio
    async def test_permission_denied_fails_without_retry(self, source, test_storage):
        sleep = RecordingSleep()
        copier = ResilientFileCopier(FAST_POLICY, sleep=sleep)
        dest = test_storage["output"] / "clip.mp4"
        denied = PermissionError(errno.EACCES, "Permission denied")

        with mock.patch("worker.file_copier._copy_once", side_effect=denied) as copy_once:
            result = await copier.copy(source, dest)

        assert result.kind == ErrorKind.IO_ERROR
        assert "Permission denied" in result.detail
        assert copy_once.call_count == 1
        assert sleep.delays == []
        assert not dest.exists()

    @pytest.mark.asyncio
    async def test_exhausted_attempts_name_the_cause(self, source, test_storage):
        sleep = RecordingSleep()
        copier = ResilientFileCopier(FAST_POLICY, sleep=sleep)
        busy = OSError(errno.EBUSY, "Device or resource busy")

        with mock.patch("worker.file_copier._copy_once", side_effect=busy) as copy_once:
            result = await copier.copy(source, test_storage["output"] / "clip.mp4")

        assert result.kind == ErrorKind.IO_ERROR
        assert result.detail == "Unable to copy file after 3 attempts: Device or resource busy"
        assert copy_once.call_count == 3
        assert sleep.delays == [0.01, 0.01]

    @posix_only
    @pytest.mark.asyncio
    async def test_persistent_lock_exhausts_attempts(self, source, test_storage, caplog):
        sleep = RecordingSleep()
        copier = ResilientFileCopier(FAST_POLICY, sleep=sleep)
        dest = test_storage["output"] / "clip.mp4"

        with open(source, "rb") as holder:
            fcntl.flock(holder.fileno(), fcntl.LOCK_EX)
            result = await copier.copy(source, dest)

        assert result.kind == ErrorKind.IO_ERROR
        assert "after 3 attempts" in result.detail
        assert result.context["attempts"] == 3
        assert sleep.delays == [0.01, 0.01]
        assert not dest.exists()
        assert leftover_parts(test_storage["output"]) == []
        assert "File is being used by another process, retry 1/3" in caplog.text

    @posix_only
    @pytest.mark.asyncio
    async def test_lock_released_within_retry_window(self, source, test_storage):
        dest = test_storage["output"] / "clip.mp4"
        holder = open(source, "rb")
        fcntl.flock(holder.fileno(), fcntl.LOCK_EX)

        # The writer finishes while the copier is waiting for its first retry
        sleep = RecordingSleep(on_sleep=holder.close)
        try:
            result = await ResilientFileCopier(FAST_POLICY, sleep=sleep).copy(source, dest)
        finally:
            holder.close()

        assert result.ok
        assert sleep.delays == [0.01]
        assert dest.read_bytes() == source.read_bytes()

    @posix_only
    @pytest.mark.asyncio
    async def test_single_attempt_policy_never_sleeps(self, source, test_storage):
        sleep = RecordingSleep()
        copier = ResilientFileCopier(RetryPolicy(max_attempts=1, delay=5), sleep=sleep)

        with open(source, "rb") as holder:
            fcntl.flock(holder.fileno(), fcntl.LOCK_EX)
            result = await copier.copy(source, test_storage["output"] / "clip.mp4")

        assert result.kind == ErrorKind.IO_ERROR
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_copy_with_retry_helper(self, source, test_storage):
        dest = test_storage["output"] / "copy.mp4"
        result = await copy_with_retry(source, dest, FAST_POLICY)
        assert result.ok
        assert dest.read_bytes() == source.read_bytes()


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.delay == 1.0

    @pytest.mark.parametrize("kwargs", [{"max_attempts": 0}, {"delay": -1}])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)


class TestIsLockError:
    @pytest.mark.parametrize(
        "exc,expected",
        [
            (BlockingIOError(errno.EAGAIN, "Resource temporarily unavailable"), True),
            (PermissionError(errno.EACCES, "Permission denied"), False),
            (PermissionError(errno.EPERM, "Operation not permitted"), False),
            (OSError(errno.EBUSY, "Device or resource busy"), True),
            (OSError(errno.ETXTBSY, "Text file busy"), True),
            (FileNotFoundError(errno.ENOENT, "No such file or directory"), False),
            (OSError(errno.ENOSPC, "No space left on device"), False),
        ],
    )
    def test_classification(self, exc, expected):
        assert is_lock_error(exc) is expected

    def test_windows_sharing_violation(self):
        exc = OSError(errno.EINVAL, "sharing violation")
        exc.winerror = 32
        assert is_lock_error(exc)

    def test_windows_sharing_violation_reported_as_permission_error(self):
        exc = PermissionError(errno.EACCES, "The process cannot access the file")
        exc.winerror = 32
        assert is_lock_error(exc)

    def test_windows_access_denied_is_permanent(self):
        exc = PermissionError(errno.EACCES, "Access is denied")
        exc.winerror = 5
        assert not is_lock_error(exc)


class TestWriteUpload:
    def test_persists_stream(self, test_storage):
        data = b"video bytes" * 1000
        dest = test_storage["work"] / "nested" / "source.mov"
        candidate = UploadCandidate.from_bytes(data, "clip.mov", "video/quicktime")

        assert write_upload(candidate, dest) == dest
        assert dest.read_bytes() == data
        assert leftover_parts(dest.parent) == []


class TestPersistUpload:
    """Tests for persist_upload()."""

    @pytest.mark.asyncio
    async def test_persists_stream(self, test_storage):
        data = b"video bytes" * 1000
        dest = test_storage["work"] / "source.mov"
        candidate = UploadCandidate.from_bytes(data, "clip.mov", "video/quicktime")

        assert await persist_upload(candidate, dest) == dest
        assert dest.read_bytes() == data

    @pytest.mark.asyncio
    async def test_cancel_mid_write_leaves_nothing(self, test_storage):
        """The write thread outlives the cancel; its output must still be removed."""
        size = 8 * 1024 * 1024
        candidate = UploadCandidate(SlowStream(b"\0" * size), "clip.mov", "video/quicktime", size)
        dest = test_storage["work"] / "source.mov"

        task = asyncio.create_task(persist_upload(candidate, dest))
        await asyncio.sleep(0.1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not dest.exists()
        assert list(test_storage["work"].iterdir()) == []

"""
File copy with bounded retry for sources that are transiently locked.

An upload handed over by the multipart handler may still be held open (and
locked) by it when processing starts. Each attempt takes a non-blocking shared
lock on the source, so a writer holding an exclusive lock is detected instead
of copying a half-flushed file. Copies land in a temporary sibling and are
renamed into place, so the destination is never partial.
"""

import asyncio
import errno
import logging
import os
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional

from config import COPY_MAX_ATTEMPTS, COPY_RETRY_DELAY, UPLOAD_CHUNK_SIZE
from ingest.common import temp_sibling
from ingest.enums import ErrorKind
from ingest.results import Failure, Success, TranscodeResult, UploadCandidate

if sys.platform == "win32":
    # Windows reports sharing violations from open() itself
    fcntl = None
else:
    import fcntl

logger = logging.getLogger(__name__)

# errno values that mean "someone else holds this file right now"
LOCK_ERRNOS = frozenset([errno.EBUSY, errno.EAGAIN, errno.ETXTBSY])
# ERROR_SHARING_VIOLATION, ERROR_LOCK_VIOLATION
WINDOWS_SHARING_VIOLATIONS = frozenset([32, 33])


@dataclass(frozen=True)
class RetryPolicy:
    """Total attempts and fixed delay (seconds) between them."""

    max_attempts: int = COPY_MAX_ATTEMPTS
    delay: float = COPY_RETRY_DELAY

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.delay < 0:
            raise ValueError(f"delay must be non-negative, got {self.delay}")


def is_lock_error(exc: OSError) -> bool:
    """
    Whether an OSError is a sharing violation / locked-file condition worth retrying.

    A contended flock(LOCK_NB) raises BlockingIOError. Windows reports sharing
    violations as PermissionError carrying winerror 32/33; any other
    PermissionError is permanent.
    """
    if isinstance(exc, BlockingIOError):
        return True
    if getattr(exc, "winerror", None) in WINDOWS_SHARING_VIOLATIONS:
        return True
    if isinstance(exc, PermissionError):
        return False
    return exc.errno in LOCK_ERRNOS


def _lock_shared(fileobj) -> None:
    if fcntl is not None:
        fcntl.flock(fileobj.fileno(), fcntl.LOCK_SH | fcntl.LOCK_NB)


def _copy_once(source: Path, dest: Path) -> None:
    """Single copy attempt: source -> temp sibling -> atomic rename onto dest."""
    temp_path = temp_sibling(dest)
    try:
        with open(source, "rb") as src:
            _lock_shared(src)
            with open(temp_path, "xb") as dst:
                shutil.copyfileobj(src, dst, UPLOAD_CHUNK_SIZE)
        os.replace(temp_path, dest)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


class ResilientFileCopier:
    """Copies files, retrying while the source is locked by another process."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def copy(
        self,
        source: Path,
        dest: Path,
        content_type: str = "application/octet-stream",
    ) -> TranscodeResult:
        """
        Copy ``source`` to ``dest`` with bounded retry on lock contention.

        Args:
            source: File to copy
            dest: Destination path (parent directory must exist)
            content_type: Content type reported in the Success result

        Returns:
            Success(dest) or Failure(IO_ERROR). On failure ``dest`` is untouched.
        """
        source, dest = Path(source), Path(dest)
        attempts = self.policy.max_attempts
        last_error: Optional[OSError] = None

        for attempt in range(1, attempts + 1):
            try:
                await asyncio.to_thread(_copy_once, source, dest)
                return Success(dest, content_type)
            except OSError as e:
                if not is_lock_error(e):
                    logger.error(f"Failed to copy {source} to {dest}: {e}")
                    return Failure(
                        ErrorKind.IO_ERROR,
                        f"Unable to copy file: {e.strerror or e}",
                        {"source": str(source), "dest": str(dest)},
                    )
                last_error = e
                if attempt < attempts:
                    logger.warning(f"File is being used by another process, retry {attempt}/{attempts}")
                    await self._sleep(self.policy.delay)

        logger.error(f"Giving up copying {source} after {attempts} attempts: {last_error}")
        return Failure(
            ErrorKind.IO_ERROR,
            f"Unable to copy file after {attempts} attempts: {last_error.strerror or last_error}",
            {"source": str(source), "dest": str(dest), "attempts": attempts},
        )


async def copy_with_retry(
    source: Path,
    dest: Path,
    policy: Optional[RetryPolicy] = None,
) -> TranscodeResult:
    """Convenience wrapper: ``ResilientFileCopier(policy).copy(source, dest)``."""
    return await ResilientFileCopier(policy).copy(source, dest)


def write_upload(candidate: UploadCandidate, dest: Path) -> Path:
    """
    Persist an upload stream to ``dest`` (blocking; run it in a thread).

    The stream is written to a temporary sibling in chunks and renamed into
    place, so ``dest`` never holds a partial upload.
    """
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    temp_path = temp_sibling(dest)
    try:
        with open(temp_path, "xb") as dst:
            for chunk in candidate.iter_chunks(UPLOAD_CHUNK_SIZE):
                dst.write(chunk)
        os.replace(temp_path, dest)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise
    return dest


async def persist_upload(candidate: UploadCandidate, dest: Path) -> Path:
    """
    Run ``write_upload`` in a worker thread.

    The thread cannot be interrupted. On cancellation, wait for it to finish,
    delete ``dest``, then re-raise, so no file appears after the caller's
    cleanup has run.
    """
    dest = Path(dest)
    write = asyncio.ensure_future(asyncio.to_thread(write_upload, candidate, dest))
    try:
        return await asyncio.shield(write)
    except asyncio.CancelledError:
        try:
            await write
        except OSError as e:
            logger.warning(f"Persisting cancelled upload to {dest} failed: {e}")
        dest.unlink(missing_ok=True)
        raise

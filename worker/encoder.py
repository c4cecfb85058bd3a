"""
Process boundary around the external media encoder (ffmpeg).

Every call spawns a fresh process, captures stdout/stderr, and enforces a
wall-clock timeout. The process is always reaped: on timeout, on
cancellation and on any other exit path it is killed and waited for.

Components depend only on ``invoke(args, timeout)``, so tests can substitute
a fake gateway that records calls instead of running ffmpeg.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from config import FFMPEG_PATH, MAX_CONCURRENT_ENCODES

logger = logging.getLogger(__name__)

# How long to wait for a killed process to exit before giving up on it
KILL_WAIT_TIMEOUT = 5.0


class EncoderError(Exception):
    """Base exception for encoder invocation problems."""


class EncoderUnavailable(EncoderError):
    """Raised when the encoder executable cannot be started."""


class EncoderTimeout(EncoderError):
    """Raised when the encoder exceeds its wall-clock limit and is killed."""

    def __init__(self, timeout: float, elapsed: float):
        self.timeout = timeout
        self.elapsed = elapsed
        super().__init__(f"Encoder timed out after {elapsed:.0f} seconds (limit: {timeout:.0f}s)")


@dataclass(frozen=True)
class ProcessInvocation:
    """One finished encoder run. Never reused across calls."""

    executable: str
    args: Tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str
    elapsed: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


async def cleanup_process(process: asyncio.subprocess.Process, context: str = "Encoder") -> None:
    """
    Kill and reap a subprocess, handling race conditions where the process
    may exit between checking returncode and calling kill().

    Args:
        process: The asyncio subprocess to clean up
        context: Description for logging (e.g., "ffmpeg", "thumbnail")
    """
    if process.returncode is None:
        try:
            process.kill()
        except (ProcessLookupError, OSError):
            # Process already terminated
            pass
        try:
            await asyncio.wait_for(process.wait(), timeout=KILL_WAIT_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(f"{context} process did not terminate after kill")


class EncoderGateway:
    """Runs the encoder executable with bounded concurrency and a timeout."""

    def __init__(self, executable: Optional[str] = None, max_concurrent: Optional[int] = None):
        self.executable = executable or FFMPEG_PATH
        self._semaphore = asyncio.Semaphore(max_concurrent or MAX_CONCURRENT_ENCODES)

    async def invoke(self, args: Sequence[str], timeout: float) -> ProcessInvocation:
        """
        Run ``[executable, *args]`` and capture its output.

        Args:
            args: Arguments passed to the executable
            timeout: Maximum seconds to let the process run

        Returns:
            ProcessInvocation with exit code and decoded stdout/stderr

        Raises:
            EncoderUnavailable: If the executable cannot be started
            EncoderTimeout: If the process runs longer than ``timeout``
            asyncio.CancelledError: Propagated after the process is killed
        """
        async with self._semaphore:
            return await self._run(tuple(str(arg) for arg in args), timeout)

    async def _run(self, args: Tuple[str, ...], timeout: float) -> ProcessInvocation:
        context = self.executable
        logger.debug(f"Running {context} {' '.join(args)}")

        try:
            process = await asyncio.create_subprocess_exec(
                self.executable,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EncoderUnavailable(f"Cannot start encoder {self.executable!r}: {e}") from e

        loop = asyncio.get_running_loop()
        start_time = loop.time()
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            elapsed = loop.time() - start_time
            logger.error(f"TIMEOUT: {context} exceeded {timeout:.0f}s limit (ran for {elapsed:.0f}s)")
            raise EncoderTimeout(timeout, elapsed) from None
        finally:
            # Kills the process on timeout or cancellation; no-op once it has exited
            await cleanup_process(process, context)

        elapsed = loop.time() - start_time
        invocation = ProcessInvocation(
            executable=self.executable,
            args=args,
            exit_code=process.returncode,
            stdout=stdout.decode("utf-8", errors="ignore"),
            stderr=stderr.decode("utf-8", errors="ignore"),
            elapsed=elapsed,
        )
        if not invocation.succeeded:
            logger.error(f"{context} exited with code {invocation.exit_code}")
        return invocation

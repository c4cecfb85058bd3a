"""
Pytest fixtures for media ingest tests.
Provides scratch storage, generated images and a recording encoder gateway.

No test needs ffmpeg: components receive a FakeGateway that records the
arguments it was given and writes plausible output files.
"""

import io
import os
import tempfile
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

import pytest

# Set up test paths BEFORE importing config
_test_temp_dir = tempfile.mkdtemp()
os.environ["INGEST_TEST_MODE"] = "1"
os.environ["INGEST_WORK_DIR"] = str(Path(_test_temp_dir) / "work")

from PIL import Image  # noqa: E402

from worker.encoder import ProcessInvocation  # noqa: E402

IMAGE_SUFFIXES = {".jpg": "JPEG", ".jpeg": "JPEG", ".png": "PNG", ".webp": "WEBP"}

FAKE_MP4_DATA = b"\x00\x00\x00\x18ftypmp42\x00\x00\x00\x00mp42isom" + b"\x00" * 64


class SlowStream(io.BytesIO):
    """Upload stream whose reads block briefly, like a client trickling data in."""

    def __init__(self, data: bytes, delay: float = 0.05):
        super().__init__(data)
        self.delay = delay

    def read(self, size: int = -1) -> bytes:
        time.sleep(self.delay)
        return super().read(size)


def encode_image(width: int, height: int, fmt: str = "JPEG", mode: str = "RGB", color=None) -> bytes:
    """Encode a solid-colour image of the given size."""
    if color is None:
        color = (200, 30, 30, 128) if mode == "RGBA" else (200, 30, 30) if mode == "RGB" else 1
    img = Image.new(mode, (width, height), color)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


class FakeGateway:
    """
    Stand-in for EncoderGateway.

    Records every ``invoke`` call and, when the "process" succeeds, writes a
    file at the output path (always the last argument): a real JPEG/PNG for
    image outputs, a few MP4-looking bytes otherwise.
    """

    def __init__(
        self,
        exit_code: int = 0,
        stderr: str = "",
        write_output: bool = True,
        raises: Optional[BaseException] = None,
    ):
        self.exit_code = exit_code
        self.stderr = stderr
        self.write_output = write_output
        self.raises = raises
        self.calls: List[Tuple[Tuple[str, ...], float]] = []

    @property
    def call_args(self) -> List[Tuple[str, ...]]:
        return [args for args, _ in self.calls]

    async def invoke(self, args: Sequence[str], timeout: float) -> ProcessInvocation:
        args = tuple(str(arg) for arg in args)
        self.calls.append((args, timeout))
        if self.raises is not None:
            raise self.raises

        if self.write_output and self.exit_code == 0:
            output = Path(args[-1])
            fmt = IMAGE_SUFFIXES.get(output.suffix.lower())
            output.write_bytes(encode_image(320, 180, fmt) if fmt else FAKE_MP4_DATA)

        return ProcessInvocation(
            executable="ffmpeg",
            args=args,
            exit_code=self.exit_code,
            stdout="",
            stderr=self.stderr,
        )


@pytest.fixture
def fake_gateway() -> FakeGateway:
    """A gateway whose runs always succeed."""
    return FakeGateway()


@pytest.fixture(scope="function")
def test_storage(tmp_path: Path) -> dict:
    """Create test storage directories."""
    work_dir = tmp_path / "work"
    uploads_dir = tmp_path / "uploads"
    output_dir = tmp_path / "output"

    work_dir.mkdir(parents=True, exist_ok=True)
    uploads_dir.mkdir(parents=True, exist_ok=True)
    output_dir.mkdir(parents=True, exist_ok=True)

    return {
        "work": work_dir,
        "uploads": uploads_dir,
        "output": output_dir,
    }


@pytest.fixture
def make_image() -> Callable[..., bytes]:
    """Factory fixture: ``make_image(2000, 1000, "JPEG")`` -> encoded bytes."""
    return encode_image

"""
Video transcoding to the canonical MP4 container.

Inputs that are already ``.mp4`` are copied as-is (with retry on lock
contention); anything else is re-encoded by the external encoder into a
temporary file that is renamed into place only after a successful run.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import List, Optional

from config import (
    AUDIO_CODEC,
    ERROR_DETAIL_MAX_LENGTH,
    FFMPEG_TIMEOUT,
    VIDEO_CODEC,
    VIDEO_CRF,
    VIDEO_PRESET,
)
from ingest.classifier import CANONICAL_CONTENT_TYPES
from ingest.common import temp_sibling
from ingest.enums import ErrorKind, MediaCategory
from ingest.errors import stderr_tail
from ingest.results import Failure, Success, TranscodeResult
from worker.encoder import EncoderGateway, EncoderTimeout, EncoderUnavailable
from worker.file_copier import ResilientFileCopier

logger = logging.getLogger(__name__)

MP4_CONTENT_TYPE = CANONICAL_CONTENT_TYPES[MediaCategory.VIDEO]
CANONICAL_VIDEO_EXTENSION = ".mp4"


def build_conversion_args(input_path: Path, output_path: Path) -> List[str]:
    """Encoder arguments for converting ``input_path`` to H.264/AAC MP4."""
    return [
        "-hide_banner",
        "-nostdin",
        "-y",
        "-i",
        str(input_path),
        "-c:v",
        VIDEO_CODEC,
        "-preset",
        VIDEO_PRESET,
        "-crf",
        str(VIDEO_CRF),
        "-c:a",
        AUDIO_CODEC,
        # Move the moov atom to the front so playback can start before download completes
        "-movflags",
        "+faststart",
        str(output_path),
    ]


class VideoTranscoder:
    """Produces the canonical MP4 for a video file on disk."""

    def __init__(
        self,
        gateway: Optional[EncoderGateway] = None,
        copier: Optional[ResilientFileCopier] = None,
        timeout: Optional[float] = None,
    ):
        self.gateway = gateway or EncoderGateway()
        self.copier = copier or ResilientFileCopier()
        self.timeout = FFMPEG_TIMEOUT if timeout is None else timeout

    async def to_canonical_mp4(self, input_path: Path, output_folder: Path) -> TranscodeResult:
        """
        Convert (or copy) a video into ``output_folder`` as MP4.

        Args:
            input_path: Source video file
            output_folder: Directory for the result; created if missing

        Returns:
            Success(published_path, "video/mp4") or a Failure:
            IO_ERROR (missing input, filesystem errors), EMPTY_UPLOAD (zero-byte
            input), ENCODE_ERROR (encoder failed or unavailable), TIMEOUT

        Raises:
            asyncio.CancelledError: After the encoder is killed and partial
                output removed
        """
        input_path, output_folder = Path(input_path), Path(output_folder)

        try:
            size = input_path.stat().st_size
        except FileNotFoundError:
            return Failure(ErrorKind.IO_ERROR, f"Input video not found: {input_path.name}")
        except OSError as e:
            return Failure(ErrorKind.IO_ERROR, f"Cannot read input video: {e.strerror or e}")
        if size == 0:
            logger.warning(f"Refusing to convert empty video {input_path.name}")
            return Failure(ErrorKind.EMPTY_UPLOAD, "Input video is empty")

        try:
            output_folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot create output folder {output_folder}: {e}")
            return Failure(ErrorKind.IO_ERROR, f"Cannot create output folder: {e.strerror or e}")

        if input_path.suffix.lower() == CANONICAL_VIDEO_EXTENSION:
            return await self._copy_canonical(input_path, output_folder / input_path.name)

        return await self._convert(input_path, output_folder / f"{input_path.stem}{CANONICAL_VIDEO_EXTENSION}")

    async def _copy_canonical(self, input_path: Path, dest: Path) -> TranscodeResult:
        if dest.exists() and os.path.samefile(input_path, dest):
            logger.debug(f"{input_path} is already in place, nothing to copy")
            return Success(dest, MP4_CONTENT_TYPE)

        logger.info(f"{input_path.name} is already MP4, copying without re-encoding")
        result = await self.copier.copy(input_path, dest, MP4_CONTENT_TYPE)
        if not result.ok:
            logger.error(f"Error copying MP4 {input_path.name}: {result.detail}")
        return result

    async def _convert(self, input_path: Path, dest: Path) -> TranscodeResult:
        temp_path = temp_sibling(dest, CANONICAL_VIDEO_EXTENSION)
        published = False
        logger.info(f"Converting {input_path.name} to MP4")

        try:
            invocation = await self.gateway.invoke(build_conversion_args(input_path, temp_path), timeout=self.timeout)

            if not invocation.succeeded:
                return Failure(
                    ErrorKind.ENCODE_ERROR,
                    f"FFmpeg conversion failed: {stderr_tail(invocation.stderr, ERROR_DETAIL_MAX_LENGTH)}",
                    {"exit_code": invocation.exit_code},
                )

            if not temp_path.exists() or temp_path.stat().st_size == 0:
                return Failure(ErrorKind.ENCODE_ERROR, "Encoder reported success but produced no output")

            os.replace(temp_path, dest)
            published = True
            logger.info(f"Converted {input_path.name} to {dest.name} in {invocation.elapsed:.1f}s")
            return Success(dest, MP4_CONTENT_TYPE)

        except EncoderTimeout as e:
            return Failure(ErrorKind.TIMEOUT, str(e), {"timeout": e.timeout})
        except EncoderUnavailable as e:
            logger.error(str(e))
            return Failure(ErrorKind.ENCODE_ERROR, str(e))
        except asyncio.CancelledError:
            logger.warning(f"Conversion of {input_path.name} cancelled")
            raise
        except OSError as e:
            logger.error(f"Filesystem error converting {input_path.name}: {e}")
            return Failure(ErrorKind.IO_ERROR, f"Error converting video: {e.strerror or e}")
        except Exception as e:
            logger.exception(f"Unexpected error converting {input_path.name}: {e}")
            return Failure(ErrorKind.ENCODE_ERROR, f"Error converting video: {e}")
        finally:
            if not published:
                temp_path.unlink(missing_ok=True)

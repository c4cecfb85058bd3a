"""
Single-frame extraction from a video.
"""

import asyncio
import logging
import os
from datetime import timedelta
from pathlib import Path
from typing import List, Optional, Union

from config import ERROR_DETAIL_MAX_LENGTH, THUMBNAIL_FORMAT, THUMBNAIL_TIMEOUT, WORK_DIR
from ingest.classifier import allowed_extensions
from ingest.common import temp_sibling, unique_token
from ingest.enums import ErrorKind, MediaCategory
from ingest.errors import stderr_tail
from ingest.results import Failure, Success, TranscodeResult, UploadCandidate
from worker.encoder import EncoderGateway, EncoderTimeout, EncoderUnavailable
from worker.file_copier import persist_upload

logger = logging.getLogger(__name__)

DEFAULT_THUMBNAIL_TIMESTAMP = timedelta(seconds=1)

IMAGE_FORMAT_CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
}


def format_timestamp(timestamp: Union[timedelta, float, int]) -> str:
    """
    Format a position as the encoder's ``HH:MM:SS[.fff]`` time syntax.

    >>> format_timestamp(timedelta(seconds=1))
    '00:00:01'
    >>> format_timestamp(3725.5)
    '01:02:05.500'
    """
    if isinstance(timestamp, timedelta):
        timestamp = timestamp.total_seconds()
    total_ms = round(float(timestamp) * 1000)
    if total_ms < 0:
        raise ValueError(f"Timestamp must not be negative: {timestamp}")
    seconds, millis = divmod(total_ms, 1000)
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    formatted = f"{hours:02d}:{minutes:02d}:{seconds:02d}"
    if millis:
        formatted += f".{millis:03d}"
    return formatted


def build_thumbnail_args(video_path: Path, output_path: Path, timestamp: str) -> List[str]:
    # Input seeking (-ss before -i) jumps to the nearest keyframe without decoding up to it
    return [
        "-hide_banner",
        "-nostdin",
        "-y",
        "-ss",
        timestamp,
        "-i",
        str(video_path),
        "-frames:v",
        "1",
        str(output_path),
    ]


class ThumbnailExtractor:
    """Extracts one still frame from a video via the external encoder."""

    def __init__(
        self,
        gateway: Optional[EncoderGateway] = None,
        work_dir: Optional[Path] = None,
        timeout: Optional[float] = None,
        image_format: Optional[str] = None,
    ):
        self.gateway = gateway or EncoderGateway()
        self.work_dir = Path(work_dir or WORK_DIR)
        self.timeout = THUMBNAIL_TIMEOUT if timeout is None else timeout
        self.image_format = (image_format or THUMBNAIL_FORMAT).lstrip(".").lower()

    @property
    def content_type(self) -> str:
        return IMAGE_FORMAT_CONTENT_TYPES.get(self.image_format, f"image/{self.image_format}")

    async def extract_thumbnail(
        self,
        video: Union[UploadCandidate, Path],
        timestamp: Union[timedelta, float] = DEFAULT_THUMBNAIL_TIMESTAMP,
    ) -> TranscodeResult:
        """
        Extract the frame at ``timestamp`` as an image file.

        An UploadCandidate is first written to the work directory under a
        random name and deleted afterwards; a Path is read in place and the
        image is published beside it as ``<stem>.<format>``.

        Args:
            video: Upload or local video file
            timestamp: Position of the frame (default 1 second)

        Returns:
            Success(image_path, content_type) or Failure(EMPTY_UPLOAD / IO_ERROR /
            ENCODE_ERROR / TIMEOUT)
        """
        try:
            position = format_timestamp(timestamp)
        except ValueError as e:
            # Rejected before the encoder runs
            return Failure(ErrorKind.ENCODE_ERROR, f"Invalid timestamp: {e}", {"timestamp": str(timestamp)})

        if isinstance(video, UploadCandidate):
            if not video.length:
                return Failure(ErrorKind.EMPTY_UPLOAD, "No video uploaded (zero-length upload)")
            return await self._extract_from_upload(video, position)

        video_path = Path(video)
        try:
            size = video_path.stat().st_size
        except FileNotFoundError:
            return Failure(ErrorKind.IO_ERROR, f"Video not found: {video_path.name}")
        except OSError as e:
            return Failure(ErrorKind.IO_ERROR, f"Cannot read video: {e.strerror or e}")
        if size == 0:
            return Failure(ErrorKind.EMPTY_UPLOAD, "Video file is empty")
        return await self._extract(video_path, position)

    async def _extract_from_upload(self, candidate: UploadCandidate, position: str) -> TranscodeResult:
        # Keep a known video extension as a hint for the demuxer; never reuse the client's name
        extension = candidate.extension if candidate.extension in allowed_extensions(MediaCategory.VIDEO) else ""
        source_path = self.work_dir / f"{unique_token()}{extension}"
        try:
            try:
                await persist_upload(candidate, source_path)
            except OSError as e:
                logger.error(f"Failed to persist upload {candidate.filename!r}: {e}")
                return Failure(ErrorKind.IO_ERROR, f"Unable to save uploaded video: {e.strerror or e}")
            return await self._extract(source_path, position)
        finally:
            source_path.unlink(missing_ok=True)

    async def _extract(self, video_path: Path, position: str) -> TranscodeResult:
        dest = video_path.with_name(f"{video_path.stem}.{self.image_format}")
        temp_path = temp_sibling(dest)
        published = False

        try:
            invocation = await self.gateway.invoke(
                build_thumbnail_args(video_path, temp_path, position), timeout=self.timeout
            )
            if not invocation.succeeded:
                return Failure(
                    ErrorKind.ENCODE_ERROR,
                    f"Thumbnail generation failed: {stderr_tail(invocation.stderr, ERROR_DETAIL_MAX_LENGTH)}",
                    {"exit_code": invocation.exit_code, "timestamp": position},
                )
            if not temp_path.exists() or temp_path.stat().st_size == 0:
                logger.warning(f"No frame extracted from {video_path.name} at {position}")
                return Failure(
                    ErrorKind.ENCODE_ERROR,
                    f"No frame at {position} (timestamp may be past the end of the video)",
                    {"timestamp": position},
                )

            os.replace(temp_path, dest)
            published = True
            logger.info(f"Generated thumbnail {dest.name} at {position}")
            return Success(dest, self.content_type)

        except EncoderTimeout as e:
            return Failure(ErrorKind.TIMEOUT, f"Thumbnail generation timed out after {e.timeout:g}s")
        except EncoderUnavailable as e:
            logger.error(str(e))
            return Failure(ErrorKind.ENCODE_ERROR, str(e))
        except OSError as e:
            logger.error(f"Filesystem error generating thumbnail for {video_path.name}: {e}")
            return Failure(ErrorKind.IO_ERROR, f"Error generating thumbnail: {e.strerror or e}")
        except Exception as e:
            logger.exception(f"Unexpected error generating thumbnail for {video_path.name}: {e}")
            return Failure(ErrorKind.ENCODE_ERROR, f"Error generating thumbnail: {e}")
        finally:
            if not published:
                temp_path.unlink(missing_ok=True)

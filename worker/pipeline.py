"""
End-to-end ingest of a single upload.

Images: validate, then transcode to WebP.
Videos: validate, persist the upload, convert to MP4, extract a thumbnail
frame from the MP4 and frame it as a WebP poster. Every call works in its own
randomly named folder, which is removed again if any step fails.
"""

import asyncio
import logging
import shutil
from datetime import timedelta
from pathlib import Path
from typing import Optional, Union

from config import WORK_DIR
from ingest.classifier import allowed_extensions, classify_upload
from ingest.common import unique_token
from ingest.dimensions import dimensions_for
from ingest.enums import ErrorKind, MediaCategory
from ingest.results import (
    Failure,
    IngestedVideo,
    TranscodeResult,
    UploadCandidate,
    VideoIngestResult,
)
from ingest.validation import validate
from worker.encoder import EncoderGateway
from worker.file_copier import ResilientFileCopier, persist_upload
from worker.image_transcoder import encode_webp, to_canonical_webp_async
from worker.thumbnail import DEFAULT_THUMBNAIL_TIMESTAMP, ThumbnailExtractor
from worker.video_transcoder import VideoTranscoder

logger = logging.getLogger(__name__)


class MediaIngestPipeline:
    """Validates and transcodes uploads into their canonical forms."""

    def __init__(
        self,
        gateway: Optional[EncoderGateway] = None,
        work_dir: Optional[Path] = None,
        copier: Optional[ResilientFileCopier] = None,
    ):
        self.gateway = gateway or EncoderGateway()
        self.work_dir = Path(work_dir or WORK_DIR)
        self.videos = VideoTranscoder(self.gateway, copier)
        self.thumbnails = ThumbnailExtractor(self.gateway, self.work_dir)

    async def ingest(
        self,
        candidate: UploadCandidate,
        kind: Optional[MediaCategory] = None,
    ) -> Union[TranscodeResult, VideoIngestResult]:
        """Ingest an upload as whatever its declared type says it is.

        If ``kind`` is given, an upload of the other category is rejected
        with WRONG_CATEGORY.
        """
        category = classify_upload(candidate)
        if isinstance(category, Failure):
            return category
        if kind is not None and MediaCategory(kind) != category:
            return Failure(
                ErrorKind.WRONG_CATEGORY,
                f"Expected {MediaCategory(kind).value} upload, got {category.value} ({candidate.content_type})",
                {"expected": MediaCategory(kind).value, "category": category.value},
            )
        if category == MediaCategory.IMAGE:
            return await self.ingest_image(candidate)
        return await self.ingest_video(candidate)

    async def ingest_image(self, candidate: UploadCandidate) -> TranscodeResult:
        verdict = validate(candidate, MediaCategory.IMAGE)
        if not verdict.ok:
            return verdict
        return await to_canonical_webp_async(candidate)

    async def ingest_video(
        self,
        candidate: UploadCandidate,
        timestamp: Union[timedelta, float] = DEFAULT_THUMBNAIL_TIMESTAMP,
    ) -> VideoIngestResult:
        """
        Convert a video upload and derive its thumbnail and poster.

        Args:
            candidate: The uploaded video
            timestamp: Position of the thumbnail frame

        Returns:
            IngestedVideo with paths inside a fresh folder under the work
            directory (the caller moves them to permanent storage), or the
            first Failure encountered
        """
        verdict = validate(candidate, MediaCategory.VIDEO)
        if not verdict.ok:
            return verdict

        token = unique_token()
        output_folder = self.work_dir / token
        extension = candidate.extension if candidate.extension in allowed_extensions(MediaCategory.VIDEO) else ""
        source_path = self.work_dir / f"{token}{extension}"
        succeeded = False
        logger.info(f"Ingesting video {candidate.filename!r} ({verdict.size} bytes) as {token}")

        try:
            try:
                await persist_upload(candidate, source_path)
            except OSError as e:
                logger.error(f"Failed to save upload {candidate.filename!r}: {e}")
                return Failure(ErrorKind.IO_ERROR, f"Unable to save uploaded video: {e.strerror or e}")

            converted = await self.videos.to_canonical_mp4(source_path, output_folder)
            if not converted.ok:
                return converted

            thumbnail = await self.thumbnails.extract_thumbnail(converted.payload, timestamp)
            if not thumbnail.ok:
                return thumbnail

            try:
                frame = await asyncio.to_thread(thumbnail.payload.read_bytes)
            except OSError as e:
                return Failure(ErrorKind.IO_ERROR, f"Unable to read thumbnail: {e.strerror or e}")
            poster = await asyncio.to_thread(encode_webp, frame, dimensions_for(MediaCategory.VIDEO))
            if not poster.ok:
                return poster

            succeeded = True
            logger.info(f"Ingested video {candidate.filename!r} -> {converted.payload.name}")
            return IngestedVideo(
                video_path=converted.payload,
                thumbnail_path=thumbnail.payload,
                poster=poster.payload,
                content_type=converted.content_type,
                poster_content_type=poster.content_type,
            )
        finally:
            source_path.unlink(missing_ok=True)
            if not succeeded:
                shutil.rmtree(output_folder, ignore_errors=True)

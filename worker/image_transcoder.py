"""
Image transcoding to the canonical still format.

Decodes any raster format Pillow understands, stretches it to the canonical
dimensions of its category (no aspect-ratio preservation) and re-encodes it
as lossy WebP. Decode and encode failures are deterministic, so there is no
retry: each is reported once as a typed Failure.
"""

import asyncio
import logging
from io import BytesIO
from typing import Optional

from PIL import Image, UnidentifiedImageError

from config import WEBP_QUALITY
from ingest.classifier import CANONICAL_CONTENT_TYPES, classify_upload
from ingest.dimensions import CanonicalDimensions, dimensions_for
from ingest.enums import ErrorKind, MediaCategory
from ingest.results import Failure, Success, TranscodeResult, UploadCandidate

logger = logging.getLogger(__name__)

WEBP_CONTENT_TYPE = CANONICAL_CONTENT_TYPES[MediaCategory.IMAGE]


def _convert_for_webp(img: Image.Image) -> Image.Image:
    """
    Convert an image to a mode the WebP encoder accepts.

    Transparency is kept (RGBA); palette, greyscale, CMYK and high bit-depth
    modes become RGB.
    """
    if img.mode in ("RGB", "RGBA"):
        return img
    if img.mode in ("LA", "PA") or (img.mode == "P" and "transparency" in img.info):
        return img.convert("RGBA")
    return img.convert("RGB")


def encode_webp(
    data: bytes,
    dimensions: CanonicalDimensions,
    quality: Optional[int] = None,
) -> TranscodeResult:
    """
    Decode image bytes, stretch to ``dimensions`` and encode as WebP.

    Args:
        data: Encoded source image (any format Pillow can open)
        dimensions: Exact output size
        quality: WebP quality 1-100 (default WEBP_QUALITY, 75)

    Returns:
        Success(webp_bytes, "image/webp"), or Failure(DECODE_ERROR / ENCODE_ERROR)
    """
    quality = WEBP_QUALITY if quality is None else quality

    try:
        with Image.open(BytesIO(data)) as img:
            # Force a full decode so truncated files fail here, not at resize
            img.load()
            source_size = img.size
            resized = _convert_for_webp(img).resize(dimensions.size, Image.Resampling.LANCZOS)
    except Image.DecompressionBombError as e:
        logger.warning(f"Refusing to decode oversized image: {e}")
        return Failure(ErrorKind.DECODE_ERROR, f"Image exceeds decode pixel limit: {e}")
    except UnidentifiedImageError:
        return Failure(ErrorKind.DECODE_ERROR, "Unrecognized or unsupported image data")
    except (OSError, ValueError, SyntaxError) as e:
        # Truncated/corrupt data raises OSError; malformed headers can raise the others
        logger.warning(f"Failed to decode image: {e}")
        return Failure(ErrorKind.DECODE_ERROR, f"Corrupt or truncated image data: {e}")

    buffer = BytesIO()
    try:
        resized.save(buffer, format="WEBP", quality=quality)
    except (OSError, ValueError, KeyError) as e:
        logger.error(f"Failed to encode WebP: {e}")
        return Failure(ErrorKind.ENCODE_ERROR, f"WebP encoding failed: {e}")

    logger.debug(f"Encoded {source_size[0]}x{source_size[1]} image to {dimensions} WebP ({buffer.tell()} bytes)")
    return Success(buffer.getvalue(), WEBP_CONTENT_TYPE)


def to_canonical_webp(candidate: UploadCandidate) -> TranscodeResult:
    """Transcode an image upload to WebP at the canonical image dimensions."""
    category = classify_upload(candidate)
    if isinstance(category, Failure):
        return category
    if category != MediaCategory.IMAGE:
        return Failure(
            ErrorKind.WRONG_CATEGORY,
            f"Expected an image upload, got {category.value} ({candidate.content_type})",
            {"category": category.value},
        )

    try:
        data = candidate.read()
    except OSError as e:
        logger.error(f"Failed to read upload {candidate.filename!r}: {e}")
        return Failure(ErrorKind.IO_ERROR, f"Unable to read upload: {e}")

    try:
        result = encode_webp(data, dimensions_for(MediaCategory.IMAGE))
    except Exception as e:
        logger.exception(f"Unexpected error converting {candidate.filename!r} to WebP: {e}")
        return Failure(ErrorKind.ENCODE_ERROR, f"Error converting image to WebP: {e}")

    if result.ok:
        logger.info(f"Converted {candidate.filename!r} to WebP ({len(result.payload)} bytes)")
    else:
        logger.warning(f"Image conversion failed for {candidate.filename!r}: {result.detail}")
    return result


async def to_canonical_webp_async(candidate: UploadCandidate) -> TranscodeResult:
    """Run ``to_canonical_webp`` in a worker thread to keep the event loop responsive."""
    return await asyncio.to_thread(to_canonical_webp, candidate)

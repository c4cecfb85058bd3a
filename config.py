import logging
import math
import os
from pathlib import Path
from typing import Optional

# Configure logger for config module warnings
logger = logging.getLogger(__name__)


def get_int_env(
    name: str,
    default: int,
    min_val: Optional[int] = None,
    max_val: Optional[int] = None,
) -> int:
    """Get an integer from environment variable with error handling and validation.

    Args:
        name: Environment variable name
        default: Default value if env var is missing or invalid
        min_val: Optional minimum value (inclusive)
        max_val: Optional maximum value (inclusive)

    Returns:
        Parsed integer value, or default if parsing fails or value is out of range
    """
    value = os.getenv(name)
    if value is None:
        return default

    try:
        result = int(value)
    except ValueError:
        logger.warning(f"Invalid {name}='{value}', using default {default}")
        return default

    # Range validation (only applied to user-provided values)
    if min_val is not None and result < min_val:
        logger.warning(f"{name}={result} is below minimum {min_val}, using default {default}")
        return default
    if max_val is not None and result > max_val:
        logger.warning(f"{name}={result} is above maximum {max_val}, using default {default}")
        return default

    return result


def get_float_env(
    name: str,
    default: float,
    min_val: Optional[float] = None,
    max_val: Optional[float] = None,
) -> float:
    """Get a float from environment variable with error handling and validation.

    Args:
        name: Environment variable name
        default: Default value if env var is missing or invalid
        min_val: Optional minimum value (inclusive)
        max_val: Optional maximum value (inclusive)

    Returns:
        Parsed float value, or default if parsing fails or value is out of range
    """
    value = os.getenv(name)
    if value is None:
        return default

    try:
        result = float(value)
    except ValueError:
        logger.warning(f"Invalid {name}='{value}', using default {default}")
        return default

    # Reject special float values (inf, -inf, nan)
    if math.isinf(result) or math.isnan(result):
        logger.warning(f"Invalid {name}='{value}' (special float), using default {default}")
        return default

    if min_val is not None and result < min_val:
        logger.warning(f"{name}={result} is below minimum {min_val}, using default {default}")
        return default
    if max_val is not None and result > max_val:
        logger.warning(f"{name}={result} is above maximum {max_val}, using default {default}")
        return default

    return result


def get_bool_env(name: str, default: bool) -> bool:
    """Get a boolean flag from environment variable ("true"/"1"/"yes" are truthy)."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes")


# Paths - configurable via environment variables
UPLOADS_ROOT = Path(os.getenv("INGEST_UPLOADS_ROOT", "/var/lib/media-ingest/uploads"))
# Scratch space for persisted uploads, conversions and extracted frames
WORK_DIR = Path(os.getenv("INGEST_WORK_DIR", str(UPLOADS_ROOT / "work")))

# Ensure directories exist (skip in test/CI environments)
if not os.environ.get("INGEST_TEST_MODE"):
    try:
        WORK_DIR.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        logger.warning(f"Cannot create work directory {WORK_DIR}; it will be created on demand")

# Upload size limits
MAX_IMAGE_UPLOAD_SIZE = get_int_env("INGEST_MAX_IMAGE_SIZE", 5 * 1024 * 1024, min_val=1)  # 5 MB
MAX_VIDEO_UPLOAD_SIZE = get_int_env("INGEST_MAX_VIDEO_SIZE", 100 * 1024 * 1024, min_val=1)  # 100 MB
UPLOAD_CHUNK_SIZE = get_int_env("INGEST_UPLOAD_CHUNK_SIZE", 1024 * 1024, min_val=1024)  # 1 MB chunks

# When true, a filename extension must also match the declared MIME type,
# not only the category (e.g. "photo.png" declared as image/jpeg is rejected)
STRICT_EXTENSION_MATCH = get_bool_env("INGEST_STRICT_EXTENSION_MATCH", False)

# Remote media reference probe (HEAD request)
URL_PROBE_TIMEOUT = get_float_env("INGEST_URL_PROBE_TIMEOUT", 10.0, min_val=0.1)

# Image encoding
WEBP_QUALITY = get_int_env("INGEST_WEBP_QUALITY", 75, min_val=1, max_val=100)

# External encoder (ffmpeg) settings
FFMPEG_PATH = os.getenv("INGEST_FFMPEG_PATH", "ffmpeg")
FFMPEG_TIMEOUT = get_float_env("INGEST_FFMPEG_TIMEOUT", 600.0, min_val=1.0)
THUMBNAIL_TIMEOUT = get_float_env("INGEST_THUMBNAIL_TIMEOUT", 60.0, min_val=1.0)
# Concurrent encoder processes per gateway
MAX_CONCURRENT_ENCODES = get_int_env("INGEST_MAX_CONCURRENT_ENCODES", 2, min_val=1)
VIDEO_CODEC = os.getenv("INGEST_VIDEO_CODEC", "libx264")
AUDIO_CODEC = os.getenv("INGEST_AUDIO_CODEC", "aac")
VIDEO_PRESET = os.getenv("INGEST_VIDEO_PRESET", "veryfast")
VIDEO_CRF = get_int_env("INGEST_VIDEO_CRF", 23, min_val=0, max_val=51)
THUMBNAIL_FORMAT = os.getenv("INGEST_THUMBNAIL_FORMAT", "jpg").lstrip(".").lower()

# Resilient copy retry policy
COPY_MAX_ATTEMPTS = get_int_env("INGEST_COPY_MAX_ATTEMPTS", 3, min_val=1)
COPY_RETRY_DELAY = get_float_env("INGEST_COPY_RETRY_DELAY", 1.0, min_val=0.0)

# Error detail truncation limit (encoder stderr tails)
ERROR_DETAIL_MAX_LENGTH = get_int_env("INGEST_ERROR_DETAIL_MAX_LENGTH", 500, min_val=10)

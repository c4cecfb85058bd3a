"""
Content classification by declared MIME type.

Classification trusts the declared content type only; file bytes are never
sniffed here. The decoder is the first component that looks at actual bytes.
"""

import logging
from types import MappingProxyType
from typing import FrozenSet, Mapping, Optional, Union

from ingest.common import normalize_content_type
from ingest.enums import ErrorKind, MediaCategory
from ingest.results import Failure, UploadCandidate

logger = logging.getLogger(__name__)

CONTENT_TYPE_CATEGORIES: Mapping[str, MediaCategory] = MappingProxyType(
    {
        # Images
        "image/jpeg": MediaCategory.IMAGE,
        "image/jpg": MediaCategory.IMAGE,  # non-standard, sent by some browsers
        "image/png": MediaCategory.IMAGE,
        "image/gif": MediaCategory.IMAGE,
        "image/webp": MediaCategory.IMAGE,
        "image/bmp": MediaCategory.IMAGE,
        # Videos
        "video/mp4": MediaCategory.VIDEO,
        "video/webm": MediaCategory.VIDEO,
        "video/ogg": MediaCategory.VIDEO,
        "video/avi": MediaCategory.VIDEO,
        "video/x-msvideo": MediaCategory.VIDEO,
        "video/x-flv": MediaCategory.VIDEO,
        "video/x-matroska": MediaCategory.VIDEO,
        "video/quicktime": MediaCategory.VIDEO,  # .mov
    }
)

CATEGORY_EXTENSIONS: Mapping[MediaCategory, FrozenSet[str]] = MappingProxyType(
    {
        MediaCategory.IMAGE: frozenset([".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp"]),
        MediaCategory.VIDEO: frozenset([".mp4", ".webm", ".ogg", ".ogv", ".avi", ".mov", ".flv", ".mkv"]),
    }
)

# Used only when strict extension matching is enabled
MIME_TO_EXTENSIONS: Mapping[str, FrozenSet[str]] = MappingProxyType(
    {
        "image/jpeg": frozenset([".jpg", ".jpeg"]),
        "image/jpg": frozenset([".jpg", ".jpeg"]),
        "image/png": frozenset([".png"]),
        "image/gif": frozenset([".gif"]),
        "image/webp": frozenset([".webp"]),
        "image/bmp": frozenset([".bmp"]),
        "video/mp4": frozenset([".mp4"]),
        "video/webm": frozenset([".webm"]),
        "video/ogg": frozenset([".ogg", ".ogv"]),
        "video/avi": frozenset([".avi"]),
        "video/x-msvideo": frozenset([".avi"]),
        "video/x-flv": frozenset([".flv"]),
        "video/x-matroska": frozenset([".mkv"]),
        "video/quicktime": frozenset([".mov"]),
    }
)

CANONICAL_CONTENT_TYPES: Mapping[MediaCategory, str] = MappingProxyType(
    {
        MediaCategory.IMAGE: "image/webp",
        MediaCategory.VIDEO: "video/mp4",
    }
)


def allowed_content_types(category: MediaCategory) -> FrozenSet[str]:
    return frozenset(ct for ct, cat in CONTENT_TYPE_CATEGORIES.items() if cat == category)


def allowed_extensions(category: MediaCategory) -> FrozenSet[str]:
    return CATEGORY_EXTENSIONS[category]


def extension_matches_content_type(extension: str, content_type: Optional[str]) -> bool:
    """Whether a filename extension is one of the usual extensions for a MIME type."""
    normalized = normalize_content_type(content_type)
    return extension.lower() in MIME_TO_EXTENSIONS.get(normalized or "", frozenset())


def classify(content_type: Optional[str]) -> Union[MediaCategory, Failure]:
    """Map a declared content type to a media category.

    Args:
        content_type: Declared MIME type, possibly with parameters or None

    Returns:
        The MediaCategory, or Failure(UNSUPPORTED_TYPE) for unknown/absent types
    """
    normalized = normalize_content_type(content_type)
    category = CONTENT_TYPE_CATEGORIES.get(normalized) if normalized else None
    if category is None:
        logger.warning(f"Invalid file type: {content_type!r}")
        return Failure(
            ErrorKind.UNSUPPORTED_TYPE,
            f"Unsupported content type: {content_type or 'none declared'}",
            {"content_type": content_type},
        )
    return category


def classify_upload(candidate: UploadCandidate) -> Union[MediaCategory, Failure]:
    """Classify an upload, rejecting empty uploads before looking at the type."""
    if not candidate.length:
        logger.warning("Empty file uploaded")
        return Failure(ErrorKind.EMPTY_UPLOAD, "No file uploaded (zero-length upload)")
    return classify(candidate.content_type)

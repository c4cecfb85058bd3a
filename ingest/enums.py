"""
Centralized enums for media categories and failure kinds.
Using str-based enums so values serialize cleanly for callers.
"""

from enum import Enum


class MediaCategory(str, Enum):
    """Semantic category of an upload, derived from its declared content type."""

    IMAGE = "image"
    VIDEO = "video"


class ErrorKind(str, Enum):
    """Stable failure kinds returned to callers instead of raw exceptions."""

    EMPTY_UPLOAD = "empty_upload"
    UNSUPPORTED_TYPE = "unsupported_type"
    EXTENSION_MISMATCH = "extension_mismatch"
    FILE_TOO_LARGE = "file_too_large"
    WRONG_CATEGORY = "wrong_category"
    DECODE_ERROR = "decode_error"
    ENCODE_ERROR = "encode_error"
    IO_ERROR = "io_error"
    INVALID_URL = "invalid_url"
    UNREACHABLE = "unreachable"
    WRONG_CONTENT_TYPE = "wrong_content_type"
    TIMEOUT = "timeout"  # URL probe or encoder wall-clock limit
    NETWORK_ERROR = "network_error"

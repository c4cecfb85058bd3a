"""
Error handling utilities for failure details and display messages.

Failure details may carry encoder stderr or filesystem paths, which are useful
in logs but must not be shown to end users. ``user_message`` maps each
failure kind to a stable, friendly message instead.
"""

import logging
import re
from typing import Optional

from ingest.enums import ErrorKind

logger = logging.getLogger(__name__)

# Patterns that indicate internal details
INTERNAL_PATTERNS = [
    r"/home/\w+/",  # Home directory paths
    r"/tmp/\w+",  # Temp paths
    r"/var/\w+/",  # Var paths
    r"[A-Za-z]:\\",  # Windows drive paths
    r'File "[^"]+\.py"',  # Python file paths
    r"ffmpeg(\.exe)?:",  # Encoder diagnostics
    r"Permission denied",
    r"No such file or directory",
]

# Generic user-friendly messages per failure kind
ERROR_MESSAGES = {
    ErrorKind.EMPTY_UPLOAD: "No file uploaded.",
    ErrorKind.UNSUPPORTED_TYPE: "Invalid file type. Only images and videos are allowed.",
    ErrorKind.EXTENSION_MISMATCH: "The file extension does not match an allowed file type.",
    ErrorKind.FILE_TOO_LARGE: "File is too large.",
    ErrorKind.WRONG_CATEGORY: "This upload is not the expected kind of media.",
    ErrorKind.DECODE_ERROR: "The file could not be read. It may be corrupted or in an unsupported format.",
    ErrorKind.ENCODE_ERROR: "Media processing failed. Please try uploading again.",
    ErrorKind.IO_ERROR: "A file access error occurred. Please try again.",
    ErrorKind.INVALID_URL: "Invalid URL format.",
    ErrorKind.UNREACHABLE: "The URL is not accessible.",
    ErrorKind.WRONG_CONTENT_TYPE: "The URL does not point to a supported media file.",
    ErrorKind.TIMEOUT: "The operation timed out. Please try again.",
    ErrorKind.NETWORK_ERROR: "Could not validate the URL. Please check the URL and try again.",
}

GENERAL_MESSAGE = "An error occurred while processing your upload. Please try again."


def truncate_error(error: Optional[str], max_length: int) -> str:
    """Truncate an error message to ``max_length`` characters, marking the cut."""
    if not error:
        return ""
    error = error.strip()
    if len(error) <= max_length:
        return error
    return error[: max(0, max_length - 3)] + "..."


def stderr_tail(stderr: Optional[str], max_length: int) -> str:
    """Keep the end of encoder stderr, where ffmpeg reports the actual error."""
    if not stderr:
        return ""
    stderr = stderr.strip()
    if len(stderr) <= max_length:
        return stderr
    return "..." + stderr[-max(0, max_length - 3):]


def contains_internal_details(text: str) -> bool:
    return any(re.search(pattern, text, re.IGNORECASE) for pattern in INTERNAL_PATTERNS)


def user_message(failure) -> str:
    """
    Build a display-safe message for a failure.

    File size failures include the human-readable sizes; every other kind maps
    to a fixed message so internal details in ``failure.detail`` never leak.

    Args:
        failure: A Failure (anything with ``kind``, ``detail`` and ``context``)

    Returns:
        A message suitable for showing to the uploader
    """
    kind = failure.kind
    if kind == ErrorKind.FILE_TOO_LARGE and failure.detail and not contains_internal_details(failure.detail):
        return failure.detail
    message = ERROR_MESSAGES.get(kind)
    if message is None:
        logger.warning(f"No display message for failure kind {kind!r}: {failure.detail}")
        return GENERAL_MESSAGE
    return message

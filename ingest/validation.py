"""
Pre-flight validation for uploads and remote media references.

Runs before any transcoder so that policy violations are reported without
doing any decoding or encoding work. Checks short-circuit on the first
failure, in this order: empty upload, size ceiling, declared content type,
filename extension.
"""

import logging
from pathlib import PurePosixPath
from typing import Optional
from urllib.parse import unquote, urlparse

import httpx

from config import (
    MAX_IMAGE_UPLOAD_SIZE,
    MAX_VIDEO_UPLOAD_SIZE,
    STRICT_EXTENSION_MATCH,
    URL_PROBE_TIMEOUT,
)
from ingest.classifier import allowed_content_types, allowed_extensions, extension_matches_content_type
from ingest.common import format_file_size, normalize_content_type
from ingest.enums import ErrorKind, MediaCategory
from ingest.results import Accepted, Failure, UploadCandidate, ValidationResult

logger = logging.getLogger(__name__)


def size_limit(kind: MediaCategory) -> int:
    """Maximum accepted upload size in bytes for a category."""
    if MediaCategory(kind) == MediaCategory.VIDEO:
        return MAX_VIDEO_UPLOAD_SIZE
    return MAX_IMAGE_UPLOAD_SIZE


def validate(
    candidate: UploadCandidate,
    kind: MediaCategory,
    strict: Optional[bool] = None,
) -> ValidationResult:
    """
    Validate an upload against the policy for the expected media kind.

    Only declared metadata is checked. A file whose declared type and
    extension both agree (e.g. an executable renamed to ``.jpg`` and sent as
    ``image/jpeg``) is accepted here and rejected later by the decoder.

    Args:
        candidate: The upload to check
        kind: The media kind the caller expects (image or video)
        strict: Also require the extension to match the declared MIME type
            itself; defaults to STRICT_EXTENSION_MATCH

    Returns:
        Accepted(kind, size) or the first Failure encountered
    """
    kind = MediaCategory(kind)
    strict = STRICT_EXTENSION_MATCH if strict is None else strict
    size = candidate.length or 0

    if size == 0:
        return _reject(candidate, ErrorKind.EMPTY_UPLOAD, "No file uploaded (zero-length upload)")

    limit = size_limit(kind)
    if size > limit:
        return _reject(
            candidate,
            ErrorKind.FILE_TOO_LARGE,
            f"File size ({format_file_size(size)}) exceeds maximum allowed size ({format_file_size(limit)})",
            {"actual_size": size, "limit": limit},
        )

    content_type = normalize_content_type(candidate.content_type)
    if content_type not in allowed_content_types(kind):
        return _reject(
            candidate,
            ErrorKind.UNSUPPORTED_TYPE,
            f"Invalid file content type {candidate.content_type!r} for {kind.value} upload",
            {"content_type": candidate.content_type},
        )

    extension = candidate.extension
    allowed = allowed_extensions(kind)
    if extension not in allowed:
        return _reject(
            candidate,
            ErrorKind.EXTENSION_MISMATCH,
            f"Invalid file extension {extension or '(none)'!r}. Allowed: {', '.join(sorted(allowed))}",
            {"extension": extension},
        )

    if strict and not extension_matches_content_type(extension, content_type):
        return _reject(
            candidate,
            ErrorKind.EXTENSION_MISMATCH,
            f"File extension {extension!r} does not match declared content type {content_type!r}",
            {"extension": extension, "content_type": content_type},
        )

    return Accepted(kind, size)


def _reject(candidate: UploadCandidate, kind: ErrorKind, detail: str, context: Optional[dict] = None) -> Failure:
    logger.warning(f"Rejected upload {candidate.filename!r}: {detail}")
    return Failure(kind, detail, context or {})


async def validate_url(
    url: Optional[str],
    kind: MediaCategory,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ValidationResult:
    """
    Validate a reference to externally hosted media with a single HEAD request.

    Args:
        url: Absolute http(s) URL of the media
        kind: Expected media kind; the URL path must carry one of its extensions
        timeout: Request timeout in seconds (default URL_PROBE_TIMEOUT, 10s)
        transport: Optional httpx transport (used by tests)

    Returns:
        Accepted(kind) or a Failure whose kind tells the caller what went wrong:
        INVALID_URL, EXTENSION_MISMATCH, UNREACHABLE, WRONG_CONTENT_TYPE,
        TIMEOUT or NETWORK_ERROR
    """
    kind = MediaCategory(kind)
    timeout = URL_PROBE_TIMEOUT if timeout is None else timeout

    if not url or not url.strip():
        return Failure(ErrorKind.INVALID_URL, f"{kind.value.capitalize()} URL is required")

    url = url.strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return Failure(ErrorKind.INVALID_URL, f"Invalid URL format: {url}", {"url": url})

    extension = PurePosixPath(unquote(parsed.path)).suffix.lower()
    if extension not in allowed_extensions(kind):
        return Failure(
            ErrorKind.EXTENSION_MISMATCH,
            f"URL does not appear to point to a valid {kind.value} file",
            {"url": url, "extension": extension},
        )

    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True, transport=transport) as client:
            response = await client.head(url)
    except httpx.TimeoutException:
        logger.warning(f"URL probe timed out after {timeout}s: {url}")
        return Failure(ErrorKind.TIMEOUT, f"URL did not respond within {timeout:g}s", {"url": url})
    except httpx.RequestError as e:
        logger.warning(f"Error validating {kind.value} URL {url}: {e}")
        return Failure(ErrorKind.NETWORK_ERROR, f"Could not reach URL: {e}", {"url": url})
    except httpx.InvalidURL as e:
        return Failure(ErrorKind.INVALID_URL, f"Invalid URL format: {e}", {"url": url})

    if not response.is_success:
        return Failure(
            ErrorKind.UNREACHABLE,
            f"{kind.value.capitalize()} URL is not accessible (HTTP {response.status_code})",
            {"url": url, "status_code": response.status_code},
        )

    # A missing Content-Type is tolerated; a non-media one is not
    content_type = normalize_content_type(response.headers.get("content-type"))
    if content_type and not content_type.startswith(f"{kind.value}/"):
        return Failure(
            ErrorKind.WRONG_CONTENT_TYPE,
            f"URL does not point to {'an' if kind == MediaCategory.IMAGE else 'a'} {kind.value} ({content_type})",
            {"url": url, "content_type": content_type},
        )

    return Accepted(kind)

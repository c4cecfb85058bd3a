"""Shared helpers for the ingest package."""

import uuid
from pathlib import Path
from typing import Optional

SIZE_UNITS = ["GB", "MB", "KB", "B"]


def format_file_size(size: int) -> str:
    """Format a byte count for display, e.g. 6291456 -> "6 MB", 1536 -> "1.5 KB"."""
    scale = 1024 ** (len(SIZE_UNITS) - 1)
    for unit in SIZE_UNITS:
        if size >= scale:
            value = f"{size / scale:.2f}".rstrip("0").rstrip(".")
            return f"{value} {unit}"
        scale //= 1024
    return "0 B"


def normalize_content_type(content_type: Optional[str]) -> Optional[str]:
    """Lower-case a MIME type and drop parameters ("Image/JPEG; q=1" -> "image/jpeg")."""
    if not content_type:
        return None
    normalized = content_type.split(";", 1)[0].strip().lower()
    return normalized or None


def unique_token() -> str:
    """Collision-resistant name component for per-invocation working files."""
    return uuid.uuid4().hex


def temp_sibling(path: Path, suffix: Optional[str] = None) -> Path:
    """
    Unique hidden path in the same directory as ``path``.

    Writing there and renaming into place keeps the final path either absent
    or complete. ``suffix`` defaults to the target's own suffix so tools that
    infer formats from the extension (ffmpeg) still work.
    """
    suffix = path.suffix if suffix is None else suffix
    return path.with_name(f".{path.stem}.{unique_token()}.part{suffix}")

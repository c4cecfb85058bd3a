"""
Value types passed between the ingest pipeline and its callers.

Results are tagged unions: every operation returns either a success value
(``Success``, ``Accepted``, ``IngestedVideo``) or a ``Failure``. Each variant
carries only its own fields and exposes ``ok`` so callers can branch without
isinstance checks:

    result = to_canonical_webp(candidate)
    if result.ok:
        store(result.payload, result.content_type)
    else:
        show(result.user_message)
"""

import io
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO, ClassVar, Iterator, Mapping, Optional, Union

from ingest.enums import ErrorKind, MediaCategory
from ingest.errors import user_message


@dataclass(frozen=True)
class Success:
    """Canonical asset produced by a transcoder: encoded bytes or a file path."""

    payload: Union[bytes, Path]
    content_type: str

    ok: ClassVar[bool] = True


@dataclass(frozen=True)
class Failure:
    """Typed failure with a human-readable detail and optional structured context."""

    kind: ErrorKind
    detail: str
    context: Mapping[str, Any] = field(default_factory=dict)

    ok: ClassVar[bool] = False

    @property
    def user_message(self) -> str:
        """Stable message safe for direct display (no paths or encoder output)."""
        return user_message(self)


@dataclass(frozen=True)
class Accepted:
    """Upload or URL that passed validation."""

    category: MediaCategory
    size: Optional[int] = None

    ok: ClassVar[bool] = True


@dataclass(frozen=True)
class IngestedVideo:
    """Result of a full video ingest: canonical MP4, extracted frame and framed poster."""

    video_path: Path
    thumbnail_path: Path
    poster: bytes
    content_type: str = "video/mp4"
    poster_content_type: str = "image/webp"

    ok: ClassVar[bool] = True


TranscodeResult = Union[Success, Failure]
ValidationResult = Union[Accepted, Failure]
VideoIngestResult = Union[IngestedVideo, Failure]


class UploadCandidate:
    """An upload as submitted by a client: stream, declared name, type and length.

    Nothing about the candidate is trusted; the declared content type and
    filename are only compared against policy, never used to build paths.
    """

    def __init__(
        self,
        stream: BinaryIO,
        filename: str,
        content_type: Optional[str],
        length: int,
    ):
        self.stream = stream
        self.filename = filename
        self.content_type = content_type
        self.length = length

    @classmethod
    def from_bytes(cls, data: bytes, filename: str, content_type: Optional[str]) -> "UploadCandidate":
        return cls(io.BytesIO(data), filename, content_type, len(data))

    @classmethod
    def from_path(cls, path: Path, content_type: Optional[str] = None) -> "UploadCandidate":
        """Open a local file as a candidate. Close it (or use ``with``) when done."""
        path = Path(path)
        length = path.stat().st_size
        return cls(open(path, "rb"), path.name, content_type, length)

    @property
    def extension(self) -> str:
        """Lower-cased filename extension including the dot, or "" if none."""
        return Path(self.filename or "").suffix.lower()

    def read(self) -> bytes:
        """Return the whole payload, leaving the stream rewound when possible."""
        self._rewind()
        data = self.stream.read()
        self._rewind()
        return data

    def iter_chunks(self, chunk_size: int) -> Iterator[bytes]:
        self._rewind()
        while chunk := self.stream.read(chunk_size):
            yield chunk
        self._rewind()

    def close(self) -> None:
        self.stream.close()

    def _rewind(self) -> None:
        if self.stream.seekable():
            self.stream.seek(0)

    def __enter__(self) -> "UploadCandidate":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"UploadCandidate(filename={self.filename!r}, "
            f"content_type={self.content_type!r}, length={self.length})"
        )

"""Canonical output dimensions per media category."""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Tuple

from ingest.enums import MediaCategory


@dataclass(frozen=True)
class CanonicalDimensions:
    width: int
    height: int

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


# Images are stretched to exactly this box. The video entry frames the poster
# still taken from a video; the video stream itself keeps its own resolution.
CANONICAL_DIMENSIONS: Mapping[MediaCategory, CanonicalDimensions] = MappingProxyType(
    {
        MediaCategory.IMAGE: CanonicalDimensions(640, 426),
        MediaCategory.VIDEO: CanonicalDimensions(800, 535),
    }
)


def dimensions_for(category: MediaCategory) -> CanonicalDimensions:
    return CANONICAL_DIMENSIONS[MediaCategory(category)]

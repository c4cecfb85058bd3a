"""
Tests for content classification and the media type tables.
"""

import pytest

from ingest.classifier import (
    CONTENT_TYPE_CATEGORIES,
    allowed_content_types,
    allowed_extensions,
    classify,
    classify_upload,
    extension_matches_content_type,
)
from ingest.enums import ErrorKind, MediaCategory
from ingest.results import Failure, UploadCandidate


class TestClassify:
    """Tests for classify()."""

    @pytest.mark.parametrize(
        "content_type",
        ["image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp", "image/bmp"],
    )
    def test_image_types(self, content_type):
        assert classify(content_type) == MediaCategory.IMAGE

    @pytest.mark.parametrize(
        "content_type",
        [
            "video/mp4",
            "video/webm",
            "video/ogg",
            "video/avi",
            "video/x-msvideo",
            "video/x-flv",
            "video/x-matroska",
            "video/quicktime",
        ],
    )
    def test_video_types(self, content_type):
        assert classify(content_type) == MediaCategory.VIDEO

    def test_case_insensitive_and_ignores_parameters(self):
        """Browsers and proxies send mixed case and parameters."""
        assert classify("IMAGE/JPEG") == MediaCategory.IMAGE
        assert classify("video/MP4; codecs=avc1") == MediaCategory.VIDEO

    @pytest.mark.parametrize(
        "content_type",
        ["application/pdf", "text/html", "image/svg+xml", "audio/mpeg", "application/octet-stream", "image"],
    )
    def test_unsupported_types(self, content_type):
        result = classify(content_type)
        assert isinstance(result, Failure)
        assert result.kind == ErrorKind.UNSUPPORTED_TYPE
        assert result.context["content_type"] == content_type

    @pytest.mark.parametrize("content_type", [None, "", "   "])
    def test_missing_content_type(self, content_type):
        result = classify(content_type)
        assert result.kind == ErrorKind.UNSUPPORTED_TYPE

    def test_unsupported_type_is_logged(self, caplog):
        classify("application/x-msdownload")
        assert "Invalid file type" in caplog.text

    def test_every_table_entry_classifies(self):
        for content_type, category in CONTENT_TYPE_CATEGORIES.items():
            assert classify(content_type) == category


class TestClassifyUpload:
    """Tests for classify_upload()."""

    def test_empty_upload_rejected_before_type(self):
        """An empty upload is reported as empty even with a bogus type."""
        candidate = UploadCandidate.from_bytes(b"", "nothing.txt", "text/plain")
        result = classify_upload(candidate)
        assert result.kind == ErrorKind.EMPTY_UPLOAD

    def test_non_empty_upload_uses_declared_type(self):
        candidate = UploadCandidate.from_bytes(b"data", "clip.mov", "video/quicktime")
        assert classify_upload(candidate) == MediaCategory.VIDEO


class TestTables:
    """Tests for the allow-lists derived from the tables."""

    def test_allowed_content_types_partition(self):
        images = allowed_content_types(MediaCategory.IMAGE)
        videos = allowed_content_types(MediaCategory.VIDEO)
        assert images.isdisjoint(videos)
        assert images | videos == set(CONTENT_TYPE_CATEGORIES)

    def test_allowed_extensions(self):
        assert ".jpg" in allowed_extensions(MediaCategory.IMAGE)
        assert ".bmp" in allowed_extensions(MediaCategory.IMAGE)
        assert ".mkv" in allowed_extensions(MediaCategory.VIDEO)
        assert ".mp4" not in allowed_extensions(MediaCategory.IMAGE)

    def test_tables_are_read_only(self):
        with pytest.raises(TypeError):
            CONTENT_TYPE_CATEGORIES["application/pdf"] = MediaCategory.IMAGE

    @pytest.mark.parametrize(
        "extension,content_type,expected",
        [
            (".jpg", "image/jpeg", True),
            (".JPEG", "image/jpeg", True),
            (".png", "image/jpeg", False),
            (".ogv", "video/ogg", True),
            (".mov", "video/quicktime; charset=binary", True),
            (".mp4", None, False),
        ],
    )
    def test_extension_matches_content_type(self, extension, content_type, expected):
        assert extension_matches_content_type(extension, content_type) is expected

#!/usr/bin/env python3
"""
Media ingest CLI - validate and transcode uploads from the command line.
"""

import argparse
import asyncio
import logging
import mimetypes
import os
import shutil
import sys
from pathlib import Path

from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from config import ERROR_DETAIL_MAX_LENGTH
from ingest.classifier import classify
from ingest.common import format_file_size
from ingest.enums import MediaCategory
from ingest.errors import truncate_error
from ingest.results import Failure, IngestedVideo, UploadCandidate
from ingest.validation import validate, validate_url
from worker.image_transcoder import to_canonical_webp
from worker.pipeline import MediaIngestPipeline
from worker.thumbnail import ThumbnailExtractor
from worker.video_transcoder import VideoTranscoder

KIND_CHOICES = [category.value for category in MediaCategory]


class CLIError(Exception):
    """Custom exception for CLI errors."""

    pass


def non_negative_float(value: str) -> float:
    """Argparse type converter for timestamps in seconds."""
    f = float(value)
    if f < 0:
        raise argparse.ArgumentTypeError(f"must be zero or positive, got {f}")
    return f


def validate_file(file_path: Path) -> int:
    """
    Validate file exists and is readable.

    Returns:
        int: File size in bytes

    Raises:
        CLIError: If file doesn't exist or isn't readable
    """
    if not file_path.exists():
        raise CLIError(f"File not found: {file_path}")
    if not file_path.is_file():
        raise CLIError(f"Path is not a file: {file_path}")
    if not os.access(file_path, os.R_OK):
        raise CLIError(f"File is not readable: {file_path}")
    return file_path.stat().st_size


def declared_content_type(file_path: Path, override=None):
    """Content type as a browser would declare it: guessed from the filename."""
    if override:
        return override
    content_type, _ = mimetypes.guess_type(file_path.name)
    return content_type


def open_candidate(args) -> UploadCandidate:
    file_path = Path(args.file)
    validate_file(file_path)
    return UploadCandidate.from_path(file_path, declared_content_type(file_path, args.type))


def run_with_spinner(description: str, coro):
    """Run a coroutine to completion while showing a spinner."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        transient=True,
    ) as progress:
        progress.add_task(description, total=None)
        return asyncio.run(coro)


def check(result, verbose: bool = False):
    """Return ``result`` if it succeeded, otherwise raise CLIError with its display message."""
    if result.ok:
        return result
    message = result.user_message
    if verbose:
        message += f"\n  [{result.kind.value}] {truncate_error(result.detail, ERROR_DETAIL_MAX_LENGTH)}"
    raise CLIError(message)


def cmd_classify(args):
    """Print the media category of a file's declared type."""
    file_path = Path(args.file)
    content_type = declared_content_type(file_path, args.type)
    category = classify(content_type)
    if isinstance(category, Failure):
        check(category, args.verbose)
    print(f"{file_path.name}: {category.value} ({content_type})")


def cmd_validate(args):
    """Check a file against the upload policy."""
    with open_candidate(args) as candidate:
        kind = args.kind or classify(candidate.content_type)
        if isinstance(kind, Failure):
            check(kind, args.verbose)
        check(validate(candidate, kind, strict=args.strict or None), args.verbose)
        print(f"OK: {candidate.filename} is a valid {MediaCategory(kind).value} upload ({format_file_size(candidate.length)})")


def cmd_check_url(args):
    """Probe a remote media URL."""
    check(run_with_spinner(f"Checking {args.url}...", validate_url(args.url, args.kind)), args.verbose)
    print(f"OK: {args.url} is reachable")


def cmd_image(args):
    """Convert an image to canonical WebP."""
    with open_candidate(args) as candidate:
        result = check(to_canonical_webp(candidate), args.verbose)
    output = Path(args.output) if args.output else Path(args.file).with_suffix(".webp")
    output.write_bytes(result.payload)
    print(f"Wrote {output} ({format_file_size(len(result.payload))})")


def cmd_video(args):
    """Convert a video to canonical MP4."""
    file_path = Path(args.file)
    validate_file(file_path)
    output_dir = Path(args.output) if args.output else file_path.parent
    result = check(
        run_with_spinner(f"Converting {file_path.name}...", VideoTranscoder().to_canonical_mp4(file_path, output_dir)),
        args.verbose,
    )
    print(f"Wrote {result.payload}")


def cmd_thumbnail(args):
    """Extract a still frame from a video."""
    file_path = Path(args.file)
    validate_file(file_path)
    extractor = ThumbnailExtractor(image_format=args.format)
    result = check(
        run_with_spinner(f"Extracting frame from {file_path.name}...", extractor.extract_thumbnail(file_path, args.at)),
        args.verbose,
    )
    print(f"Wrote {result.payload}")


def cmd_ingest(args):
    """Validate and transcode an upload end to end."""
    output_dir = Path(args.output)
    output_dir.mkdir(parents=True, exist_ok=True)
    pipeline = MediaIngestPipeline()

    with open_candidate(args) as candidate:
        result = check(
            run_with_spinner(f"Ingesting {candidate.filename}...", pipeline.ingest(candidate, args.kind)),
            args.verbose,
        )

    stem = Path(args.file).stem
    if isinstance(result, IngestedVideo):
        video = Path(shutil.move(str(result.video_path), output_dir / f"{stem}.mp4"))
        thumbnail = Path(shutil.move(str(result.thumbnail_path), output_dir / f"{stem}{result.thumbnail_path.suffix}"))
        poster = output_dir / f"{stem}.poster.webp"
        poster.write_bytes(result.poster)
        shutil.rmtree(result.video_path.parent, ignore_errors=True)
        print("Success! Video ingested.")
        print(f"  Video: {video}")
        print(f"  Thumbnail: {thumbnail}")
        print(f"  Poster: {poster}")
    else:
        image = output_dir / f"{stem}.webp"
        image.write_bytes(result.payload)
        print("Success! Image ingested.")
        print(f"  Image: {image} ({format_file_size(len(result.payload))})")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ingest", description="Media ingest - validate and transcode uploads")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show failure details and debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Classify command
    classify_parser = subparsers.add_parser("classify", help="Show the media category of a file")
    classify_parser.add_argument("file", help="File to classify")
    classify_parser.add_argument("--type", help="Declared content type (default: guessed from filename)")
    classify_parser.set_defaults(func=cmd_classify)

    # Validate command
    validate_parser = subparsers.add_parser("validate", help="Check a file against the upload policy")
    validate_parser.add_argument("file", help="File to validate")
    validate_parser.add_argument("-k", "--kind", choices=KIND_CHOICES, help="Expected kind (default: from content type)")
    validate_parser.add_argument("--type", help="Declared content type (default: guessed from filename)")
    validate_parser.add_argument(
        "--strict", action="store_true", help="Require the extension to match the declared content type"
    )
    validate_parser.set_defaults(func=cmd_validate)

    # Check URL command
    url_parser = subparsers.add_parser("check-url", help="Check that a remote media URL is reachable")
    url_parser.add_argument("url", help="Absolute http(s) URL")
    url_parser.add_argument("-k", "--kind", choices=KIND_CHOICES, default="image", help="Expected kind (default: image)")
    url_parser.set_defaults(func=cmd_check_url)

    # Image command
    image_parser = subparsers.add_parser("image", help="Convert an image to canonical WebP")
    image_parser.add_argument("file", help="Image file")
    image_parser.add_argument("-o", "--output", help="Output file (default: <file>.webp)")
    image_parser.add_argument("--type", help="Declared content type (default: guessed from filename)")
    image_parser.set_defaults(func=cmd_image)

    # Video command
    video_parser = subparsers.add_parser("video", help="Convert a video to canonical MP4")
    video_parser.add_argument("file", help="Video file")
    video_parser.add_argument("-o", "--output", help="Output directory (default: next to the input)")
    video_parser.set_defaults(func=cmd_video)

    # Thumbnail command
    thumb_parser = subparsers.add_parser("thumbnail", help="Extract a still frame from a video")
    thumb_parser.add_argument("file", help="Video file")
    thumb_parser.add_argument(
        "-t", "--at", type=non_negative_float, default=1.0, help="Frame position in seconds (default: 1)"
    )
    thumb_parser.add_argument("-f", "--format", help="Image format, e.g. jpg or png (default: from config)")
    thumb_parser.set_defaults(func=cmd_thumbnail)

    # Ingest command
    ingest_parser = subparsers.add_parser("ingest", help="Validate and transcode an upload end to end")
    ingest_parser.add_argument("file", help="File to ingest")
    ingest_parser.add_argument("-o", "--output", default=".", help="Output directory (default: current directory)")
    ingest_parser.add_argument("-k", "--kind", choices=KIND_CHOICES, help="Expected kind (default: from content type)")
    ingest_parser.add_argument("--type", help="Declared content type (default: guessed from filename)")
    ingest_parser.set_defaults(func=cmd_ingest)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        args.func(args)
    except CLIError as e:
        print(f"Error: {e}")
        sys.exit(1)
    except OSError as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

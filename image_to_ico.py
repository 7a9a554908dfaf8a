#!/usr/bin/env -S uv run
# /// script
# requires-python = ">=3.11"
# dependencies = [
#   "pillow>=10.2.0",
#   "pillow-heif>=0.18",
# ]
# ///

"""
image_to_ico.py

Convert raster images (PNG/JPG/BMP/GIF/TIFF/WebP/HEIF) into multi-resolution
Windows .ico files. Each image is cropped to its centered square, resampled to
every size of the ladder (16, 24, 32, 48, 64, 128, 256 by default), encoded as
PNG and packed into one icon container written next to the source.

Usage examples:

  # Convert every image sitting next to this script
  ./image_to_ico.py

  # Convert one image -> logo.ico
  ./image_to_ico.py logo.png

  # Smaller ladder, rendered on four threads
  ./image_to_ico.py logo.png --sizes 16,32,48,256 --workers 4

Exit codes: 0 all conversions succeeded, 2 some succeeded, 1 none succeeded,
nothing to convert or bad arguments.
"""

from __future__ import annotations

import argparse
import enum
import os
import sys
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from conversion_errors import ConversionError, IoError
from icon_container import build_icon_container, write_icon_container
from icon_variants import (
    DEFAULT_ICON_SIZES,
    DEFAULT_SETTINGS,
    RESAMPLING_FILTERS,
    VariantSettings,
    crop_to_square,
    decode_image,
    generate_variants,
    validate_size_ladder,
)


SCRIPT_DIRECTORY = os.path.dirname(os.path.abspath(__file__))
ICON_EXTENSION = ".ico"
CONVERTIBLE_EXTENSIONS: Tuple[str, ...] = (
    ".png", ".jpg", ".jpeg", ".bmp", ".gif", ".tif", ".tiff", ".webp", ".heic", ".heif",
)


class ConversionState(enum.Enum):
    IDLE = "idle"
    DECODED = "decoded"
    CROPPED = "cropped"
    VARIANTS_GENERATED = "variants generated"
    WRITTEN = "written"
    FAILED = "failed"


@dataclass(frozen=True)
class ConversionResult:
    input_path: str
    output_path: str
    state: ConversionState
    last_completed_state: ConversionState
    error: Optional[ConversionError] = None

    @property
    def succeeded(self) -> bool:
        return self.state is ConversionState.WRITTEN


@dataclass
class BatchSummary:
    results: List[ConversionResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if result.succeeded)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    @property
    def exit_code(self) -> int:
        if self.total == 0 or self.succeeded == 0:
            return 1
        return 0 if self.succeeded == self.total else 2


def has_convertible_extension(file_name: str) -> bool:
    return os.path.splitext(file_name)[1].lower() in CONVERTIBLE_EXTENSIONS


def replace_with_ico_extension(image_path: str) -> str:
    base_path, _ext = os.path.splitext(image_path)
    return base_path + ICON_EXTENSION


def convert(input_bytes: bytes, settings: VariantSettings = DEFAULT_SETTINGS) -> bytes:
    """
    Turn encoded source image bytes into icon container bytes.

    Raises DecodeError for unreadable input and EncodeError when a resampled
    size cannot be compressed.
    """
    source_image = decode_image(input_bytes)
    square_image = crop_to_square(source_image)
    variants = generate_variants(square_image, settings)
    return build_icon_container(variants)


def read_input_bytes(input_path: str) -> bytes:
    try:
        with open(input_path, "rb") as file_pointer:
            return file_pointer.read()
    except OSError as error:
        raise IoError(f"Could not read {input_path}: {error}") from error


def convert_image_file(
        input_path: str,
        output_path: Optional[str] = None,
        settings: VariantSettings = DEFAULT_SETTINGS,
) -> ConversionResult:
    """
    Convert one file on disk. Failures are captured in the returned result,
    tagged with the last stage that completed; no partial .ico is left behind.
    """
    output_path = output_path or replace_with_ico_extension(input_path)
    completed_state = ConversionState.IDLE
    try:
        input_bytes = read_input_bytes(input_path)
        source_image = decode_image(input_bytes)
        completed_state = ConversionState.DECODED
        square_image = crop_to_square(source_image)
        completed_state = ConversionState.CROPPED
        variants = generate_variants(square_image, settings)
        completed_state = ConversionState.VARIANTS_GENERATED
        write_icon_container(variants, output_path)
    except ConversionError as error:
        return ConversionResult(
            input_path=input_path,
            output_path=output_path,
            state=ConversionState.FAILED,
            last_completed_state=completed_state,
            error=error,
        )
    return ConversionResult(
        input_path=input_path,
        output_path=output_path,
        state=ConversionState.WRITTEN,
        last_completed_state=ConversionState.WRITTEN,
    )


def find_convertible_images(directory: str) -> List[str]:
    try:
        file_names = sorted(os.listdir(directory))
    except OSError as error:
        raise IoError(f"Could not list {directory}: {error}") from error
    return [
        os.path.join(directory, file_name)
        for file_name in file_names
        if has_convertible_extension(file_name) and os.path.isfile(os.path.join(directory, file_name))
    ]


def convert_directory(
        directory: str,
        settings: VariantSettings = DEFAULT_SETTINGS,
        report: Optional[Callable[[ConversionResult], None]] = None,
        image_paths: Optional[Sequence[str]] = None,
) -> BatchSummary:
    """
    Convert every convertible image in directory, carrying on past failures.
    A caller that already listed the directory passes image_paths to skip a rescan.
    """
    if image_paths is None:
        image_paths = find_convertible_images(directory)
    summary = BatchSummary()
    for image_path in image_paths:
        result = convert_image_file(image_path, settings=settings)
        summary.results.append(result)
        if report is not None:
            report(result)
    return summary


def describe_failure(error: Optional[ConversionError]) -> str:
    if error is None:
        return "unknown error"
    return f"{error.reason}: {error}"


def print_batch_result(result: ConversionResult) -> None:
    print(f"[Convert] {result.input_path} -> {result.output_path}")
    if result.succeeded:
        print("  OK")
    else:
        print(f"  FAIL ({describe_failure(result.error)})")


def parse_size_list(raw_value: str) -> Tuple[int, ...]:
    try:
        sizes = tuple(int(part) for part in raw_value.split(",") if part.strip())
        return validate_size_ladder(sizes)
    except ValueError as error:
        raise argparse.ArgumentTypeError(f"invalid size list {raw_value!r}: {error}") from error


def build_usage_text(program_name: str) -> str:
    return (
        "Usage:\n"
        f"  {program_name} [options]\n"
        "    Convert every image in the batch directory.\n"
        f"  {program_name} [options] <image>\n"
        "    Convert a single image (output: same name, .ico)."
    )


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Convert raster images into multi-resolution .ico files.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("input_images", nargs="*", help="Image to convert; omit to convert the whole batch directory.")
    parser.add_argument(
        "--sizes",
        type=parse_size_list,
        default=DEFAULT_ICON_SIZES,
        help="Comma-separated ascending edge lengths to embed.",
    )
    parser.add_argument("--workers", type=int, default=1, help="Threads used to render the sizes of one image.")
    parser.add_argument("--filter", choices=sorted(RESAMPLING_FILTERS), default="lanczos", help="Resampling filter.")
    parser.add_argument("--directory", default=SCRIPT_DIRECTORY, help="Directory scanned in batch mode.")
    return parser


def run_batch(directory: str, settings: VariantSettings, program_name: str) -> int:
    try:
        candidates = find_convertible_images(directory)
    except IoError as error:
        print(f"FAILURE: {describe_failure(error)}", file=sys.stderr)
        return 1
    if not candidates:
        print(f"No convertible images found in: {directory}")
        print(build_usage_text(program_name))
        return 1

    print(f"Batch converting images in: {directory}")
    summary = convert_directory(
        directory, settings=settings, report=print_batch_result, image_paths=candidates
    )
    print(f"Done. Total: {summary.total}, Success: {summary.succeeded}, Failed: {summary.failed}")
    return summary.exit_code


def run_single(input_path: str, settings: VariantSettings) -> int:
    if not has_convertible_extension(input_path):
        print(f"Input must be an image file ({', '.join(CONVERTIBLE_EXTENSIONS)}).")
        return 1
    output_path = replace_with_ico_extension(input_path)
    print(f"Converting: {input_path} -> {output_path}")
    result = convert_image_file(input_path, output_path, settings=settings)
    if result.succeeded:
        print(f"SUCCESS: wrote {output_path}")
        return 0
    print(f"FAILURE: {describe_failure(result.error)}", file=sys.stderr)
    return 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_argument_parser()
    arguments = parser.parse_args(argv)

    try:
        settings = VariantSettings(
            sizes=arguments.sizes,
            resample=RESAMPLING_FILTERS[arguments.filter],
            workers=arguments.workers,
        )
    except ValueError as error:
        parser.error(str(error))

    if len(arguments.input_images) == 0:
        return run_batch(arguments.directory, settings, parser.prog)
    if len(arguments.input_images) == 1:
        return run_single(arguments.input_images[0], settings)

    print(build_usage_text(parser.prog))
    return 1


if __name__ == "__main__":
    raise SystemExit(main())

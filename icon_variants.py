"""
icon_variants.py

Pixel-side half of the image-to-icon pipeline:

  decode_image      bytes -> RGBA image (Pillow, plus HEIF/HEIC via pillow-heif)
  crop_to_square    centered square region, no scaling
  resize_square     high-quality square resample (Lanczos by default)
  encode_image      RGBA image -> compressed payload bytes (PNG by default)
  generate_variants one encoded payload per ladder size, in ladder order

The ladder and the remaining knobs travel in a VariantSettings value so callers
and tests can inject their own without touching module state.
"""

from __future__ import annotations

import io
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from PIL import Image
from pillow_heif import register_heif_opener

from conversion_errors import DecodeError, EncodeError


register_heif_opener()


DEFAULT_ICON_SIZES: Tuple[int, ...] = (16, 24, 32, 48, 64, 128, 256)
MAX_ICON_SIZE = 65535

RESAMPLING_FILTERS: Dict[str, Image.Resampling] = {
    "lanczos": Image.Resampling.LANCZOS,
    "bicubic": Image.Resampling.BICUBIC,
}


def validate_size_ladder(sizes: Iterable[int]) -> Tuple[int, ...]:
    size_ladder = tuple(sizes)
    if not size_ladder:
        raise ValueError("Size ladder must contain at least one size.")
    if len(size_ladder) > MAX_ICON_SIZE:
        raise ValueError(f"Size ladder may hold at most {MAX_ICON_SIZE} sizes, got {len(size_ladder)}.")
    for size_pixels in size_ladder:
        if isinstance(size_pixels, bool) or not isinstance(size_pixels, int):
            raise ValueError(f"Icon size must be an integer, got {size_pixels!r}.")
        if not 1 <= size_pixels <= MAX_ICON_SIZE:
            raise ValueError(f"Icon size {size_pixels} is outside 1..{MAX_ICON_SIZE}.")
    for previous_size, next_size in zip(size_ladder, size_ladder[1:]):
        if next_size <= previous_size:
            raise ValueError(f"Size ladder must be strictly ascending: {size_ladder}")
    return size_ladder


@dataclass(frozen=True)
class VariantSettings:
    sizes: Tuple[int, ...] = DEFAULT_ICON_SIZES
    image_format: str = "PNG"
    resample: Image.Resampling = Image.Resampling.LANCZOS
    workers: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "sizes", validate_size_ladder(self.sizes))
        if self.workers < 1:
            raise ValueError(f"Worker count must be at least 1, got {self.workers}.")
        if self.resample not in RESAMPLING_FILTERS.values():
            raise ValueError(f"Unsupported resampling filter: {self.resample!r}")


DEFAULT_SETTINGS = VariantSettings()


@dataclass(frozen=True)
class IconVariant:
    """One ladder size paired with its encoded image payload."""

    size: int
    payload: bytes = field(repr=False)

    def __post_init__(self) -> None:
        if not 1 <= self.size <= MAX_ICON_SIZE:
            raise ValueError(f"Icon size {self.size} is outside 1..{MAX_ICON_SIZE}.")


def decode_image(input_bytes: bytes) -> Image.Image:
    """
    Decode raw file bytes into an RGBA image. Multi-frame inputs contribute
    their first frame only.
    """
    if not input_bytes:
        raise DecodeError("Input is empty.")
    try:
        with Image.open(io.BytesIO(input_bytes)) as opened_image:
            opened_image.load()
            rgba_image = opened_image.convert("RGBA")
    except Image.DecompressionBombError as error:
        raise DecodeError(f"Image is too large to decode safely: {error}") from error
    except (OSError, SyntaxError, ValueError) as error:
        raise DecodeError(f"Not a supported image: {error}") from error
    return rgba_image


def encode_image(image: Image.Image, image_format: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    try:
        image.save(buffer, format=image_format)
    except (OSError, ValueError, KeyError) as error:
        raise EncodeError(
            f"Could not encode {image.width}x{image.height} image as {image_format}: {error}"
        ) from error
    return buffer.getvalue()


def crop_to_square(image: Image.Image) -> Image.Image:
    """
    Keep the centered square of side min(width, height). Pixels are copied 1:1;
    odd leftovers go to the right/bottom edge.
    """
    width, height = image.size
    if width == 0 or height == 0:
        raise ValueError(f"Cannot crop an empty image ({width}x{height}).")
    if width == height:
        return image.copy()
    side = min(width, height)
    left = (width - side) // 2
    top = (height - side) // 2
    return image.crop((left, top, left + side, top + side))


def resize_square(
        square_image: Image.Image,
        size_pixels: int,
        resample: Image.Resampling = Image.Resampling.LANCZOS,
) -> Image.Image:
    width, height = square_image.size
    if width != height:
        raise ValueError(f"Expected a square image, got {width}x{height}.")
    if size_pixels < 1:
        raise ValueError(f"Target size must be positive, got {size_pixels}.")
    if resample == Image.Resampling.NEAREST:
        raise ValueError("Nearest-neighbour resampling is not allowed for icons.")

    # resample on premultiplied alpha so transparent pixels do not bleed color
    premultiplied = square_image.convert("RGBa")
    resized = premultiplied.resize((size_pixels, size_pixels), resample)
    return resized.convert("RGBA")


def render_variant(square_image: Image.Image, size_pixels: int, settings: VariantSettings) -> IconVariant:
    resized_image = resize_square(square_image, size_pixels, settings.resample)
    return IconVariant(size=size_pixels, payload=encode_image(resized_image, settings.image_format))


def generate_variants(square_image: Image.Image, settings: VariantSettings = DEFAULT_SETTINGS) -> List[IconVariant]:
    """
    Resize and encode the square source once per ladder size.

    With settings.workers > 1 the sizes are rendered on a thread pool; results
    always come back in ladder order. The first failure aborts the whole run.
    """
    width, height = square_image.size
    if width != height:
        raise ValueError(f"Expected a square image, got {width}x{height}.")

    if settings.workers == 1 or len(settings.sizes) == 1:
        return [render_variant(square_image, size_pixels, settings) for size_pixels in settings.sizes]

    with ThreadPoolExecutor(max_workers=settings.workers) as executor:
        return list(
            executor.map(lambda size_pixels: render_variant(square_image, size_pixels, settings), settings.sizes)
        )

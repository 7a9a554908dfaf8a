import io

import numpy as np
import pytest
from PIL import Image


def encode_rgba_array(pixel_array: np.ndarray, image_format: str = "PNG") -> bytes:
    image = Image.fromarray(pixel_array)
    if image_format == "JPEG":
        image = image.convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format=image_format)
    return buffer.getvalue()


@pytest.fixture
def random_rgba():
    """Factory for reproducible random RGBA arrays of shape (height, width, 4)."""
    generator = np.random.default_rng(7)

    def build(width: int, height: int) -> np.ndarray:
        return generator.integers(0, 256, size=(height, width, 4), dtype=np.uint8)

    return build


@pytest.fixture
def png_bytes(random_rgba):
    def build(width: int, height: int) -> bytes:
        return encode_rgba_array(random_rgba(width, height))

    return build


@pytest.fixture
def encode_array():
    return encode_rgba_array

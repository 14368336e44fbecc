# -*- coding: utf-8 -*-
"""Pytest configuration and fixtures."""
import io
from pathlib import Path

import numpy as np
import pytest
from PIL import Image


def gradient_image(width: int = 64, height: int = 48) -> Image.Image:
    """RGBA image with smooth horizontal/vertical gradients, so resampling and quantization are visible."""
    xs = np.linspace(0, 255, width, dtype=np.float64)
    ys = np.linspace(0, 255, height, dtype=np.float64)
    red = np.tile(xs, (height, 1))
    green = np.tile(ys[:, None], (1, width))
    blue = (red + green) / 2
    alpha = np.full((height, width), 255.0)
    pixels = np.stack([red, green, blue, alpha], axis=-1).round().astype(np.uint8)
    return Image.fromarray(pixels, "RGBA")


def encode_png(img: Image.Image) -> bytes:
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def create_test_image(tmp_path: Path):
    """Factory fixture writing a PNG test image and returning its path."""

    def _create(name: str = "sample.png", width: int = 64, height: int = 48, color=None) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        if color is None:
            img = gradient_image(width, height)
        else:
            img = Image.new("RGBA", (width, height), color)
        path.write_bytes(encode_png(img))
        return path

    return _create


@pytest.fixture
def corrupt_image(tmp_path: Path) -> Path:
    path = tmp_path / "corrupt.png"
    path.write_bytes(b"this is not an image at all")
    return path


@pytest.fixture
def make_gradient():
    return gradient_image

# -*- coding: utf-8 -*-
import logging
import math
import re
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from PIL import Image

from .errors import ConfigError, InvalidDimension

logger = logging.getLogger(__name__)

DEFAULT_FILTER = "lanczos3"

RESIZE_FILTER_NAMES = {
    "nearest": "NEAREST (Nearest source pixel, lowest quality)",
    "point": "POINT (Alias of nearest)",
    "box": "BOX (Each source pixel contributes equally)",
    "triangle": "TRIANGLE (Linear interpolation)",
    "bilinear": "BILINEAR (Alias of triangle)",
    "hamming": "HAMMING (Sharper than bilinear when downscaling)",
    "catmull-rom": "CATMULL-ROM (Cubic interpolation)",
    "mitchell": "MITCHELL (Cubic interpolation, uses Pillow bicubic)",
    "lanczos3": "LANCZOS3 (High quality, default)",
}

_PIL_RESAMPLE_FILTERS = {
    "nearest": Image.Resampling.NEAREST,
    "point": Image.Resampling.NEAREST,
    "box": Image.Resampling.BOX,
    "triangle": Image.Resampling.BILINEAR,
    "bilinear": Image.Resampling.BILINEAR,
    "hamming": Image.Resampling.HAMMING,
    "catmull-rom": Image.Resampling.BICUBIC,
    "mitchell": Image.Resampling.BICUBIC,
    "lanczos3": Image.Resampling.LANCZOS,
}

_NUMBER_RE = re.compile(r"^\d+(\.\d+)?$|^\.\d+$")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class Absolute:
    width: int
    height: int

    def resolve(self, source_width: int, source_height: int) -> Tuple[int, int]:
        return self.width, self.height

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(frozen=True)
class OneSided:
    width: Optional[int] = None
    height: Optional[int] = None

    def resolve(self, source_width: int, source_height: int) -> Tuple[int, int]:
        if self.width is not None:
            return self.width, _round_half_up(self.width * source_height / source_width)
        return _round_half_up(self.height * source_width / source_height), self.height

    def __str__(self) -> str:
        if self.width is not None:
            return f"{self.width}x_"
        return f"_x{self.height}"


@dataclass(frozen=True)
class Multiplier:
    factor: float

    def resolve(self, source_width: int, source_height: int) -> Tuple[int, int]:
        return _round_half_up(source_width * self.factor), _round_half_up(source_height * self.factor)

    def __str__(self) -> str:
        return f"@{self.factor:g}"


@dataclass(frozen=True)
class Percentage:
    percent: float

    def resolve(self, source_width: int, source_height: int) -> Tuple[int, int]:
        return (
            _round_half_up(source_width * self.percent / 100),
            _round_half_up(source_height * self.percent / 100),
        )

    def __str__(self) -> str:
        return f"{self.percent:g}%"


ResizeValue = Union[Absolute, OneSided, Multiplier, Percentage]


def _parse_number(text: str, expression: str) -> float:
    if not _NUMBER_RE.match(text):
        raise ConfigError(f"Invalid resize value '{expression}': '{text}' is not a positive number")
    return float(text)


def _parse_side(text: str, expression: str) -> Optional[int]:
    if text == "_":
        return None
    if not text.isdigit():
        raise ConfigError(f"Invalid resize value '{expression}': '{text}' is not an integer or '_'")
    side = int(text)
    if side == 0:
        raise ConfigError(f"Invalid resize value '{expression}': width and height must be greater than zero")
    return side


def parse_resize_value(expression: str) -> ResizeValue:
    """
    Parses a resize expression.

    Accepted forms: '500x200' (absolute), '_x600' or '500x_' (one side, the
    other keeps the aspect ratio), '@0.9' (multiplier) and '175%' (percentage).
    Raises ConfigError for anything else.
    """
    text = str(expression).strip()
    if text.startswith("@"):
        return Multiplier(_parse_number(text[1:], expression))
    if text.endswith("%"):
        return Percentage(_parse_number(text[:-1], expression))
    if "x" in text:
        parts = text.split("x")
        if len(parts) != 2:
            raise ConfigError(f"Invalid resize value '{expression}': expected exactly two dimensions")
        width = _parse_side(parts[0], expression)
        height = _parse_side(parts[1], expression)
        if width is None and height is None:
            raise ConfigError(f"Invalid resize value '{expression}': at least one dimension is required")
        if width is None or height is None:
            return OneSided(width, height)
        return Absolute(width, height)
    raise ConfigError(
        f"Invalid resize value '{expression}'. Use WxH, Wx_, _xH, @MULTIPLIER or PERCENT%."
    )


def parse_filter(name: str) -> str:
    normalized = str(name).strip().lower()
    if normalized == "catrom":
        normalized = "catmull-rom"
    if normalized not in _PIL_RESAMPLE_FILTERS:
        raise ConfigError(
            f"Unknown resize filter '{name}'. Choose one of: {', '.join(RESIZE_FILTER_NAMES.keys())}"
        )
    return normalized


def resolve_dimensions(value: ResizeValue, source_width: int, source_height: int) -> Tuple[int, int]:
    if source_width <= 0 or source_height <= 0:
        raise InvalidDimension(source_width, source_height, str(value))
    target_width, target_height = value.resolve(source_width, source_height)
    if target_width <= 0 or target_height <= 0:
        raise InvalidDimension(target_width, target_height, str(value))
    return target_width, target_height


def resize_image(
    img: Image.Image,
    value: ResizeValue,
    filter_name: str = DEFAULT_FILTER,
    upscale: bool = True,
    downscale: bool = True,
) -> Image.Image:
    original_width, original_height = img.size
    target_width, target_height = resolve_dimensions(value, original_width, original_height)

    if (target_width, target_height) == (original_width, original_height):
        logger.debug(f"Resize {value} keeps the original size {original_width}x{original_height}. Skipping resize.")
        return img
    if not upscale and (target_width > original_width or target_height > original_height):
        logger.debug(f"Upscaling disabled, skipping resize ({original_width},{original_height}) -> ({target_width},{target_height})")
        return img
    if not downscale and (target_width < original_width or target_height < original_height):
        logger.debug(f"Downscaling disabled, skipping resize ({original_width},{original_height}) -> ({target_width},{target_height})")
        return img

    logger.debug(f"Resizing ({filter_name}): ({original_width},{original_height}) -> ({target_width},{target_height})")
    return img.resize((target_width, target_height), _PIL_RESAMPLE_FILTERS[filter_name])

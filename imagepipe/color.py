# -*- coding: utf-8 -*-
import io
import logging
import math
import concurrent.futures
from typing import List, Optional, Tuple

import numpy as np
from PIL import Image, ImageCms

from .buffer import ImageBuffer
from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_QUANTIZATION_QUALITY = 75
DEFAULT_DITHERING_LEVEL = 75
DEFAULT_ICC_WORKERS = 2
MIN_PALETTE_COLORS = 2
MAX_PALETTE_COLORS = 256


def palette_size_for_quality(quality: int) -> int:
    span = MAX_PALETTE_COLORS - MIN_PALETTE_COLORS
    return MIN_PALETTE_COLORS + int(math.floor(span * quality / 100 + 0.5))


def quantize(buffer: ImageBuffer, quality: int):
    colors = palette_size_for_quality(quality)
    source = buffer.image
    paletted = source.quantize(colors=colors, method=Image.Quantize.FASTOCTREE, dither=Image.Dither.NONE)
    logger.debug(f"Quantized {source.width}x{source.height} image to {colors} colors (quality {quality})")
    buffer.quantized_from = source
    buffer.palette = paletted
    buffer.replace(paletted.convert("RGBA"))


def _bayer_matrix(size: int = 8) -> np.ndarray:
    matrix = np.array([[0, 2], [3, 1]])
    while matrix.shape[0] < size:
        matrix = np.block([[4 * matrix, 4 * matrix + 2], [4 * matrix + 3, 4 * matrix + 1]])
    return (matrix + 0.5) / matrix.size


def _threshold_mask(width: int, height: int, level: int) -> np.ndarray:
    matrix = _bayer_matrix()
    reps_y = -(-height // matrix.shape[0])
    reps_x = -(-width // matrix.shape[1])
    thresholds = np.tile(matrix, (reps_y, reps_x))[:height, :width]
    return thresholds < (level / 100)


def dither(buffer: ImageBuffer, level: int):
    """
    Error-diffuses the pre-quantization pixels onto the palette picked by the
    preceding quantization. `level` (0-100) is the share of pixels that take the
    diffused color; the rest keep the plain nearest-palette color.
    """
    if buffer.palette is None or buffer.quantized_from is None:
        logger.warning("Dithering requested but no quantization palette is available. Skipping.")
        return
    source, paletted = buffer.quantized_from, buffer.palette
    buffer.quantized_from = None
    buffer.palette = None
    if level <= 0:
        return

    entries = paletted.getpalette() or [0, 0, 0]
    # unused slots repeat the last color so they never attract pixels
    entries = entries + entries[-3:] * (MAX_PALETTE_COLORS - len(entries) // 3)
    palette_image = Image.new("P", (1, 1))
    palette_image.putpalette(entries)
    diffused = source.convert("RGB").quantize(palette=palette_image, dither=Image.Dither.FLOYDSTEINBERG)

    plain = np.array(buffer.image)
    diffused_rgb = np.asarray(diffused.convert("RGB"))
    mask = _threshold_mask(buffer.width, buffer.height, level)
    plain[mask, :3] = diffused_rgb[mask]
    logger.debug(f"Dithered {int(mask.sum())} of {mask.size} pixels (level {level})")
    buffer.replace(Image.fromarray(plain))


def premultiply_alpha(buffer: ImageBuffer):
    pixels = np.array(buffer.image, dtype=np.uint16)
    alpha = pixels[..., 3:4]
    pixels[..., :3] = (pixels[..., :3] * alpha + 127) // 255
    buffer.replace(Image.fromarray(pixels.astype(np.uint8)))


def unpremultiply_alpha(buffer: ImageBuffer):
    """Divides RGB back by alpha; fully transparent pixels become black."""
    pixels = np.array(buffer.image, dtype=np.uint32)
    alpha = pixels[..., 3:4]
    safe_alpha = np.maximum(alpha, 1)
    rgb = (pixels[..., :3] * 255 + safe_alpha // 2) // safe_alpha
    pixels[..., :3] = np.where(alpha > 0, np.minimum(rgb, 255), 0)
    buffer.replace(Image.fromarray(pixels.astype(np.uint8)))


def load_icc_profile(path: Optional[str]) -> Tuple[Optional[bytes], str]:
    if path is None or str(path).lower() == "srgb":
        return None, "sRGB"
    try:
        with open(path, "rb") as f:
            data = f.read()
        ImageCms.ImageCmsProfile(io.BytesIO(data))
    except OSError as e:
        raise ConfigError(f"Cannot read ICC profile '{path}': {e}") from e
    except ImageCms.PyCMSError as e:
        raise ConfigError(f"'{path}' is not a valid ICC profile: {e}") from e
    return data, path


def _profile_from_bytes(data: Optional[bytes]) -> ImageCms.ImageCmsProfile:
    if data:
        return ImageCms.ImageCmsProfile(io.BytesIO(data))
    return ImageCms.ImageCmsProfile(ImageCms.createProfile("sRGB"))


def _strip_boxes(width: int, height: int, strips: int) -> List[Tuple[int, int, int, int]]:
    rows = max(1, -(-height // strips))
    return [(0, top, width, min(height, top + rows)) for top in range(0, height, rows)]


def apply_icc_profile(buffer: ImageBuffer, profile: Optional[bytes], max_workers: int = DEFAULT_ICC_WORKERS):
    """
    Converts the pixels from the embedded profile (sRGB when there is none) to
    `profile` (sRGB when None) and embeds the target profile.

    The transform runs over horizontal strips on a small pool owned by this call,
    separate from the file-level worker pool.
    """
    target = _profile_from_bytes(profile)
    try:
        source = _profile_from_bytes(buffer.icc_profile)
        transform = ImageCms.buildTransform(
            source, target, "RGBA", "RGBA",
            renderingIntent=ImageCms.Intent.PERCEPTUAL,
            flags=ImageCms.Flags.NOCACHE,
        )
    except (ImageCms.PyCMSError, OSError) as e:
        logger.warning(f"Embedded ICC profile is unusable ({e}). Assuming sRGB.")
        transform = ImageCms.buildTransform(
            _profile_from_bytes(None), target, "RGBA", "RGBA",
            renderingIntent=ImageCms.Intent.PERCEPTUAL,
            flags=ImageCms.Flags.NOCACHE,
        )

    img = buffer.image
    boxes = _strip_boxes(img.width, img.height, max(1, max_workers) * 2)
    result = Image.new("RGBA", img.size)
    with concurrent.futures.ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="icc") as pool:
        strips = pool.map(lambda box: ImageCms.applyTransform(img.crop(box), transform), boxes)
        for box, strip in zip(boxes, strips):
            result.paste(strip, box[:2])

    buffer.replace(result)
    buffer.icc_profile = target.tobytes()

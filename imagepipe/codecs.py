# -*- coding: utf-8 -*-
import io
import logging
import os
import shutil
import struct
import subprocess
import tempfile
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping

import numpy as np
from PIL import Image, ImageCms, UnidentifiedImageError

from .buffer import ImageBuffer
from .errors import ConfigError, DecodeError, EncodingError

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.gif', '.bmp', '.tiff', '.tif', '.webp', '.avif', '.qoi', '.ppm', '.ff')

FARBFELD_MAGIC = b"farbfeld"
CJXL_BINARY = "cjxl"

CODECS: Dict[str, Dict[str, Any]] = {
    "mozjpeg": {
        "extension": "jpg",
        "description": "Progressive, optimized JPEG (MozJPEG-style defaults)",
        "defaults": {"quality": 75, "baseline": False, "optimize_coding": True, "smoothing": 0,
                     "colorspace": "ycbcr", "subsample": None},
        "ranges": {"quality": (1, 100), "smoothing": (0, 100), "subsample": (1, 4)},
        "choices": {"colorspace": ("ycbcr", "rgb", "grayscale")},
    },
    "jpeg": {
        "extension": "jpg",
        "description": "Baseline JPEG",
        "defaults": {"quality": 75, "progressive": False},
        "ranges": {"quality": (1, 100)},
    },
    "oxipng": {
        "extension": "png",
        "description": "Lossless PNG with maximum compression effort",
        "defaults": {"effort": 2},
        "ranges": {"effort": (0, 6)},
    },
    "png": {
        "extension": "png",
        "description": "Lossless PNG",
        "defaults": {},
    },
    "webp": {
        "extension": "webp",
        "description": "WebP, lossy or lossless",
        "defaults": {"quality": 75, "lossless": False, "exact": False},
        "ranges": {"quality": (1, 100)},
    },
    "avif": {
        "extension": "avif",
        "description": "AVIF (AV1 still image)",
        "defaults": {"quality": 50, "speed": 6},
        "ranges": {"quality": (1, 100), "speed": (0, 10)},
    },
    "jpeg_xl": {
        "extension": "jxl",
        "description": "JPEG XL through the external 'cjxl' encoder",
        "defaults": {"distance": 1.0, "effort": 7},
        "ranges": {"distance": (0.0, 25.0), "effort": (1, 9)},
    },
    "ppm": {
        "extension": "ppm",
        "description": "Portable pixmap (RGB, no alpha)",
        "defaults": {},
    },
    "qoi": {
        "extension": "qoi",
        "description": "Quite OK Image format",
        "defaults": {},
    },
    "farbfeld": {
        "extension": "ff",
        "description": "Farbfeld (16-bit RGBA)",
        "defaults": {},
    },
}

_JPEG_SUBSAMPLING = {1: "4:4:4", 2: "4:2:0", 3: "4:2:0", 4: "4:2:0"}


@dataclass(frozen=True)
class CodecSelection:
    name: str
    params: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def extension(self) -> str:
        return CODECS[self.name]["extension"]


def make_codec(name: str, **params: Any) -> CodecSelection:
    if name not in CODECS:
        raise ConfigError(f"Unknown codec '{name}'. Supported codecs: {', '.join(CODECS.keys())}")
    table = CODECS[name]
    merged = dict(table["defaults"])
    for key, value in params.items():
        if key not in merged:
            raise ConfigError(f"Codec '{name}' has no parameter '{key}'")
        if value is None:
            continue
        low_high = table.get("ranges", {}).get(key)
        if low_high and not (low_high[0] <= value <= low_high[1]):
            raise ConfigError(f"{name} --{key.replace('_', '-')} must be between {low_high[0]} and {low_high[1]}, got {value}")
        choices = table.get("choices", {}).get(key)
        if choices and value not in choices:
            raise ConfigError(f"{name} --{key} must be one of {', '.join(choices)}, got '{value}'")
        merged[key] = value
    return CodecSelection(name=name, params=MappingProxyType(merged))


def _decode_farbfeld(data: bytes) -> ImageBuffer:
    if len(data) < 16:
        raise DecodeError("Truncated farbfeld header")
    width, height = struct.unpack(">II", data[8:16])
    expected = width * height * 4 * 2
    if width == 0 or height == 0 or len(data) - 16 < expected:
        raise DecodeError(f"Farbfeld payload does not match {width}x{height}")
    samples = np.frombuffer(data, dtype=">u2", count=width * height * 4, offset=16)
    pixels = (samples >> 8).astype(np.uint8).reshape(height, width, 4)
    return ImageBuffer(Image.fromarray(pixels), source_format="FARBFELD")


def _profile_to_srgb(img: Image.Image, icc_profile: bytes) -> Image.Image:
    """Converts grayscale or CMYK pixels through their embedded profile into plain sRGB."""
    alpha = img.getchannel("A") if "A" in img.getbands() else None
    base = img.convert("L") if img.mode in ("1", "LA", "La", "I", "F") else img
    try:
        converted = ImageCms.profileToProfile(
            base, ImageCms.ImageCmsProfile(io.BytesIO(icc_profile)), ImageCms.createProfile("sRGB"),
            outputMode="RGB",
        )
    except (ImageCms.PyCMSError, OSError) as e:
        logger.warning(f"Embedded ICC profile does not fit the {img.mode} pixels ({e}). Dropping it.")
        return img
    if alpha is not None:
        converted.putalpha(alpha)
    return converted


def decode(data: bytes) -> ImageBuffer:
    """Decodes encoded image bytes into an RGBA8 ImageBuffer."""
    if data[:8] == FARBFELD_MAGIC:
        return _decode_farbfeld(data)
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            icc_profile = img.info.get("icc_profile")
            source_format = img.format
            if img.mode in ("I;16", "I;16B", "I;16L", "I"):
                samples = np.asarray(img.convert("I"), dtype=np.int32) >> 8
                img = Image.fromarray(samples.clip(0, 255).astype(np.uint8))
            # the buffer is always RGB so a gray or CMYK profile cannot travel with it
            if icc_profile and img.mode not in ("RGB", "RGBA", "RGBa", "P", "PA"):
                img = _profile_to_srgb(img, icc_profile)
                icc_profile = None
            rgba = img.convert("RGBA")
    except UnidentifiedImageError as e:
        raise DecodeError("Invalid or corrupted image file. Pillow could not identify the image format.") from e
    except Image.DecompressionBombError as e:
        raise DecodeError(f"Image is too large to decode safely ({e})") from e
    except (OSError, ValueError, SyntaxError) as e:
        raise DecodeError(f"Image data could not be decoded ({e})") from e
    return ImageBuffer(rgba, icc_profile=icc_profile or None, source_format=source_format)


def prepare_image_for_save(img: Image.Image, target_mode: str) -> Image.Image:
    if img.mode == target_mode:
        return img
    if target_mode in ("RGB", "L") and img.mode == "RGBA":
        logger.debug(f"Image mode is '{img.mode}'. Flattening onto white for '{target_mode}' output.")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[3])
        return background if target_mode == "RGB" else background.convert("L")
    return img.convert(target_mode)


def _save(img: Image.Image, pil_format: str, **save_kwargs: Any) -> bytes:
    output = io.BytesIO()
    img.save(output, format=pil_format, **{k: v for k, v in save_kwargs.items() if v is not None})
    return output.getvalue()


def _encode_mozjpeg(buffer: ImageBuffer, params: Mapping[str, Any]) -> bytes:
    colorspace = params["colorspace"]
    img = prepare_image_for_save(buffer.image, "L" if colorspace == "grayscale" else "RGB")
    save_kwargs = {
        "quality": params["quality"],
        "optimize": params["optimize_coding"],
        "progressive": not params["baseline"],
        "smooth": params["smoothing"] or None,
        "icc_profile": buffer.icc_profile,
    }
    if colorspace == "rgb":
        save_kwargs["keep_rgb"] = True
    if params["subsample"] is not None and colorspace != "grayscale":
        save_kwargs["subsampling"] = _JPEG_SUBSAMPLING[params["subsample"]]
    return _save(img, "JPEG", **save_kwargs)


def _encode_jpeg(buffer: ImageBuffer, params: Mapping[str, Any]) -> bytes:
    return _save(
        prepare_image_for_save(buffer.image, "RGB"), "JPEG",
        quality=params["quality"], progressive=params["progressive"], icc_profile=buffer.icc_profile,
    )


def _encode_oxipng(buffer: ImageBuffer, params: Mapping[str, Any]) -> bytes:
    return _save(
        buffer.image, "PNG",
        optimize=True, compress_level=min(9, 3 + params["effort"]), icc_profile=buffer.icc_profile,
    )


def _encode_png(buffer: ImageBuffer, params: Mapping[str, Any]) -> bytes:
    return _save(buffer.image, "PNG", icc_profile=buffer.icc_profile)


def _encode_webp(buffer: ImageBuffer, params: Mapping[str, Any]) -> bytes:
    return _save(
        buffer.image, "WEBP",
        quality=params["quality"], lossless=params["lossless"], exact=params["exact"], method=6,
        icc_profile=buffer.icc_profile,
    )


def _encode_avif(buffer: ImageBuffer, params: Mapping[str, Any]) -> bytes:
    return _save(
        buffer.image, "AVIF",
        quality=params["quality"], speed=params["speed"], icc_profile=buffer.icc_profile,
    )


def _encode_ppm(buffer: ImageBuffer, params: Mapping[str, Any]) -> bytes:
    return _save(prepare_image_for_save(buffer.image, "RGB"), "PPM")


def _encode_qoi(buffer: ImageBuffer, params: Mapping[str, Any]) -> bytes:
    return _save(buffer.image, "QOI")


def _encode_farbfeld(buffer: ImageBuffer, params: Mapping[str, Any]) -> bytes:
    pixels = np.asarray(buffer.image, dtype=np.uint16) * 257
    header = FARBFELD_MAGIC + struct.pack(">II", buffer.width, buffer.height)
    return header + pixels.astype(">u2").tobytes()


def _encode_jpeg_xl(buffer: ImageBuffer, params: Mapping[str, Any]) -> bytes:
    binary = shutil.which(CJXL_BINARY)
    if binary is None:
        raise EncodingError("jpeg_xl", message=f"'{CJXL_BINARY}' was not found on PATH. Install libjxl tools to encode JPEG XL.")
    with tempfile.TemporaryDirectory(prefix="imagepipe-jxl-") as workdir:
        source_path = os.path.join(workdir, "input.png")
        target_path = os.path.join(workdir, "output.jxl")
        with open(source_path, "wb") as f:
            f.write(_encode_png(buffer, {}))
        command = [binary, source_path, target_path, "-d", str(params["distance"]), "-e", str(params["effort"])]
        try:
            subprocess.run(command, check=True, capture_output=True, text=True, encoding="utf-8")
        except subprocess.CalledProcessError as e:
            raise EncodingError("jpeg_xl", e, message=f"cjxl failed: {(e.stderr or e.stdout or '').strip()}") from e
        with open(target_path, "rb") as f:
            return f.read()


_ENCODERS: Dict[str, Callable[[ImageBuffer, Mapping[str, Any]], bytes]] = {
    "mozjpeg": _encode_mozjpeg,
    "jpeg": _encode_jpeg,
    "oxipng": _encode_oxipng,
    "png": _encode_png,
    "webp": _encode_webp,
    "avif": _encode_avif,
    "jpeg_xl": _encode_jpeg_xl,
    "ppm": _encode_ppm,
    "qoi": _encode_qoi,
    "farbfeld": _encode_farbfeld,
}


def encode(buffer: ImageBuffer, codec: CodecSelection) -> bytes:
    encoder = _ENCODERS[codec.name]
    try:
        return encoder(buffer, codec.params)
    except EncodingError:
        raise
    except (OSError, ValueError, KeyError) as e:
        raise EncodingError(codec.name, e) from e

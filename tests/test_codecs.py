# -*- coding: utf-8 -*-
import io
import struct

import numpy as np
import pytest
from PIL import Image, ImageCms

from imagepipe.buffer import ImageBuffer
from imagepipe.codecs import CODECS, decode, encode, make_codec
from imagepipe.errors import ConfigError, DecodeError, EncodingError


def gray_profile() -> bytes:
    """Minimal ICC v2 grayscale display profile with a 2.2 gamma curve."""
    d50 = struct.pack(">iii", 63190, 65536, 54061)
    white_point = b"XYZ " + b"\0" * 4 + d50
    curve = b"curv" + b"\0" * 4 + struct.pack(">IH", 1, 0x0233) + b"\0" * 2
    tags = struct.pack(">I", 2) + struct.pack(">4sII", b"wtpt", 156, 20) + struct.pack(">4sII", b"kTRC", 176, 14)
    size = 128 + len(tags) + len(white_point) + len(curve)
    header = struct.pack(
        ">I4sI4s4s4s12s4s4sI4s4s8sI12s4s16s28s",
        size, b"lcms", 0x02100000, b"mntr", b"GRAY", b"XYZ ", b"\0" * 12, b"acsp", b"\0" * 4, 0,
        b"\0" * 4, b"\0" * 4, b"\0" * 8, 0, d50, b"\0" * 4, b"\0" * 16, b"\0" * 28,
    )
    return header + tags + white_point + curve


class TestMakeCodec:
    def test_defaults(self):
        codec = make_codec("mozjpeg")
        assert codec.extension == "jpg"
        assert codec.params["quality"] == 75
        assert codec.params["baseline"] is False

    def test_none_keeps_default(self):
        assert make_codec("avif", quality=None, speed=3).params == {"quality": 50, "speed": 3}

    def test_every_codec_has_an_encoder_and_extension(self):
        for name in CODECS:
            assert make_codec(name).extension

    def test_unknown_codec(self):
        with pytest.raises(ConfigError):
            make_codec("bmp")

    def test_unknown_parameter(self):
        with pytest.raises(ConfigError):
            make_codec("png", quality=80)

    @pytest.mark.parametrize("name,params", [
        ("webp", {"quality": 0}),
        ("mozjpeg", {"quality": 101}),
        ("oxipng", {"effort": 7}),
        ("jpeg_xl", {"effort": 0}),
        ("mozjpeg", {"subsample": 5}),
    ])
    def test_out_of_range(self, name, params):
        with pytest.raises(ConfigError):
            make_codec(name, **params)

    def test_invalid_choice(self):
        with pytest.raises(ConfigError):
            make_codec("mozjpeg", colorspace="cmyk")


class TestDecode:
    def test_decode_png(self, make_gradient):
        output = io.BytesIO()
        make_gradient(20, 10).convert("RGB").save(output, format="PNG")
        buffer = decode(output.getvalue())
        assert (buffer.width, buffer.height) == (20, 10)
        assert buffer.image.mode == "RGBA"
        assert buffer.source_format == "PNG"

    def test_corrupt_data(self):
        with pytest.raises(DecodeError):
            decode(b"this is not an image at all")

    def test_truncated_png(self, make_gradient):
        output = io.BytesIO()
        make_gradient(20, 10).save(output, format="PNG")
        with pytest.raises(DecodeError):
            decode(output.getvalue()[:60])

    def test_truncated_farbfeld(self):
        with pytest.raises(DecodeError):
            decode(b"farbfeld" + struct.pack(">II", 4, 4) + b"\x00" * 10)

    def test_gray_profile_is_applied_and_dropped(self):
        output = io.BytesIO()
        Image.new("L", (8, 8), 128).save(output, format="PNG", icc_profile=gray_profile())
        buffer = decode(output.getvalue())
        assert buffer.icc_profile is None
        red, green, blue, alpha = buffer.image.getpixel((3, 3))
        assert alpha == 255
        assert max(red, green, blue) - min(red, green, blue) <= 2

    def test_gray_alpha_keeps_transparency(self):
        output = io.BytesIO()
        Image.new("LA", (8, 8), (200, 100)).save(output, format="PNG", icc_profile=gray_profile())
        buffer = decode(output.getvalue())
        assert buffer.icc_profile is None
        assert buffer.image.getpixel((0, 0))[3] == 100

    def test_rgb_profile_on_gray_pixels_is_dropped(self):
        srgb = ImageCms.ImageCmsProfile(ImageCms.createProfile("sRGB")).tobytes()
        output = io.BytesIO()
        Image.new("L", (8, 8), 90).save(output, format="PNG", icc_profile=srgb)
        buffer = decode(output.getvalue())
        assert buffer.icc_profile is None
        assert buffer.image.mode == "RGBA"
        assert buffer.image.getpixel((0, 0))[:3] == (90, 90, 90)

    def test_cmyk_jpeg_does_not_carry_its_profile(self):
        srgb = ImageCms.ImageCmsProfile(ImageCms.createProfile("sRGB")).tobytes()
        output = io.BytesIO()
        Image.new("CMYK", (8, 8), (0, 255, 255, 0)).save(output, format="JPEG", icc_profile=srgb)
        buffer = decode(output.getvalue())
        assert buffer.icc_profile is None
        assert buffer.image.mode == "RGBA"
        assert buffer.source_format == "JPEG"


class TestEncode:
    @pytest.fixture
    def buffer(self, make_gradient):
        return ImageBuffer(make_gradient(32, 24))

    def test_png_is_lossless(self, buffer):
        data = encode(buffer, make_codec("png"))
        assert data.startswith(b"\x89PNG")
        assert decode(data).pixels == buffer.pixels

    def test_oxipng(self, buffer):
        data = encode(buffer, make_codec("oxipng", effort=6))
        assert decode(data).pixels == buffer.pixels

    def test_jpeg(self, buffer):
        data = encode(buffer, make_codec("jpeg", quality=90))
        assert data[:2] == b"\xff\xd8"
        assert decode(data).image.size == (32, 24)

    def test_mozjpeg_options(self, buffer):
        data = encode(buffer, make_codec("mozjpeg", quality=60, subsample=1, smoothing=10))
        with Image.open(io.BytesIO(data)) as img:
            assert img.info.get("progressive") or img.info.get("progression")

    def test_mozjpeg_grayscale(self, buffer):
        data = encode(buffer, make_codec("mozjpeg", colorspace="grayscale"))
        with Image.open(io.BytesIO(data)) as img:
            assert img.mode == "L"

    def test_webp_lossless(self, buffer):
        data = encode(buffer, make_codec("webp", lossless=True))
        assert data[:4] == b"RIFF"
        assert decode(data).pixels == buffer.pixels

    def test_ppm_drops_alpha(self, buffer):
        data = encode(buffer, make_codec("ppm"))
        assert data.startswith(b"P6")

    def test_farbfeld(self, buffer):
        data = encode(buffer, make_codec("farbfeld"))
        assert data[:8] == b"farbfeld"
        assert struct.unpack(">II", data[8:16]) == (32, 24)
        assert len(data) == 16 + 32 * 24 * 8
        samples = np.frombuffer(data, dtype=">u2", offset=16)
        assert int(samples[0]) == int(np.asarray(buffer.image)[0, 0, 0]) * 257
        assert decode(data).pixels == buffer.pixels

    def test_keeps_icc_profile(self, buffer):
        profile = ImageCms.ImageCmsProfile(ImageCms.createProfile("sRGB")).tobytes()
        buffer.icc_profile = profile
        data = encode(buffer, make_codec("png"))
        assert decode(data).icc_profile == profile

    def test_jpeg_xl_without_cjxl(self, buffer, monkeypatch):
        monkeypatch.setattr("imagepipe.codecs.shutil.which", lambda name: None)
        with pytest.raises(EncodingError) as exc_info:
            encode(buffer, make_codec("jpeg_xl"))
        assert exc_info.value.codec == "jpeg_xl"
        assert exc_info.value.kind == "EncodingError"

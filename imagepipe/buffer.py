# -*- coding: utf-8 -*-
from dataclasses import dataclass
from typing import Optional

from PIL import Image


@dataclass
class ImageBuffer:
    """
    Decoded RGBA8 image owned by a single job.

    `quantized_from` and `palette` are only set between a quantization step and
    the dithering step that follows it.
    """
    image: Image.Image
    icc_profile: Optional[bytes] = None
    source_format: Optional[str] = None
    quantized_from: Optional[Image.Image] = None
    palette: Optional[Image.Image] = None

    def __post_init__(self):
        if self.image.mode != "RGBA":
            self.image = self.image.convert("RGBA")

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def pixels(self) -> bytes:
        return self.image.tobytes()

    def replace(self, image: Image.Image):
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        self.image = image

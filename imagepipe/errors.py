# -*- coding: utf-8 -*-
from typing import Optional


class PipelineError(Exception):
    """Base class for every error raised by the image pipeline."""
    kind = "PipelineError"


class ConfigError(PipelineError):
    """Invalid pipeline or command line specification. Fatal, raised before any file is touched."""
    kind = "ConfigError"


class DecodeError(PipelineError):
    kind = "DecodeError"


class InvalidDimension(PipelineError):
    kind = "InvalidDimension"

    def __init__(self, width: int, height: int, expression: str = ""):
        self.width = width
        self.height = height
        self.expression = expression
        detail = f" (from '{expression}')" if expression else ""
        super().__init__(f"Resize target {width}x{height}{detail} has a zero dimension")


class EncodingError(PipelineError):
    kind = "EncodingError"

    def __init__(self, codec: str, cause: Optional[BaseException] = None, message: Optional[str] = None):
        self.codec = codec
        self.cause = cause
        super().__init__(message or f"{codec} encoder failed: {cause}")


class IoError(PipelineError):
    """File system failure while reading, renaming or writing a file."""
    kind = "IoError"

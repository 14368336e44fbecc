# -*- coding: utf-8 -*-
import logging
import os

from .buffer import ImageBuffer
from .codecs import decode, encode
from .color import DEFAULT_ICC_WORKERS, apply_icc_profile, dither, premultiply_alpha, quantize, unpremultiply_alpha
from .errors import IoError, PipelineError
from .jobs import JobDescriptor, JobFailure, JobResult, JobSuccess
from .paths import backup_input, write_output
from .pipeline import AlphaPremultiply, AlphaUnpremultiply, ApplyIccProfile, Dithering, PipelineSpec, Quantization, Resize
from .resize import resize_image

logger = logging.getLogger(__name__)


def apply_operations(buffer: ImageBuffer, pipeline: PipelineSpec, icc_workers: int = DEFAULT_ICC_WORKERS) -> ImageBuffer:
    for node in pipeline.nodes:
        if isinstance(node, Resize):
            buffer.replace(resize_image(buffer.image, node.value, node.filter, node.upscale, node.downscale))
        elif isinstance(node, Quantization):
            quantize(buffer, node.quality)
        elif isinstance(node, Dithering):
            dither(buffer, node.level)
        elif isinstance(node, AlphaPremultiply):
            premultiply_alpha(buffer)
        elif isinstance(node, AlphaUnpremultiply):
            unpremultiply_alpha(buffer)
        elif isinstance(node, ApplyIccProfile):
            apply_icc_profile(buffer, node.profile, icc_workers)
        else:
            raise TypeError(f"Unsupported pipeline operation: {node!r}")
    return buffer


def _read_input(path: str) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read()
    except FileNotFoundError as e:
        raise IoError(f"Input file '{path}' not found.") from e
    except PermissionError as e:
        raise IoError(f"Permission denied reading '{path}'.") from e
    except OSError as e:
        raise IoError(f"Could not read '{path}': {e}") from e


def execute_job(job: JobDescriptor, icc_workers: int = DEFAULT_ICC_WORKERS) -> JobResult:
    """
    Runs one file through backup, decode, the compiled operations, encode and write.

    Never raises for per-file problems: they come back as a JobFailure so sibling
    jobs are unaffected.
    """
    display_input_file = os.path.basename(job.input_path)
    try:
        source_path = backup_input(job.input_path) if job.backup else job.input_path
        data = _read_input(source_path)
        logger.debug(f"Processing '{display_input_file}' ({len(data)} bytes) with {job.pipeline.describe()}")

        buffer = decode(data)
        apply_operations(buffer, job.pipeline, icc_workers)
        encoded = encode(buffer, job.codec)
        bytes_written = write_output(job.output_path, encoded)

        logger.debug(f"Successfully processed '{display_input_file}' -> '{job.output_path}'")
        return JobSuccess(job.input_path, job.output_path, len(data), bytes_written)

    except PipelineError as e:
        logger.error(f"Processing failed for '{display_input_file}': {e.kind}: {e}")
        return JobFailure(job.input_path, e.kind, str(e))
    except Exception as e:
        msg = f"An unexpected error occurred ({type(e).__name__}: {e})."
        logger.critical(f"Processing failed for '{display_input_file}': {msg}", exc_info=True)
        return JobFailure(job.input_path, "InternalError", msg)

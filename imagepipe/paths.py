# -*- coding: utf-8 -*-
import logging
import os
import tempfile
from typing import Iterable, List, Optional, Tuple

from .codecs import SUPPORTED_EXTENSIONS
from .errors import IoError

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = "backup"
DEFAULT_SUFFIX = "updated"
FALLBACK_STEM = "optimized_image"


def scan_for_image_files(inputs: Iterable[str]) -> Tuple[List[str], List[str]]:
    """
    Expands the given paths into a list of files to process.

    Directories are walked for files with a supported image extension; plain
    files are taken as they are and left to the decoder.
    """
    files_to_process = []
    skipped_scan_items_reasons = []

    for raw_path in inputs:
        input_path = os.path.abspath(raw_path)
        if os.path.isdir(input_path):
            found = []
            for root, _, filenames in os.walk(input_path):
                for filename in filenames:
                    file_ext = os.path.splitext(filename)[1].lower()
                    full_path = os.path.join(root, filename)
                    if file_ext in SUPPORTED_EXTENSIONS:
                        found.append(full_path)
                    else:
                        reason = f"Skipped '{os.path.relpath(full_path, input_path)}': Extension '{file_ext or '(none)'}' is not supported."
                        skipped_scan_items_reasons.append(reason)
                        logger.debug(reason)
            if not found:
                logger.warning(f"No supported image files found in directory '{input_path}'.")
            files_to_process.extend(sorted(found))
        elif os.path.isfile(input_path):
            files_to_process.append(input_path)
        else:
            reason = f"Skipped '{raw_path}': not a file."
            skipped_scan_items_reasons.append(reason)
            logger.warning(reason)

    return files_to_process, skipped_scan_items_reasons


def get_common_path(paths: List[str]) -> Optional[str]:
    """Deepest directory shared by the parent directories of all paths."""
    if not paths:
        return None
    parents = [os.path.dirname(os.path.abspath(p)) for p in paths]
    try:
        return os.path.commonpath(parents)
    except ValueError:
        logger.warning("Inputs do not share a common root (different drives?). Output structure will be flattened.")
        return None


def resolve_output_path(
    input_path: str,
    extension: str,
    output_dir: Optional[str] = None,
    suffix: Optional[str] = None,
    recursive: bool = False,
    common_root: Optional[str] = None,
) -> str:
    input_path = os.path.abspath(input_path)
    input_dir = os.path.dirname(input_path)
    file_name = os.path.splitext(os.path.basename(input_path))[0] or FALLBACK_STEM

    if output_dir:
        output_dir = os.path.abspath(output_dir)
        if recursive and common_root:
            relative_dir = os.path.relpath(input_dir, common_root)
            if relative_dir.startswith(os.pardir):
                relative_dir = ""
            destination_dir = os.path.normpath(os.path.join(output_dir, relative_dir))
        else:
            destination_dir = output_dir
    else:
        destination_dir = input_dir

    if suffix:
        file_name = f"{file_name}@{suffix}"
    return os.path.join(destination_dir, f"{file_name}.{extension.lower().lstrip('.')}")


def backup_path_for(input_path: str) -> str:
    base_name, original_ext = os.path.splitext(input_path)
    return f"{base_name}@{BACKUP_SUFFIX}{original_ext}"


def backup_input(input_path: str) -> str:
    """Renames the input aside so the original bytes survive a failed encode or an in-place overwrite."""
    backup_path = backup_path_for(input_path)
    try:
        os.replace(input_path, backup_path)
    except OSError as e:
        raise IoError(f"Could not create backup '{backup_path}': {e}") from e
    logger.debug(f"Backed up '{input_path}' -> '{backup_path}'")
    return backup_path


def write_output(output_path: str, data: bytes) -> int:
    output_dir = os.path.dirname(output_path)
    try:
        os.makedirs(output_dir, exist_ok=True)
    except OSError as e:
        raise IoError(f"Failed to create output directory '{output_dir}': {e}") from e

    try:
        fd, tmp_path = tempfile.mkstemp(suffix=".tmp", prefix=f".{os.path.basename(output_path)}.", dir=output_dir)
    except OSError as e:
        raise IoError(f"Failed to create a temporary file in '{output_dir}': {e}") from e
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_path, output_path)
    except OSError as e:
        if os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
                logger.warning(f"Removed partially written output file: '{tmp_path}'")
            except OSError as rm_e:
                logger.error(f"Could not remove partially written output file '{tmp_path}': {rm_e}")
        raise IoError(f"Failed to write '{output_path}': {e}") from e
    return len(data)

# -*- coding: utf-8 -*-
import argparse
import os
import sys
from typing import Any, Dict, List, Optional

from imagepipe import __version__
from imagepipe.codecs import CODECS, make_codec
from imagepipe.color import DEFAULT_DITHERING_LEVEL, DEFAULT_ICC_WORKERS, DEFAULT_QUANTIZATION_QUALITY
from imagepipe.config import load_config_from_file, setup_logging
from imagepipe.errors import ConfigError
from imagepipe.jobs import BatchReport
from imagepipe.paths import DEFAULT_SUFFIX, scan_for_image_files
from imagepipe.pipeline import MODIFIER_NAMES, OPERATION_NAMES, compile_pipeline
from imagepipe.resize import DEFAULT_FILTER, RESIZE_FILTER_NAMES
from imagepipe.scheduler import MAX_THREADS, WorkerPool, build_jobs, default_thread_count, run_batch


class PipelineTokenAction(argparse.Action):
    """Records every occurrence as a (name, value) token so the pipeline keeps command line order."""

    def __init__(self, option_strings, dest, token_name=None, **kwargs):
        super().__init__(option_strings, dest, **kwargs)
        self.token_name = token_name or dest

    def __call__(self, parser, namespace, values, option_string=None):
        tokens = list(getattr(namespace, self.dest, None) or [])
        tokens.append((self.token_name, self.const if self.nargs == 0 else values))
        setattr(namespace, self.dest, tokens)


def _add_mozjpeg_arguments(group):
    group.add_argument("-q", "--quality", type=int, default=None,
                       help="Quality, values 60-80 are recommended (1-100, default: 75).")
    group.add_argument("--baseline", action="store_true", default=None,
                       help="Use baseline encoding (by default the output is progressive).")
    group.add_argument("--no-optimize-coding", dest="optimize_coding", action="store_false", default=None,
                       help="Disable Huffman table optimization (makes files larger).")
    group.add_argument("--smoothing", type=int, default=None,
                       help="Smoothing factor applied before encoding (0-100, default: 0).")
    group.add_argument("--colorspace", choices=["ycbcr", "rgb", "grayscale"], default=None,
                       help="Color space of the JPEG being written (default: ycbcr).")
    group.add_argument("--subsample", type=int, choices=range(1, 5), metavar="[1-4]", default=None,
                       help="Chroma subsampling pixel size: 1 keeps full chroma, 2-4 use 4:2:0.")


def _add_jpeg_arguments(group):
    group.add_argument("-q", "--quality", type=int, default=None,
                       help="Quality which the image will be encoded with (1-100, default: 75).")
    group.add_argument("--progressive", action="store_true", default=None,
                       help="Use progressive encoding.")


def _add_oxipng_arguments(group):
    group.add_argument("--effort", type=int, default=None,
                       help="Optimization level preset (0-6, default: 2).")


def _add_webp_arguments(group):
    group.add_argument("-q", "--quality", type=int, default=None,
                       help="Quality, values 60-80 are recommended (1-100, default: 75).")
    group.add_argument("--lossless", action="store_true", default=None,
                       help="Encode without quality loss (quality then controls compression effort).")
    group.add_argument("--exact", action="store_true", default=None,
                       help="Preserve RGB values under fully transparent pixels.")


def _add_avif_arguments(group):
    group.add_argument("-q", "--quality", type=int, default=None,
                       help="Quality which the image will be encoded with (1-100, default: 50).")
    group.add_argument("--speed", type=int, default=None,
                       help="Compression speed, lower is slower and smaller (0-10, default: 6).")


def _add_jpeg_xl_arguments(group):
    group.add_argument("--distance", type=float, default=None,
                       help="Butteraugli distance, 0 is lossless (0-25, default: 1.0).")
    group.add_argument("--effort", type=int, default=None,
                       help="Encoder effort (1-9, default: 7).")


CODEC_ARGUMENTS = {
    "mozjpeg": _add_mozjpeg_arguments,
    "jpeg": _add_jpeg_arguments,
    "oxipng": _add_oxipng_arguments,
    "webp": _add_webp_arguments,
    "avif": _add_avif_arguments,
    "jpeg_xl": _add_jpeg_xl_arguments,
}


def _add_common_arguments(parser: argparse.ArgumentParser):
    parser.add_argument("files", nargs="+", metavar="FILES",
                        help="Input file(s) or directories to process.\n"
                             "Directories are scanned recursively for supported images.")

    general_group = parser.add_argument_group("General")
    general_group.add_argument("-d", "--directory", "--output-dir", dest="directory", default=None,
                               help="Directory to write output file(s) to (default: next to each input).\n"
                                    "Output is flattened unless --recursive is used.")
    general_group.add_argument("-r", "--recursive", action="store_true", default=False,
                               help="Preserve the folder structure under --directory.")
    general_group.add_argument("-s", "--suffix", nargs="?", const=DEFAULT_SUFFIX, default=None,
                               help=f"Add '@SUFFIX' to output file names (default when given without a value: '{DEFAULT_SUFFIX}').\n"
                                    "For example '-s 2x' turns 'file.png' into 'file@2x.<ext>'.")
    general_group.add_argument("-b", "--backup", action="store_true", default=False,
                               help="Rename each input to 'name@backup.ext' before it is processed.")
    general_group.add_argument("-t", "--threads", type=int, default=None,
                               help=f"Number of files processed concurrently (1-{MAX_THREADS}, default: {default_thread_count()}).")
    general_group.add_argument("--icc-threads", type=int, default=DEFAULT_ICC_WORKERS,
                               help=f"Threads used per image for ICC conversion (default: {DEFAULT_ICC_WORKERS}).")
    general_group.add_argument("--config", default=None,
                               help="JSON file with default option values (keys are option names).")
    general_group.add_argument("--quiet", action="store_true", default=False,
                               help="Hide the progress bar and the per-file summary.")

    preprocess_group = parser.add_argument_group(
        "Preprocessors",
        "Operations run in the order they are given. --filter, --dithering, --no-upscale and\n"
        "--no-downscale apply to every matching operation wherever they appear.",
    )
    preprocess_group.add_argument("--resize", action=PipelineTokenAction, dest="pipeline_tokens", token_name="resize",
                                  metavar="EXPR[:FILTER]",
                                  help="Resize the image(s). Possible values:\n"
                                       "  @1.5      multiply both sides\n"
                                       "  150%%      scale by percentage\n"
                                       "  100x100   exact width x height\n"
                                       "  100x_     width, keep aspect ratio\n"
                                       "  _x100     height, keep aspect ratio\n"
                                       "A ':FILTER' suffix overrides --filter for this resize only.")
    preprocess_group.add_argument("--filter", action=PipelineTokenAction, dest="pipeline_tokens", token_name="filter",
                                  metavar="FILTER",
                                  help=f"Resampling filter for every resize (default: {DEFAULT_FILTER}):\n"
                                       + "\n".join([f"  {k}: {v}" for k, v in RESIZE_FILTER_NAMES.items()]))
    preprocess_group.add_argument("--no-upscale", action=PipelineTokenAction, dest="pipeline_tokens", token_name="upscale",
                                  nargs=0, const=False,
                                  help="Skip resizes that would enlarge the image.")
    preprocess_group.add_argument("--no-downscale", action=PipelineTokenAction, dest="pipeline_tokens", token_name="downscale",
                                  nargs=0, const=False,
                                  help="Skip resizes that would shrink the image.")
    preprocess_group.add_argument("--quantization", action=PipelineTokenAction, dest="pipeline_tokens", token_name="quantization",
                                  nargs="?", const=None, metavar="QUALITY",
                                  help=f"Reduce the palette toward QUALITY (0-100, default: {DEFAULT_QUANTIZATION_QUALITY}).")
    preprocess_group.add_argument("--dithering", action=PipelineTokenAction, dest="pipeline_tokens", token_name="dithering",
                                  nargs="?", const=None, metavar="LEVEL",
                                  help=f"Dither every quantization at LEVEL (1-100, default: {DEFAULT_DITHERING_LEVEL}).\n"
                                       "Requires --quantization.")
    preprocess_group.add_argument("--premultiply", action=PipelineTokenAction, dest="pipeline_tokens", token_name="premultiply",
                                  nargs=0, const=None,
                                  help="Run the next operation on alpha-premultiplied pixels.")
    preprocess_group.add_argument("--icc", action=PipelineTokenAction, dest="pipeline_tokens", token_name="icc",
                                  nargs="?", const=None, metavar="PROFILE",
                                  help="Convert to the ICC PROFILE file (default: sRGB) and embed it.")
    parser.set_defaults(pipeline_tokens=None)


def _create_codec_parser(subparsers: argparse._SubParsersAction, name: str):
    codec_parser = subparsers.add_parser(
        name,
        help=CODECS[name]["description"],
        description=f"Batch encode images as {name} (.{CODECS[name]['extension']})",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    codec_parser.set_defaults(func=handle_codec_command, parser_ref=codec_parser, codec_name=name)
    _add_common_arguments(codec_parser)
    if name in CODEC_ARGUMENTS:
        CODEC_ARGUMENTS[name](codec_parser.add_argument_group(f"{name} Options"))
    return codec_parser


def _coerce_config_value(action: argparse.Action, key: str, value: Any) -> Any:
    """Runs a configuration file value through the same conversion and checks as the command line option."""
    if value is None:
        return value
    try:
        if isinstance(action, argparse._StoreConstAction):
            if not isinstance(value, bool):
                raise TypeError(f"expected true or false, got {value!r}")
        elif action.type is not None:
            value = action.type(value)
        elif not isinstance(value, str):
            raise TypeError(f"expected a string, got {value!r}")
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for '{key}' in configuration file: {e}") from e
    if action.choices is not None and value not in action.choices:
        raise ConfigError(f"Invalid value for '{key}' in configuration file: {value!r} is not one of {list(action.choices)}")
    return value


def _apply_config_defaults(args: argparse.Namespace, config: Dict[str, Any]):
    parser = args.parser_ref
    options = {
        action.dest: action for action in parser._actions
        if action.option_strings and action.dest not in ("help", "pipeline_tokens", "config")
    }
    for key, value in config.items():
        if key in MODIFIER_NAMES or key == "pipeline":
            continue
        if key not in options:
            print(f"   -> Warning: option '{key}' in the configuration file does not apply to '{args.codec_name}' and is ignored.",
                  file=sys.stderr)
            continue
        if getattr(args, key) == parser.get_default(key):
            setattr(args, key, _coerce_config_value(options[key], key, value))


def _config_tokens(config: Dict[str, Any]) -> List[tuple]:
    tokens = []
    for entry in config.get("pipeline", []):
        if isinstance(entry, str):
            tokens.append((entry, None))
        elif isinstance(entry, (list, tuple)) and 1 <= len(entry) <= 2:
            tokens.append((entry[0], entry[1] if len(entry) == 2 else None))
        else:
            raise ConfigError(f"Invalid pipeline entry in configuration file: {entry!r}")
    return tokens


def _format_bytes(size: int) -> str:
    for unit in ("B", "kB", "MB"):
        if size < 1000:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1000
    return f"{size:.1f} GB"


def print_report(report: BatchReport, quiet: bool = False):
    if not quiet:
        for success in report.successes:
            change = success.size_change_percent
            arrow = "^" if change > 0 else "v"
            print(f"  - {os.path.relpath(success.input_path)} -> {os.path.relpath(success.output_path)} "
                  f"{_format_bytes(success.bytes_read)} -> {_format_bytes(success.bytes_written)} {arrow} {abs(change):.1f}%")
        print("-" * 30)
        print(f"{len(report.successes)} file(s) processed successfully.")
        if report.skipped:
            print(f"{len(report.skipped)} item(s) skipped.")

    if report.failures:
        print(f"{len(report.failures)} file(s) failed.", file=sys.stderr)
        print("\nDetails for failed images:", file=sys.stderr)
        for failure in report.failures:
            print(f"  - File: {os.path.relpath(failure.input_path)}", file=sys.stderr)
            print(f"    Error: {failure.error_kind}: {failure.cause}", file=sys.stderr)
    if report.interrupted:
        print("Operation interrupted by user. Unstarted files were left untouched.", file=sys.stderr)


def handle_codec_command(args: argparse.Namespace):
    try:
        config = load_config_from_file(args.config) if args.config else {}
        _apply_config_defaults(args, config)

        tokens = list(args.pipeline_tokens or [])
        if not any(name in OPERATION_NAMES for name, _ in tokens):
            tokens = _config_tokens(config) + tokens
        modifiers = {key: config[key] for key in MODIFIER_NAMES if key in config}
        pipeline = compile_pipeline(tokens, modifiers)

        codec_params = {key: getattr(args, key, None) for key in CODECS[args.codec_name]["defaults"]}
        codec = make_codec(args.codec_name, **codec_params)
        pool = WorkerPool(args.threads)
        if args.icc_threads < 1:
            raise ConfigError(f"--icc-threads must be at least 1, got {args.icc_threads}")
    except ConfigError as e:
        print(f"(!) Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    if args.recursive and not args.directory:
        print("   -> Warning: --recursive is ignored without --directory.", file=sys.stderr)

    files, skipped = scan_for_image_files(args.files)
    jobs = build_jobs(files, pipeline, codec, args.directory, args.suffix, args.recursive, args.backup)

    if not args.quiet:
        print(f"Codec: {codec.name} (.{codec.extension}), Pipeline: {pipeline.describe()}, Threads: {pool.max_workers}")
        print("-" * 30)

    report = run_batch(jobs, pool, icc_workers=args.icc_threads, show_progress=not args.quiet)
    report.skipped[:0] = skipped
    print_report(report, args.quiet)
    sys.exit(report.exit_code)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Batch image optimizer: resize, quantize and re-encode images concurrently",
        formatter_class=argparse.RawTextHelpFormatter
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        dest="verbose_global",
        help="Enable verbose (DEBUG level) logging."
    )

    subparsers = parser.add_subparsers(title="Codecs", dest="command", required=True,
                                       help="Output codec")
    for name in CODECS:
        _create_codec_parser(subparsers, name)
    return parser


def main(argv: Optional[List[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose_global)
    try:
        args.func(args)
    except KeyboardInterrupt:
        print("\nOperation interrupted by user", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
FrameSync: finds the frame offset between a raw YUV reference and an encoded stream.

The reference frame is compared pixel-by-pixel against frames decoded from
the stream at successive candidate offsets; the closest candidate is the
number of frames the stream is shifted by.
"""

import argparse
import json
import logging
import os
import sys

from colorful_logger import setup_colorful_logging
from ffmpeg_decoder import DEFAULT_DECODE_TIMEOUT, FFmpegFrameDecoder, find_executable
from frame_search import (DEFAULT_FIRST_CANDIDATE, DEFAULT_MAX_CANDIDATE, DEFAULT_MAX_WORKERS,
                          DEFAULT_REFERENCE_INDEX, BoundedFrameSearch)
from frame_utils import FrameGeometry
from sync_errors import DecodeFailure, EmptyResultError, FatalInputError

# --- Constants ---
DEFAULT_WIDTH = 1920
DEFAULT_HEIGHT = 1080
DEFAULT_FRAME_RATE = 25.0

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_NO_RESULT = 2
EXIT_INTERRUPTED = 130

logger = logging.getLogger("frame_sync")


class ConfigError(Exception):
    """Invalid command-line or config file values"""


def load_config(config_path):
    """Load option defaults from a JSON file"""
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Error loading configuration {config_path}: {e}") from e
    if not isinstance(config, dict):
        raise ConfigError(f"Configuration {config_path} must contain a JSON object")
    return config


def build_parser():
    parser = argparse.ArgumentParser(
        description="FrameSync: finds the frame offset between a raw YUV reference file and an encoded video stream.",
        formatter_class=argparse.RawTextHelpFormatter,
        epilog="""
Example Usage:
  # 1080p25 reference against a transport stream, defaults for everything else
  python frame_sync.py Raw.yuv video.ts

  # 720p50, search 1..200 with 8 parallel decodes and keep a CSV of all scores
  python frame_sync.py Raw.yuv video.ts --width 1280 --height 720 --frame_rate 50 \\
      --max_candidate 200 --workers 8 --output_csv scores.csv

  # Load defaults from a JSON file (command-line flags still win)
  python frame_sync.py Raw.yuv video.ts --config sync.json
"""
    )
    parser.add_argument("reference", help="Raw planar YUV 4:2:0 reference file (no header).")
    parser.add_argument("stream", help="Encoded/transmitted video to align against the reference.")
    parser.add_argument("--config", metavar="JSON_PATH", default=None,
                        help="Optional JSON file with option defaults (keys are the long option names).")

    geo_group = parser.add_argument_group('Frame Geometry')
    geo_group.add_argument("--width", type=int, default=DEFAULT_WIDTH, help=f"Frame width in pixels. (Default: {DEFAULT_WIDTH})")
    geo_group.add_argument("--height", type=int, default=DEFAULT_HEIGHT, help=f"Frame height in pixels. (Default: {DEFAULT_HEIGHT})")
    geo_group.add_argument("--frame_rate", type=float, default=DEFAULT_FRAME_RATE, help=f"Stream frame rate used for seeking. (Default: {DEFAULT_FRAME_RATE})")

    search_group = parser.add_argument_group('Search Parameters')
    search_group.add_argument("--reference_index", type=int, default=DEFAULT_REFERENCE_INDEX,
                              help=f"Frame of the reference file to match. (Default: {DEFAULT_REFERENCE_INDEX})")
    search_group.add_argument("--first_candidate", type=int, default=DEFAULT_FIRST_CANDIDATE,
                              help=f"First candidate offset to test. (Default: {DEFAULT_FIRST_CANDIDATE})")
    search_group.add_argument("--max_candidate", type=int, default=DEFAULT_MAX_CANDIDATE,
                              help=f"Last candidate offset to test. (Default: {DEFAULT_MAX_CANDIDATE})")
    search_group.add_argument("--workers", type=int, default=DEFAULT_MAX_WORKERS,
                              help=f"Maximum number of ffmpeg processes running at once. (Default: {DEFAULT_MAX_WORKERS})")
    search_group.add_argument("--timeout", type=float, default=DEFAULT_DECODE_TIMEOUT,
                              help=f"Seconds before a single ffmpeg decode is abandoned, 0 to disable. (Default: {DEFAULT_DECODE_TIMEOUT})")
    search_group.add_argument("--ffmpeg", metavar="PATH", default=None, help="ffmpeg executable. (Default: looked up in PATH)")

    out_group = parser.add_argument_group('Output')
    out_group.add_argument("--output_csv", metavar="CSV_PATH", default=None, help="Optional: save every candidate score to a CSV file.")
    out_group.add_argument("--plot", metavar="PNG_PATH", default=None, help="Optional: save a plot of score per candidate.")
    out_group.add_argument("--qc_output_dir", metavar="QC_DIR", default=None,
                           help="Optional: save a side-by-side image of the reference and the best candidate.")
    out_group.add_argument("--log_file", metavar="LOG_PATH", default=None, help="Optional: also write the log to a file.")
    out_group.add_argument("--no_progress", action="store_true", help="Disable the progress bar.")
    out_group.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser


def check_config_value(action, value):
    """
    Validate a config file value against the type of its command-line option

    argparse only converts string defaults, so JSON values must be checked here.

    Returns:
    The value, converted to float for float options
    """
    key = action.dest
    if action.nargs == 0:  # store_true flags
        if not isinstance(value, bool):
            raise ConfigError(f"Config option '{key}' must be true or false, got {value!r}")
        return value
    if action.type is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"Config option '{key}' must be an integer, got {value!r}")
        return value
    if action.type is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(f"Config option '{key}' must be a number, got {value!r}")
        return float(value)
    # Path options: a string, or null to leave the output disabled
    if value is not None and not isinstance(value, str):
        raise ConfigError(f"Config option '{key}' must be a string, got {value!r}")
    return value


def parse_args(argv=None):
    """
    Parse the command line, applying defaults from --config first

    Precedence: built-in defaults < config file < explicit command-line flags.
    """
    parser = build_parser()
    pre_args, _ = parser.parse_known_args(argv)
    if pre_args.config:
        config = load_config(pre_args.config)
        actions = {action.dest: action for action in parser._actions
                   if action.dest not in ('help', 'reference', 'stream', 'config')}
        unknown = sorted(set(config) - set(actions))
        if unknown:
            raise ConfigError(f"Unknown option(s) in {pre_args.config}: {', '.join(unknown)}")
        parser.set_defaults(**{key: check_config_value(actions[key], value) for key, value in config.items()})
    return parser.parse_args(argv)


def validate_args(args):
    if args.width <= 0 or args.height <= 0:
        raise ConfigError(f"Frame size must be positive, got {args.width}x{args.height}")
    if args.frame_rate <= 0:
        raise ConfigError(f"Frame rate must be positive, got {args.frame_rate}")
    if args.workers < 1:
        raise ConfigError(f"Worker count must be at least 1, got {args.workers}")
    if args.reference_index < 0:
        raise ConfigError(f"Reference index must be non-negative, got {args.reference_index}")
    if args.first_candidate < 1 or args.max_candidate < args.first_candidate:
        raise ConfigError(f"Invalid candidate range {args.first_candidate}..{args.max_candidate}")
    if args.timeout is not None and args.timeout < 0:
        raise ConfigError(f"Timeout must not be negative, got {args.timeout}")
    if not os.path.isfile(args.reference):
        raise ConfigError(f"Reference file not found: {args.reference}")
    if not os.path.isfile(args.stream):
        raise ConfigError(f"Stream file not found: {args.stream}")


def write_outputs(args, result, search, decoder):
    """Optional CSV / plot / QC outputs. Failures here never change the result."""
    # Imported lazily: matplotlib and OpenCV are only needed for these outputs
    import sync_report

    if args.output_csv:
        try:
            sync_report.write_scores_csv(result, args.output_csv)
        except OSError as e:
            logger.error(f"Could not write CSV {args.output_csv}: {e}")
    if args.plot:
        try:
            sync_report.plot_scores(result, args.plot)
        except OSError as e:
            logger.error(f"Could not save plot {args.plot}: {e}")
    if args.qc_output_dir:
        logger.info("--- Generating QC Image ---")
        qc_path = os.path.join(args.qc_output_dir, f"qc_offset_{result.candidate_index:04d}.png")
        try:
            best_frame = decoder.extract_frame(args.stream, search.geometry, result.candidate_index,
                                               args.frame_rate, strict=False)
            sync_report.create_qc_image(search.reference_frame, best_frame, search.geometry, qc_path)
        except DecodeFailure as e:
            logger.warning(f"QC Skip: could not re-decode the best candidate: {e.message}")
        except (OSError, ValueError) as e:
            logger.error(f"Error creating QC image '{qc_path}': {e}")


def main(argv=None):
    try:
        args = parse_args(argv)
    except ConfigError as e:
        setup_colorful_logging(level=logging.INFO)
        logger.error(str(e))
        return EXIT_FATAL

    setup_colorful_logging(level=logging.DEBUG if args.verbose else logging.INFO, log_file=args.log_file)

    try:
        validate_args(args)
    except ConfigError as e:
        logger.error(str(e))
        return EXIT_FATAL

    ffmpeg_path = args.ffmpeg or find_executable("ffmpeg")
    if not ffmpeg_path:
        logger.error("FATAL: Required 'ffmpeg' executable not found in system PATH.")
        return EXIT_FATAL

    logger.info("---=== FrameSync ===---")
    logger.info(f"Reference: {os.path.basename(args.reference)} (frame {args.reference_index})")
    logger.info(f"Stream:    {os.path.basename(args.stream)}")
    logger.info(f"Geometry:  {args.width}x{args.height} @ {args.frame_rate} fps")
    logger.info(f"Using ffmpeg: {ffmpeg_path}")

    decoder = FFmpegFrameDecoder(ffmpeg_path=ffmpeg_path, timeout=args.timeout or None)
    search = BoundedFrameSearch(
        reference_path=args.reference,
        source_path=args.stream,
        geometry=FrameGeometry(args.width, args.height),
        frame_rate=args.frame_rate,
        decoder=decoder,
        reference_index=args.reference_index,
        first_candidate=args.first_candidate,
        last_candidate=args.max_candidate,
        max_workers=args.workers,
        show_progress=not args.no_progress,
    )

    try:
        result = search.run()
    except FatalInputError as e:
        logger.error(f"FATAL: {e}")
        return EXIT_FATAL
    except EmptyResultError as e:
        logger.error(f"{e}. Check the stream path and ffmpeg output above.")
        return EXIT_NO_RESULT
    except KeyboardInterrupt:
        logger.error("Interrupted by user.")
        return EXIT_INTERRUPTED

    if result.failures:
        logger.warning(f"{len(result.failures)} candidate(s) could not be decoded and were skipped: "
                       f"{', '.join(str(c) for c in sorted(result.failures))}")

    write_outputs(args, result, search, decoder)

    logger.info(f"  ✓ Best match: candidate {result.candidate_index} "
                f"(score {result.score:.0f}, {result.offset_seconds:.3f}s)")
    print(result.summary_line())
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())

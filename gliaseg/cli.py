#!/usr/bin/env python3
"""
Command line interface for the glia segmentation pipeline.

Usage:
    gliaseg run /data/stacks images.txt errors.txt metrics.csv
    gliaseg run /data/stacks images.txt errors.txt metrics.csv --layers-per-group 5 --workers 4
    gliaseg validate config.json result/batch_results.json
    gliaseg config --config config.json

Subcommands:
    run         Process every image listed in a manifest
    validate    Validate JSON files
    config      Show the effective configuration
"""

import argparse
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from gliaseg.io.stack_loader import read_manifest
from gliaseg.processing.batch import BatchProcessor
from gliaseg.utils.config import (
    ConfigValidationError,
    PipelineConfig,
    get_config_summary,
    get_default_path,
    load_config,
    validate_config,
)
from gliaseg.utils.logging import get_logger, setup_logging
from gliaseg.utils.schemas import infer_and_validate


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with subcommands."""

    parser = argparse.ArgumentParser(
        prog="gliaseg",
        description="Microglia / neural nuclei segmentation of multi-channel z-stacks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Process all images in a manifest
  gliaseg run /data/stacks images.txt errors.txt metrics.csv

  # Merge layers in groups of 5 and write debug images
  gliaseg run /data/stacks images.txt errors.txt metrics.csv --layers-per-group 5 --debug

  # Validate a config file
  gliaseg validate config.json
""",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress most output",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        help="Write logs to file",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # === RUN command ===
    run_parser = subparsers.add_parser(
        "run",
        help="Process the images listed in a manifest",
    )
    run_parser.add_argument("data_root", type=Path, help="Directory holding one subdirectory per image")
    run_parser.add_argument("manifest", type=Path, help="Text file with one image id per line")
    run_parser.add_argument("error_log", type=Path, help="Output list of images that failed")
    run_parser.add_argument("metrics", type=Path, help="Output metrics table (CSV)")
    run_parser.add_argument(
        "--results-dir",
        type=Path,
        default=None,
        help=f"Root for per-image output images (default: {get_default_path('results_dir')})",
    )
    run_parser.add_argument("--config", type=Path, help="Config JSON file or directory containing config.json")
    run_parser.add_argument(
        "--layers-per-group",
        type=int,
        help="Merge this many consecutive layers per output row (default: whole stack)",
    )
    run_parser.add_argument("--debug", action="store_true", help="Write intermediate masks and renderings")
    run_parser.add_argument("--workers", type=int, help="Number of worker processes")
    run_parser.add_argument("--timeout", type=float, help="Per-image timeout in seconds")
    run_parser.add_argument(
        "--proximity",
        action="store_true",
        help="Add microglia-neural proximity columns",
    )
    run_parser.add_argument("--no-progress", action="store_true", help="Disable the progress bar")

    # === VALIDATE command ===
    validate_parser = subparsers.add_parser(
        "validate",
        help="Validate JSON files against schemas",
    )
    validate_parser.add_argument(
        "files",
        type=Path,
        nargs="+",
        help="JSON files to validate",
    )
    validate_parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail on first validation error",
    )

    # === CONFIG command ===
    config_parser = subparsers.add_parser(
        "config",
        help="Show the effective configuration",
    )
    config_parser.add_argument("--config", type=Path, help="Config JSON file or directory")

    return parser


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if args.layers_per_group is not None:
        overrides["layers_per_group"] = args.layers_per_group
    if args.debug:
        overrides["debug"] = True
    if args.workers is not None:
        overrides["num_workers"] = args.workers
    if args.timeout is not None:
        overrides["image_timeout_s"] = args.timeout
    if args.proximity:
        overrides["proximity_metrics"] = True
    return overrides


def cmd_run(args: argparse.Namespace) -> int:
    """Execute the run command."""
    logger = get_logger(__name__)

    try:
        config_dict = load_config(args.config, **_cli_overrides(args))
        validate_config(config_dict, raise_on_error=True)
    except (OSError, ConfigValidationError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 1
    config = PipelineConfig.from_dict(config_dict)

    try:
        image_ids = read_manifest(args.manifest)
    except OSError as e:
        logger.error(f"Could not open the file list '{args.manifest}': {e}")
        return 1

    if not image_ids:
        logger.warning(f"No images listed in {args.manifest}")

    processor = BatchProcessor(
        image_ids=image_ids,
        data_root=args.data_root,
        results_root=args.results_dir,
        metrics_path=args.metrics,
        error_log_path=args.error_log,
        config=config,
        show_progress=not (args.no_progress or args.quiet),
    )

    try:
        result = processor.run()
    except OSError as e:
        logger.error(f"Could not open output file: {e}")
        return 1

    if result.failed:
        logger.warning(f"{result.failed} image(s) failed, see {args.error_log}")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Execute the validate command."""
    logger = get_logger(__name__)

    errors = 0
    for file_path in args.files:
        try:
            infer_and_validate(file_path, raise_on_error=True)
            logger.info(f"✓ {file_path}: Valid")
        except (OSError, ValueError) as e:
            logger.error(f"✗ {file_path}: {e}")
            errors += 1
            if args.strict:
                return 1

    if errors:
        logger.error(f"{errors} file(s) failed validation")
        return 1

    logger.info(f"All {len(args.files)} file(s) valid")
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """Execute the config command."""
    logger = get_logger(__name__)

    try:
        config = load_config(args.config)
    except (OSError, ConfigValidationError) as e:
        logger.error(f"Could not load configuration: {e}")
        return 1

    print(get_config_summary(config))
    return 0 if validate_config(config)["valid"] else 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    # Setup logging
    level = "DEBUG" if args.verbose else ("WARNING" if args.quiet else "INFO")
    setup_logging(level=level, log_file=args.log_file)

    # Dispatch to command handler
    if args.command == "run":
        return cmd_run(args)

    elif args.command == "validate":
        return cmd_validate(args)

    elif args.command == "config":
        return cmd_config(args)

    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())

"""
Command-line interface for the sync uploader.

Everything except logging verbosity and an optional config file comes from
the environment.
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import load_config
from .coordinator import run_sync
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application.

    Args:
        verbose: Whether to enable debug logging
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Upload a directory tree to WebDAV/S3 endpoints, packing small files"
    )
    parser.add_argument('-v', '--verbose', action='store_true',
                        help="Enable verbose logging")
    parser.add_argument('-c', '--config', type=Path,
                        help="JSON file with settings; environment variables take precedence")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI.

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = load_config(config_file=args.config)
    except ConfigurationError as e:
        logger.error(f"Error: {e}")
        return EXIT_ERROR

    if not config.directory_path.is_dir():
        logger.error(f"Error: DIRECTORY_PATH {config.directory_path} is not a directory")
        return EXIT_ERROR

    try:
        summary = run_sync(config)
    except KeyboardInterrupt:
        logger.info("Upload interrupted by user")
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.exception(f"Error: {e}")
        return EXIT_ERROR

    if not summary.completed:
        logger.error(f"{summary.abandoned} units were abandoned after {config.max_attempts} attempts")
    return EXIT_OK


if __name__ == '__main__':
    sys.exit(main())

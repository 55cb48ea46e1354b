"""
Argument parsing for the CLI interface.

Provides functions to create and configure the argument parser for the
differ command-line interface. Options left unset fall back to the user
configuration.
"""

from __future__ import annotations

import argparse
from pathlib import Path


def create_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog='differ',
        description='Find images similar to a source image',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s /path/to/photos --source cat.jpg
      Rank every image in the folder against cat.jpg

  %(prog)s /path/to/photos --source cat.jpg --compare /path/to/archive -t 85
      Search a second folder for close matches of an image in the first

  %(prog)s /path/to/photos --source /elsewhere/query.png
      Use an image outside the folder as the source

  %(prog)s /path/to/photos --cache-stats --cleanup-cache
      Inspect the folder cache and drop entries for deleted files
        """
    )

    parser.add_argument(
        'directory',
        type=Path,
        nargs='?',
        default=None,
        help='Folder to scan for images'
    )

    # Search options
    parser.add_argument(
        '-s', '--source',
        help='Source image: a path, or a file name inside the scanned folder'
    )

    parser.add_argument(
        '-c', '--compare',
        type=Path,
        help='Search this folder instead of the scanned folder'
    )

    parser.add_argument(
        '-t', '--threshold',
        type=float,
        default=None,
        help='Minimum similarity (0-100, higher=stricter). Default: from config (70)'
    )

    parser.add_argument(
        '-n', '--limit',
        type=int,
        default=None,
        help='Show at most this many matches'
    )

    parser.add_argument(
        '-r', '--no-recursive',
        action='store_true',
        help='Do not scan subdirectories'
    )

    # Feature options
    parser.add_argument(
        '-m', '--model',
        default=None,
        help='Path to the ONNX embedding model'
    )

    parser.add_argument(
        '--cpu',
        action='store_true',
        help='Do not try GPU execution'
    )

    parser.add_argument(
        '--no-hash-fallback',
        action='store_true',
        help='Do not fall back to perceptual hashes when the model is unavailable'
    )

    parser.add_argument(
        '-w', '--workers',
        type=int,
        default=None,
        help='Number of parallel hashing workers'
    )

    # Caching
    parser.add_argument(
        '--no-cache',
        action='store_true',
        help='Disable the per-folder feature cache'
    )

    parser.add_argument(
        '--cache-stats',
        action='store_true',
        help='Print statistics of the folder cache'
    )

    parser.add_argument(
        '--cleanup-cache',
        action='store_true',
        help='Remove cache entries for files that no longer exist'
    )

    parser.add_argument(
        '--reset-cache',
        action='store_true',
        help='Delete every entry of the folder cache'
    )

    # Output options
    parser.add_argument(
        '--json',
        action='store_true',
        help='Print matches as JSON'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Verbose output'
    )

    parser.add_argument(
        '--log-file',
        type=Path,
        help='Also write log messages to this file'
    )

    parser.add_argument(
        '--no-progress',
        action='store_true',
        help='Disable progress bars (useful for piping output)'
    )

    return parser


def parse_arguments(argv=None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Args:
        argv: List of argument strings (default: sys.argv)

    Returns:
        Parsed arguments as Namespace object

    Examples:
        >>> args = parse_arguments(['/path/to/photos', '--threshold', '85'])
        >>> args.threshold
        85.0
    """
    parser = create_parser()
    return parser.parse_args(argv)


__all__ = [
    'create_parser',
    'parse_arguments',
]

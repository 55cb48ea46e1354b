"""
Interactive prompts for the CLI interface.

Provides functions for choosing the folder and the source image when they
were not given on the command line.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence

from ..models import ImageRecord


def prompt_for_directory() -> Path:
    """
    Interactively prompt user for a folder to scan.

    Loops until an existing directory is entered. Quotes around the path
    (common when copy-pasting) are stripped.
    """
    print("\n" + "=" * 50)
    print("  DIFFER - SIMILAR IMAGE FINDER")
    print("=" * 50)

    while True:
        dir_input = input("\nEnter the folder path to scan: ").strip()
        if not dir_input:
            print("Please enter a valid path.")
            continue

        dir_input = dir_input.strip('"\'')
        directory = Path(dir_input)

        if directory.is_dir():
            return directory
        print(f"Directory not found: {directory}")
        print("Please try again.")


def prompt_for_source(records: Sequence[ImageRecord], page_size: int = 20) -> Optional[ImageRecord]:
    """
    Let the user pick a source image by number.

    Args:
        records: Candidates in display order
        page_size: Number of entries listed before asking

    Returns:
        The chosen record, or None if the user entered nothing
    """
    if not records:
        return None

    print()
    for index, record in enumerate(records[:page_size], start=1):
        print(f"  {index:>3}. {record.file_name}")
    if len(records) > page_size:
        print(f"  ... and {len(records) - page_size:,} more (enter any number up to {len(records)})")

    while True:
        choice = input("\nSource image number (empty to skip): ").strip()
        if not choice:
            return None
        if choice.isdigit() and 1 <= int(choice) <= len(records):
            return records[int(choice) - 1]
        print(f"Enter a number between 1 and {len(records)}.")


__all__ = [
    'prompt_for_directory',
    'prompt_for_source',
]

"""
CLI package for differ.

Provides the command-line interface for scanning a folder and ranking its
images by similarity to a source image, with cache maintenance options.

Public API:
- main: Entry point for CLI execution
- CLIOrchestrator: CLI workflow orchestration class
- print_search_report: Function to display ranked matches
"""

from __future__ import annotations

from .orchestrator import CLIOrchestrator, setup_logging
from .arg_parser import create_parser, parse_arguments
from .reporting import ProgressBars, print_scan_summary, print_search_report, print_cache_statistics
from .interactive import prompt_for_directory, prompt_for_source


def main(argv=None) -> int:
    """
    Main entry point for the CLI.

    Delegates to CLIOrchestrator to execute the complete workflow.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    orchestrator = CLIOrchestrator(argv)
    return orchestrator.run()


__all__ = [
    # Main entry point
    'main',
    # Core classes
    'CLIOrchestrator',
    'ProgressBars',
    # Utilities
    'setup_logging',
    'create_parser',
    'parse_arguments',
    'print_scan_summary',
    'print_search_report',
    'print_cache_statistics',
    'prompt_for_directory',
    'prompt_for_source',
]

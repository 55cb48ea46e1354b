"""
CLI workflow orchestration for differ.

Provides the CLIOrchestrator class that coordinates the CLI workflow from
argument parsing through the similarity report. All feature work is done
by the ExtractionPipeline; this module only wires arguments to it.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from ..models import ImageRecord
from ..pipeline import ExtractionPipeline, PipelineSettings
from ..user_config import get_user_config
from .arg_parser import parse_arguments
from .interactive import prompt_for_directory, prompt_for_source
from .reporting import (
    ProgressBars,
    print_cache_statistics,
    print_scan_summary,
    print_search_json,
    print_search_report,
)


LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(verbose: bool = False, log_file: Optional[Path] = None) -> logging.Logger:
    """
    Configure logging for the CLI.

    Args:
        verbose: Enable verbose (DEBUG level) logging
        log_file: Optional file that receives the same records

    Returns:
        Configured logger instance
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt='%H:%M:%S'
    )
    if log_file is not None:
        handler = logging.FileHandler(log_file, encoding='utf-8')
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)
    return logging.getLogger(__name__)


class CLIOrchestrator:
    """
    Orchestrates the CLI search workflow.

    Manages the complete lifecycle from argument parsing through folder
    scanning, cache maintenance, source selection and reporting.
    """

    def __init__(self, argv=None):
        """Initialize the orchestrator."""
        self.argv = argv
        self.logger = None
        self.args = None
        self.settings: Optional[PipelineSettings] = None
        self.pipeline: Optional[ExtractionPipeline] = None
        self.progress: Optional[ProgressBars] = None

    def run(self) -> int:
        """
        Execute the complete CLI workflow.

        Returns:
            Exit code (0 for success, 1 for error)

        Workflow phases:
        1. Setup & argument parsing
        2. Interactive prompts (if needed)
        3. Validation
        4. Configuration
        5. Folder scanning and feature extraction
        6. Cache maintenance
        7. Search & reporting
        """
        exit_code = self._setup_phase()
        if exit_code != 0:
            return exit_code

        exit_code = self._interactive_phase()
        if exit_code != 0:
            return exit_code

        exit_code = self._validate_phase()
        if exit_code != 0:
            return exit_code

        self._configure_phase()
        try:
            exit_code = self._scan_phase()
            if exit_code != 0:
                return exit_code

            self._maintenance_phase()
            return self._search_phase()
        finally:
            if self.progress is not None:
                self.progress.close()
            self.pipeline.close()

    def _setup_phase(self) -> int:
        """Phase 1: Parse arguments and setup logging."""
        self.args = parse_arguments(self.argv)
        self.logger = setup_logging(self.args.verbose, self.args.log_file)
        return 0

    def _interactive_phase(self) -> int:
        """Phase 2: Prompt for the folder if none was given."""
        if self.args.directory is None:
            self.args.directory = prompt_for_directory()
        return 0

    def _validate_phase(self) -> int:
        """
        Phase 3: Validate arguments.

        Returns:
            0 for success, 1 for validation error
        """
        if not self.args.directory.is_dir():
            self.logger.error(f"Directory not found: {self.args.directory}")
            return 1

        if self.args.compare is not None and not self.args.compare.is_dir():
            self.logger.error(f"Compare directory not found: {self.args.compare}")
            return 1

        if self.args.threshold is not None and not 0 <= self.args.threshold <= 100:
            self.logger.error("--threshold must be between 0 and 100")
            return 1

        if self.args.workers is not None and self.args.workers < 1:
            self.logger.error("--workers must be at least 1")
            return 1

        return 0

    def _configure_phase(self) -> None:
        """Phase 4: Build pipeline settings from config and arguments."""
        overrides = dict(
            similarity_threshold=self.args.threshold,
            hash_workers=self.args.workers,
            model_path=self.args.model,
            load_thumbnails=False,
        )
        if self.args.no_recursive:
            overrides['recursive'] = False
        if self.args.no_cache:
            overrides['use_cache'] = False
            self.logger.info("Cache disabled - extracting all features fresh")
        if self.args.no_hash_fallback:
            overrides['fallback_to_hash'] = False
        if self.args.cpu:
            overrides['prefer_gpu'] = False

        self.settings = PipelineSettings.from_user_config(get_user_config(), **overrides)
        self.pipeline = ExtractionPipeline(self.settings, logger=self.logger)
        self.progress = ProgressBars(enabled=not self.args.no_progress and not self.args.json)

    def _scan_phase(self) -> int:
        """
        Phase 5: Load the model, scan the folder and the compare folder.

        Returns:
            0 for success, 1 if nothing can be searched
        """
        self.pipeline.initialize_model()
        self.logger.info(self.pipeline.model_status)

        summary = self.pipeline.load_folder(self.args.directory, progress_callback=self.progress)
        self.progress.close()
        if not self.args.json:
            print_scan_summary(summary)

        if summary.model_unavailable and not self.settings.fallback_to_hash:
            self.logger.error(self.pipeline.status_text)
            return 1

        if self.args.compare is not None:
            compare_summary = self.pipeline.load_compare_folder(
                self.args.compare, progress_callback=self.progress
            )
            self.progress.close()
            if not self.args.json:
                print_scan_summary(compare_summary, label="Compare folder")

        return 0

    def _maintenance_phase(self) -> None:
        """Phase 6: Cache statistics, cleanup and reset."""
        if self.args.cleanup_cache:
            removed = self.pipeline.cleanup_cache()
            self.logger.info(f"Removed {removed:,} expired cache entries")
        if self.args.reset_cache:
            self.pipeline.reset_cache()
        if self.args.cache_stats:
            print_cache_statistics(self.pipeline.cache_statistics())

    def _resolve_source(self) -> Optional[ImageRecord]:
        """Find the record named by --source, or prompt for one."""
        source = self.args.source
        if source is None:
            if self.args.cache_stats or self.args.cleanup_cache or self.args.reset_cache:
                return None
            return prompt_for_source(self.pipeline.records)

        if os.path.isfile(source):
            record = self.pipeline.find_record(source)
            if record is not None:
                return record
            self.logger.info(f"Source is outside the scanned folder, extracting features: {source}")
            return self.pipeline.prepare_external_source(source)

        for record in self.pipeline.records:
            if record.file_name == source:
                return record

        self.logger.error(f"Source image not found: {source}")
        return None

    def _search_phase(self) -> int:
        """
        Phase 7: Rank candidates against the source and print the report.

        Returns:
            0 for success, 1 if the search could not run
        """
        source = self._resolve_source()
        if source is None:
            return 1 if self.args.source is not None else 0

        outcome = self.pipeline.set_source_and_search(source, self.settings.similarity_threshold)
        threshold = self.pipeline.similarity_threshold

        if self.args.json:
            print_search_json(source, outcome, threshold)
        else:
            print_search_report(source, outcome, threshold, limit=self.args.limit)

        if not outcome.ok:
            self.logger.warning(outcome.status)
            return 1
        return 0


__all__ = ['CLIOrchestrator', 'setup_logging']

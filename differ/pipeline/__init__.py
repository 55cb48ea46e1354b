"""
Pipeline package for differ.

Coordinates a folder selection end to end:
- ExtractionPipeline: scan, extract (cache first), load thumbnails, search
- PipelineSettings: runtime knobs, buildable from UserConfig
- InferenceLane: single-worker lane serializing model inference
- rank_candidates: threshold filter and stable descending sort
"""

from __future__ import annotations

from .lane import InferenceLane
from .orchestrator import ExtractionPipeline, PipelineSettings
from .search import rank_candidates
from .state import PipelineState, ScanSummary


__all__ = [
    'ExtractionPipeline',
    'PipelineSettings',
    'PipelineState',
    'ScanSummary',
    'InferenceLane',
    'rank_candidates',
]

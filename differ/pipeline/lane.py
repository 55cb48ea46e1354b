"""
Serialized execution lane for embedding inference.

The model session must never run two extractions at once, while hashing and
thumbnail work run in parallel elsewhere. InferenceLane is a single worker
thread fed by a queue: calls run strictly one after another, in submission
order. There is no per-call timeout; a call that hangs stalls the lane.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable


class InferenceLane:
    """
    Run submitted callables one at a time on a dedicated thread.

    Example:
        lane = InferenceLane()
        future = lane.submit(extractor.extract, path)
        vector = future.result()
        lane.shutdown()
    """

    def __init__(self, name: str = "inference"):
        self.name = name
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)

    def submit(self, fn: Callable[..., Any], *args, **kwargs) -> Future:
        """Queue a call; it starts after every previously queued call."""
        return self._executor.submit(fn, *args, **kwargs)

    def run(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Queue a call and wait for its result."""
        return self.submit(fn, *args, **kwargs).result()

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting calls; optionally wait for queued ones."""
        self._executor.shutdown(wait=wait)


__all__ = ['InferenceLane']

from __future__ import annotations

import time
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, List, Optional, Tuple

from .types import StageTiming


class MetricsLevel(Enum):
    NONE = "none"
    BASIC = "basic"
    VERBOSE = "verbose"

    @classmethod
    def from_flags(cls, show_performance: bool, verbose_performance: bool) -> "MetricsLevel":
        if not show_performance:
            return cls.NONE
        return cls.VERBOSE if verbose_performance else cls.BASIC


class StageClock:
    """
    Times named pipeline stages for one detection pass.

    Usage:
        clock = StageClock(MetricsLevel.VERBOSE)
        with clock.stage("Letterbox"):
            ...
        metrics = clock.finish()

    VERBOSE keeps every stage plus "Total", BASIC keeps only "Total",
    NONE records nothing and `finish()` returns None.
    """

    def __init__(self, level: MetricsLevel):
        self.level = level
        self._stages: List[StageTiming] = []
        self._start_ns = time.perf_counter_ns()

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        if self.level is not MetricsLevel.VERBOSE:
            yield
            return
        start = time.perf_counter_ns()
        try:
            yield
        finally:
            self._stages.append(StageTiming(name, time.perf_counter_ns() - start))

    def finish(self) -> Optional[Tuple[StageTiming, ...]]:
        if self.level is MetricsLevel.NONE:
            return None
        if self.level is MetricsLevel.VERBOSE:
            total = sum(s.duration_ns for s in self._stages)
        else:
            total = time.perf_counter_ns() - self._start_ns
        return tuple(self._stages) + (StageTiming("Total", total),)


def format_metrics(metrics: Optional[Tuple[StageTiming, ...]]) -> str:
    if not metrics:
        return ""
    return " ".join(f"{m.name}={m.duration_ms:.2f}ms" for m in metrics)

"""Aggregation of repeated samples and version-to-version comparison.

Two aggregation policies are available:

* ``average``: per-metric arithmetic mean over the repetitions.
* ``best``: the whole repetition with the lowest wall time.  Its other
  metrics come along with it even when another repetition had, say,
  lower memory.

A comparison passes when both memory and wall time grew by strictly less
than the allowance.  CPU times and row counts are reported but do not
decide the verdict.
"""

from __future__ import annotations

import math
import statistics as _stats
from dataclasses import dataclass, field
from typing import Sequence

from regression_gitbase.bench.query import Query
from regression_gitbase.bench.results import ResultSet, SampleResult
from regression_gitbase.logging import get_logger

log = get_logger("compare")

AVERAGE = "average"
BEST = "best"


def percent(a: float, b: float) -> float:
    """Percentage change from *a* to *b*: ``(b - a) / a * 100``.

    There is no zero guard.  With ``a == 0`` the result follows IEEE
    division: ``inf``/``-inf`` when *b* differs, ``nan`` when both are 0.
    """
    diff = float(b) - float(a)
    if a == 0:
        if diff == 0 or math.isnan(diff):
            return math.nan
        return math.copysign(math.inf, diff)
    return diff / float(a) * 100


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def average(samples: Sequence[SampleResult]) -> SampleResult:
    """Per-metric arithmetic mean of *samples*.

    Raises:
        ValueError: If *samples* is empty.
    """
    if not samples:
        raise ValueError("cannot average an empty sample list")
    return SampleResult(
        wall_time=_stats.fmean(s.wall_time for s in samples),
        user_time=_stats.fmean(s.user_time for s in samples),
        sys_time=_stats.fmean(s.sys_time for s in samples),
        memory=_stats.fmean(s.memory for s in samples),
        rows=_stats.fmean(s.rows for s in samples),
    )


def best_of(samples: Sequence[SampleResult]) -> SampleResult:
    """The sample with the lowest wall time (first one on ties).

    Raises:
        ValueError: If *samples* is empty.
    """
    if not samples:
        raise ValueError("cannot pick the best of an empty sample list")
    return min(samples, key=lambda s: s.wall_time)


def aggregate(samples: Sequence[SampleResult], policy: str = AVERAGE) -> SampleResult:
    """Reduce repetitions to one representative sample."""
    if policy == AVERAGE:
        return average(samples)
    if policy == BEST:
        return best_of(samples)
    raise ValueError(f"Unknown aggregation policy: {policy!r}")


# ---------------------------------------------------------------------------
# Comparison
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MetricDelta:
    """Change of one metric between two aggregated samples."""

    name: str
    a: float
    b: float
    delta: float  # percent
    within: bool  # allowance > delta


@dataclass
class Comparison:
    """Per-metric deltas between two aggregated samples."""

    memory: MetricDelta
    wall_time: MetricDelta
    sys_time: MetricDelta
    user_time: MetricDelta
    rows: MetricDelta

    @property
    def passed(self) -> bool:
        """Memory and wall time within allowance; the other metrics are informative."""
        return self.memory.within and self.wall_time.within

    @property
    def metrics(self) -> list[MetricDelta]:
        """Metrics in report order."""
        return [self.memory, self.wall_time, self.sys_time, self.user_time, self.rows]


def _delta(name: str, a: float, b: float, allowance: float) -> MetricDelta:
    d = percent(a, b)
    return MetricDelta(name=name, a=a, b=b, delta=d, within=allowance > d)


def compare(a: SampleResult, b: SampleResult, allowance: float) -> Comparison:
    """Compare aggregated sample *a* (older) with *b* (newer)."""
    return Comparison(
        memory=_delta("Memory", a.memory, b.memory, allowance),
        wall_time=_delta("Wtime", a.wall_time, b.wall_time, allowance),
        sys_time=_delta("Stime", a.sys_time, b.sys_time, allowance),
        user_time=_delta("Utime", a.user_time, b.user_time, allowance),
        rows=_delta("Rows", a.rows, b.rows, allowance),
    )


# ---------------------------------------------------------------------------
# Cross-version driver
# ---------------------------------------------------------------------------


@dataclass
class QueryComparison:
    """Comparison of one query between two consecutive versions."""

    version_a: str
    version_b: str
    query: Query
    comparison: Comparison

    @property
    def passed(self) -> bool:
        return self.comparison.passed


@dataclass
class SkippedQuery:
    """A query that could not be compared because one side has no samples."""

    version_a: str
    version_b: str
    query: Query
    missing_version: str


@dataclass
class RegressionReport:
    """Every pairwise comparison of a run plus the overall verdict."""

    allowance: float
    policy: str
    comparisons: list[QueryComparison] = field(default_factory=list)
    skipped: list[SkippedQuery] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(c.passed for c in self.comparisons)

    @property
    def failures(self) -> list[QueryComparison]:
        return [c for c in self.comparisons if not c.passed]

    def pairs(self) -> list[tuple[str, str]]:
        """Consecutive version pairs in order of first appearance."""
        seen: list[tuple[str, str]] = []
        for item in [*self.comparisons, *self.skipped]:
            pair = (item.version_a, item.version_b)
            if pair not in seen:
                seen.append(pair)
        return seen


def compare_versions(
    results: ResultSet,
    versions: Sequence[str],
    queries: Sequence[Query],
    *,
    allowance: float = 10.0,
    policy: str = AVERAGE,
) -> RegressionReport:
    """Compare each consecutive pair of *versions* on every query.

    Queries missing from either side of a pair are skipped with a
    diagnostic.  The report passes only if every comparison passes.

    Raises:
        ValueError: If *versions* is empty.
    """
    if not versions:
        raise ValueError("there should be at least one version")

    report = RegressionReport(allowance=allowance, policy=policy)
    for version_a, version_b in zip(versions, versions[1:]):
        for query in queries:
            samples_a = results.get(version_a, query.id)
            samples_b = results.get(version_b, query.id)
            missing = version_a if not samples_a else version_b if not samples_b else None
            if missing is not None:
                log.warning("Skip - Query.ID: %s not found for version: %s", query.id, missing)
                report.skipped.append(SkippedQuery(version_a, version_b, query, missing))
                continue

            assert samples_a is not None and samples_b is not None
            comparison = compare(
                aggregate(samples_a, policy), aggregate(samples_b, policy), allowance
            )
            report.comparisons.append(QueryComparison(version_a, version_b, query, comparison))

    return report

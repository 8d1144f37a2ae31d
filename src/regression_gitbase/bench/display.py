"""Terminal display formatting for regression results.

Two views:

* a table of the representative wall time of every query per version,
  fastest version in green and slowest in red;
* the per-pair comparison report, one line per metric in the form
  ``Metric: a -> b (delta), within``.
"""

from __future__ import annotations

import math
from typing import Sequence

import click

from regression_gitbase.bench.compare import (
    Comparison,
    MetricDelta,
    RegressionReport,
    aggregate,
)
from regression_gitbase.bench.query import Query
from regression_gitbase.bench.results import ResultSet

COMPARE_FORMAT = "{name}: {a} -> {b} ({delta}), {within}"
_MISSING = "--"


def _format_time(seconds: float, precision: int = 2) -> str:
    """Format a time value with adaptive units."""
    if math.isnan(seconds):
        return "N/A"
    if seconds < 0.001:
        return f"{seconds * 1_000_000:.0f}µs"
    if seconds < 1:
        return f"{seconds * 1000:.{precision}f}ms"
    if seconds < 60:
        return f"{seconds:.{precision}f}s"
    minutes = int(seconds // 60)
    secs = seconds % 60
    return f"{minutes}m{secs:.0f}s"


def _format_bytes(value: float) -> str:
    if math.isnan(value):
        return "N/A"
    mib = value / (1024 * 1024)
    if mib >= 1024:
        return f"{mib / 1024:.2f}GiB"
    return f"{mib:.1f}MiB"


def _format_pct(value: float, precision: int = 2) -> str:
    """Format a percentage with sign; non-finite values are shown as-is."""
    if math.isnan(value) or math.isinf(value):
        return str(value)
    sign = "+" if value >= 0 else ""
    return f"{sign}{value:.{precision}f}%"


def _format_value(metric: MetricDelta) -> tuple[str, str]:
    if metric.name == "Memory":
        return _format_bytes(metric.a), _format_bytes(metric.b)
    if metric.name == "Rows":
        return f"{metric.a:g}", f"{metric.b:g}"
    return _format_time(metric.a, 4), _format_time(metric.b, 4)


# ---------------------------------------------------------------------------
# Comparison lines
# ---------------------------------------------------------------------------


def format_metric(metric: MetricDelta) -> str:
    """One report line for *metric*."""
    a, b = _format_value(metric)
    return COMPARE_FORMAT.format(
        name=metric.name,
        a=a,
        b=b,
        delta=_format_pct(metric.delta),
        within=str(metric.within).lower(),
    )


def format_comparison(comparison: Comparison) -> str:
    return "\n".join(format_metric(m) for m in comparison.metrics)


def format_report(report: RegressionReport) -> str:
    """Full textual report: every pair, every query, every metric."""
    lines: list[str] = []
    for version_a, version_b in report.pairs():
        lines.append(f"{version_a} - {version_b} ####")
        for item in report.comparisons:
            if (item.version_a, item.version_b) != (version_a, version_b):
                continue
            lines.append(f"## Query {{ID: {item.query.id}, Name: {item.query.name}}} ##")
            lines.append(format_comparison(item.comparison))
        for skip in report.skipped:
            if (skip.version_a, skip.version_b) != (version_a, version_b):
                continue
            lines.append(
                f"# Skip - Query.ID: {skip.query.id} not found for version: "
                f"{skip.missing_version}"
            )

    verdict = "PASS" if report.passed else "FAIL"
    failed = len(report.failures)
    lines.append("")
    lines.append(
        f"{verdict}: {len(report.comparisons)} comparisons, {failed} over "
        f"{report.allowance:g}% allowance ({report.policy})"
    )
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Tabbed results
# ---------------------------------------------------------------------------


def format_results_table(
    results: ResultSet,
    versions: Sequence[str],
    queries: Sequence[Query],
    *,
    policy: str = "best",
    color: bool = True,
) -> str:
    """Wall time of every query (rows) for every version (columns)."""
    header = ["ID", *versions]
    rows: list[list[str]] = []
    styles: list[list[str | None]] = []

    for query in queries:
        times: list[float | None] = []
        for version in versions:
            samples = results.get(version, query.id)
            times.append(aggregate(samples, policy).wall_time if samples else None)

        present = [t for t in times if t is not None]
        fastest = min(present) if len(present) > 1 else None
        slowest = max(present) if len(present) > 1 else None

        row = [query.id]
        style: list[str | None] = ["white"]
        for t in times:
            if t is None:
                row.append(_MISSING)
                style.append(None)
                continue
            row.append(_format_time(t, 4))
            if t == fastest:
                style.append("green")
            elif t == slowest:
                style.append("red")
            else:
                style.append(None)
        rows.append(row)
        styles.append(style)

    widths = [max([len(header[i]), *(len(r[i]) for r in rows)]) for i in range(len(header))]

    def render(cells: list[str], cell_styles: list[str | None], bold: bool = False) -> str:
        out = []
        for cell, width, fg in zip(cells, widths, cell_styles):
            padded = f" {cell.ljust(width)} "
            if color and (fg or bold):
                padded = click.style(padded, fg=fg, bold=True)
            out.append(padded)
        return "|".join(out).rstrip()

    lines = [render(header, ["yellow"] * len(header), bold=True)]
    lines.append("+".join("-" * (w + 2) for w in widths))
    for row, style in zip(rows, styles):
        lines.append(render(row, style))
    return "\n".join(lines)

"""Export benchmark results to CSV.

Two shapes:

* :func:`export_csv` returns every repetition as one long-format table
  (one row per version x query x repetition), suitable for pandas or R.
* :func:`save_latest_csv` writes small plot files for the last version:
  one ``plot_{query}_{metric}.csv`` per query and metric, holding the
  averaged value.  A plotting job appends these over time.
"""

from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Sequence

from regression_gitbase.bench.compare import average
from regression_gitbase.bench.query import Query
from regression_gitbase.bench.results import ResultSet
from regression_gitbase.logging import get_logger

log = get_logger("export")

# File suffix and header for each plotted metric.
PLOT_METRICS = (
    ("memory", "Memory"),
    ("wtime", "Wtime"),
    ("stime", "Stime"),
    ("utime", "Utime"),
)


def export_csv(results: ResultSet, versions: Sequence[str] | None = None) -> str:
    """Export every sample as CSV (long format).

    Columns:
        version, query, repetition, wall_time_s, user_time_s,
        sys_time_s, memory_bytes, rows
    """
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(
        [
            "version",
            "query",
            "repetition",
            "wall_time_s",
            "user_time_s",
            "sys_time_s",
            "memory_bytes",
            "rows",
        ]
    )

    order = list(versions) if versions is not None else results.versions()
    for version in order:
        for query_id in results.query_ids(version):
            for i, s in enumerate(results.get(version, query_id) or [], start=1):
                writer.writerow(
                    [
                        version,
                        query_id,
                        i,
                        f"{s.wall_time:.6f}",
                        f"{s.user_time:.6f}",
                        f"{s.sys_time:.6f}",
                        f"{s.memory:.0f}",
                        f"{s.rows:g}",
                    ]
                )

    return output.getvalue()


def _plot_values(results: ResultSet, version: str, query_id: str) -> dict[str, float] | None:
    samples = results.get(version, query_id)
    if not samples:
        return None
    avg = average(samples)
    return {
        "memory": avg.memory,
        "wtime": avg.wall_time,
        "stime": avg.sys_time,
        "utime": avg.user_time,
    }


def save_latest_csv(
    results: ResultSet,
    versions: Sequence[str],
    queries: Sequence[Query],
    directory: Path = Path("."),
) -> list[Path]:
    """Write ``plot_{query}_{metric}.csv`` files for the last version.

    Queries without samples for that version are skipped.

    Returns:
        The files written, in query then metric order.

    Raises:
        ValueError: If *versions* is empty.
    """
    if not versions:
        raise ValueError("there should be at least one version")
    version = versions[-1]
    directory.mkdir(parents=True, exist_ok=True)

    written: list[Path] = []
    for query in queries:
        values = _plot_values(results, version, query.id)
        if values is None:
            log.warning("No results for query %s in %s, not writing CSV", query.id, version)
            continue
        for suffix, header in PLOT_METRICS:
            path = directory / f"plot_{query.id}_{suffix}.csv"
            with open(path, "w", newline="", encoding="utf-8") as f:
                writer = csv.writer(f)
                writer.writerow(["Version", header])
                writer.writerow([version, f"{values[suffix]:.6f}"])
            written.append(path)

    log.info("Wrote %d CSV files to %s", len(written), directory)
    return written

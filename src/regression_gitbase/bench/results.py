"""Benchmark result data structures and serialization.

Hierarchy::

    ResultSet
      → (version, query id) → list[SampleResult]   (one per repetition)

A result set only grows while a run is in progress and is read-only
afterwards.  ``save_result_set``/``load_result_set`` persist it as JSON so
a finished run can be compared again without re-running it.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Iterator, Sequence

from regression_gitbase.bench.query import Query

METRICS = ("memory", "wall_time", "sys_time", "user_time")


@dataclass(frozen=True)
class SampleResult:
    """Measurements of one query repetition."""

    wall_time: float  # seconds, query execution only
    user_time: float  # seconds of server user CPU
    sys_time: float  # seconds of server system CPU
    memory: float  # bytes, server peak RSS
    rows: float = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SampleResult:
        """Deserialize from a dict, ignoring unknown fields."""
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class ResultSet:
    """Samples keyed by version and query id, in repetition order."""

    _samples: dict[str, dict[str, list[SampleResult]]] = field(default_factory=dict)

    def add(self, version: str, query_id: str, sample: SampleResult) -> None:
        self._samples.setdefault(version, {}).setdefault(query_id, []).append(sample)

    def get(self, version: str, query_id: str) -> list[SampleResult] | None:
        """Samples for the pair, or None if the query never ran for *version*."""
        return self._samples.get(version, {}).get(query_id)

    def versions(self) -> list[str]:
        return list(self._samples)

    def query_ids(self, version: str) -> list[str]:
        return list(self._samples.get(version, {}))

    def __iter__(self) -> Iterator[tuple[str, str, list[SampleResult]]]:
        for version, queries in self._samples.items():
            for query_id, samples in queries.items():
                yield version, query_id, samples

    def __len__(self) -> int:
        return sum(len(q) for q in self._samples.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            version: {qid: [s.to_dict() for s in samples] for qid, samples in queries.items()}
            for version, queries in self._samples.items()
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResultSet:
        rs = cls()
        for version, queries in data.items():
            for query_id, samples in queries.items():
                for sample in samples:
                    rs.add(version, query_id, SampleResult.from_dict(sample))
        return rs


def save_result_set(
    results: ResultSet,
    path: Path,
    *,
    versions: list[str] | None = None,
    queries: Sequence[Query] = (),
) -> None:
    """Write *results* as JSON to *path*, with the suite that produced them."""
    payload: dict[str, Any] = {
        "versions": versions if versions is not None else results.versions(),
        "queries": [q.to_dict() for q in queries],
        "results": results.to_dict(),
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


@dataclass
class SavedRun:
    """A run read back by :func:`load_result_set`."""

    versions: list[str]
    results: ResultSet
    queries: list[Query]


def load_result_set(path: Path) -> SavedRun:
    """Read a file written by :func:`save_result_set`.

    Versions keep their original run order.  Files without a query list
    get one query per id found in the results.

    Raises:
        ValueError: If the file is not a saved result set.
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict) or not isinstance(data.get("results", {}), dict):
        raise ValueError(f"{path} does not hold saved results")
    results = ResultSet.from_dict(data.get("results", {}))
    versions = list(data.get("versions") or results.versions())

    queries = [Query.from_dict(q) for q in data.get("queries") or []]
    if not queries:
        seen: list[str] = []
        for version in versions:
            for qid in results.query_ids(version):
                if qid not in seen:
                    seen.append(qid)
        queries = [Query(id=qid, statements=()) for qid in seen]
    return SavedRun(versions=versions, results=results, queries=queries)

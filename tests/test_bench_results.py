"""Tests for regression_gitbase.bench.results: result sets and persistence."""

from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from bench_test_helpers import make_queries, make_results, make_sample

from regression_gitbase.bench.results import (
    ResultSet,
    SampleResult,
    load_result_set,
    save_result_set,
)


class TestSampleResult(unittest.TestCase):
    def test_from_dict_ignores_unknown(self) -> None:
        s = SampleResult.from_dict(
            {"wall_time": 1, "user_time": 2, "sys_time": 3, "memory": 4, "extra": 5}
        )
        self.assertEqual(s, SampleResult(1, 2, 3, 4))

    def test_rows_default(self) -> None:
        self.assertEqual(SampleResult(1, 2, 3, 4).rows, 0)


class TestResultSet(unittest.TestCase):
    def test_add_keeps_repetition_order(self) -> None:
        rs = ResultSet()
        rs.add("v1", "q0", make_sample(3.0))
        rs.add("v1", "q0", make_sample(1.0))
        samples = rs.get("v1", "q0")
        assert samples is not None
        self.assertEqual([s.wall_time for s in samples], [3.0, 1.0])

    def test_missing(self) -> None:
        rs = make_results({"v1": {"q0": [1.0]}})
        self.assertIsNone(rs.get("v1", "q1"))
        self.assertIsNone(rs.get("v2", "q0"))

    def test_iteration(self) -> None:
        rs = make_results({"v1": {"q0": [1.0], "q1": [2.0]}, "v2": {"q0": [1.5, 1.6]}})
        self.assertEqual(len(rs), 3)
        self.assertEqual(rs.versions(), ["v1", "v2"])
        self.assertEqual(rs.query_ids("v1"), ["q0", "q1"])
        self.assertEqual([(v, q, len(s)) for v, q, s in rs], [("v1", "q0", 1), ("v1", "q1", 1), ("v2", "q0", 2)])


class TestPersistence(unittest.TestCase):
    def test_save_and_load(self) -> None:
        rs = make_results({"v2": {"q0": [1.0, 2.0]}, "v1": {"q0": [3.0]}})
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "out" / "results.json"
            save_result_set(rs, path, versions=["v1", "v2"], queries=make_queries("q0"))
            data = json.loads(path.read_text())
            self.assertEqual(data["versions"], ["v1", "v2"])

            saved = load_result_set(path)
        self.assertEqual(saved.versions, ["v1", "v2"])
        self.assertEqual(saved.results.to_dict(), rs.to_dict())
        self.assertEqual(saved.queries, make_queries("q0"))

    def test_versions_default_to_insertion_order(self) -> None:
        rs = make_results({"b": {"q": [1.0]}, "a": {"q": [1.0]}})
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "results.json"
            save_result_set(rs, path)
            saved = load_result_set(path)
        self.assertEqual(saved.versions, ["b", "a"])

    def test_queries_default_to_result_ids(self) -> None:
        rs = make_results({"v1": {"q1": [1.0]}, "v2": {"q0": [1.0], "q1": [1.0]}})
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "results.json"
            path.write_text(json.dumps({"versions": ["v1", "v2"], "results": rs.to_dict()}))
            saved = load_result_set(path)
        self.assertEqual([q.id for q in saved.queries], ["q1", "q0"])

    def test_not_a_result_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "results.json"
            path.write_text("[1, 2]")
            with self.assertRaises(ValueError):
                load_result_set(path)
            path.write_text("{not json")
            with self.assertRaises(ValueError):
                load_result_set(path)


if __name__ == "__main__":
    unittest.main()

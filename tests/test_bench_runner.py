"""Tests for regression_gitbase.bench.runner: benchmark execution."""

from __future__ import annotations

import tempfile
import threading
import unittest
from pathlib import Path

from bench_test_helpers import (
    FakeClient,
    FakeServer,
    make_binary,
    make_config,
    make_queries,
)

from regression_gitbase.bench.query import Query
from regression_gitbase.bench.runner import BenchmarkRunner, load_queries
from regression_gitbase.bench.server import ResourceUsage
from regression_gitbase.config import RegressionConfig
from regression_gitbase.errors import QueryTimeout, ServerStartError
from regression_gitbase.gitbase import DEFAULT_QUERIES


class BlockingClient(FakeClient):
    """Blocks in execute() until released."""

    def __init__(self) -> None:
        super().__init__()
        self.release = threading.Event()

    def execute(self, query: Query) -> int:
        self.release.wait(5.0)
        return 0


def _runner(
    config: RegressionConfig,
    servers: list[FakeServer],
    clients: list[FakeClient],
    queries: list[Query],
    versions: tuple[str, ...] = ("v1", "v2"),
) -> BenchmarkRunner:
    binaries = {v: make_binary(v, f"/bin/gitbase-{v}", config) for v in versions}

    def server_factory() -> FakeServer:
        servers.append(FakeServer())
        return servers[-1]

    def client_factory() -> FakeClient:
        clients.append(FakeClient(rows=7))
        return clients[-1]

    return BenchmarkRunner(
        config,
        binaries,
        Path("/fixtures"),
        server_factory=server_factory,  # type: ignore[arg-type]
        client_factory=client_factory,
        query_loader=lambda binary: list(queries),
    )


class TestRun(unittest.TestCase):
    def test_every_version_query_and_repetition(self) -> None:
        config = make_config(versions=["v1", "v2"], repeat=3)
        servers: list[FakeServer] = []
        clients: list[FakeClient] = []
        runner = _runner(config, servers, clients, make_queries("q0", "q1"))
        results = runner.run()

        self.assertEqual(len(servers), 12)
        self.assertTrue(all(s.stopped for s in servers))
        self.assertTrue(all(c.closed for c in clients))
        samples = results.get("v2", "q1")
        assert samples is not None
        self.assertEqual(len(samples), 3)
        self.assertEqual(samples[0].rows, 7)
        self.assertEqual(samples[0].memory, 4096)
        self.assertEqual(samples[0].user_time, 0.5)
        self.assertEqual(servers[0].started_with, ("/bin/gitbase-v1", Path("/fixtures")))
        self.assertEqual([q.id for q in runner.queries], ["q0", "q1"])

    def test_repeat_zero_runs_once(self) -> None:
        config = make_config(versions=["v1"], repeat=0)
        servers: list[FakeServer] = []
        results = _runner(config, servers, [], make_queries("q0"), versions=("v1",)).run()
        self.assertEqual(len(results.get("v1", "q0") or []), 1)

    def test_missing_binary(self) -> None:
        config = make_config(versions=["v1", "v2"])
        runner = BenchmarkRunner(
            config, {"v2": make_binary("v2")}, Path("/f"), server_factory=FakeServer
        )
        with self.assertRaises(RuntimeError):
            runner.run()

    def test_query_union_in_first_seen_order(self) -> None:
        config = make_config(versions=["v1", "v2"], repeat=1)
        suites = {"v1": make_queries("a", "b"), "v2": make_queries("b", "c")}
        runner = BenchmarkRunner(
            config,
            {v: make_binary(v) for v in ("v1", "v2")},
            Path("/f"),
            server_factory=FakeServer,
            client_factory=FakeClient,
            query_loader=lambda binary: suites[binary.version],
        )
        runner.run()
        self.assertEqual([q.id for q in runner.queries], ["a", "b", "c"])


class TestFailures(unittest.TestCase):
    def _failing_runner(self, fail_fast: bool) -> tuple[BenchmarkRunner, list[FakeServer]]:
        config = make_config(versions=["v1"], repeat=2, fail_fast=fail_fast)
        servers: list[FakeServer] = []

        def server_factory() -> FakeServer:
            servers.append(FakeServer())
            return servers[-1]

        def client_factory() -> FakeClient:
            return FakeClient(error=RuntimeError("syntax error"))

        runner = BenchmarkRunner(
            config,
            {"v1": make_binary("v1")},
            Path("/f"),
            server_factory=server_factory,  # type: ignore[arg-type]
            client_factory=client_factory,
            query_loader=lambda binary: make_queries("bad", "good"),
        )
        return runner, servers

    def test_fail_fast_aborts(self) -> None:
        runner, servers = self._failing_runner(fail_fast=True)
        with self.assertRaises(RuntimeError):
            runner.run()
        self.assertEqual(len(servers), 1)
        self.assertTrue(servers[0].stopped)

    def test_keep_going_records_errors(self) -> None:
        runner, servers = self._failing_runner(fail_fast=False)
        results = runner.run()
        self.assertEqual(len(results), 0)
        self.assertEqual([(e.query_id, e.repetition) for e in runner.errors], [("bad", 1), ("good", 1)])
        self.assertTrue(all(s.stopped for s in servers))

    def test_server_start_error(self) -> None:
        config = make_config(versions=["v1"], repeat=1)
        runner = BenchmarkRunner(
            config,
            {"v1": make_binary("v1")},
            Path("/f"),
            server_factory=lambda: FakeServer(start_error=ServerStartError("no port")),
            client_factory=FakeClient,
            query_loader=lambda binary: make_queries("q0"),
        )
        with self.assertRaises(ServerStartError):
            runner.run()

    def test_query_timeout(self) -> None:
        config = make_config(versions=["v1"], repeat=1, query_timeout=0.1)
        client = BlockingClient()
        server = FakeServer(ResourceUsage())
        runner = BenchmarkRunner(
            config,
            {"v1": make_binary("v1")},
            Path("/f"),
            server_factory=lambda: server,
            client_factory=lambda: client,
            query_loader=lambda binary: make_queries("slow"),
        )
        try:
            with self.assertRaises(QueryTimeout) as ctx:
                runner.run()
        finally:
            client.release.set()
        self.assertEqual(ctx.exception.query_id, "slow")
        self.assertTrue(server.stopped)
        self.assertTrue(client.closed)


class TestLoadQueries(unittest.TestCase):
    def test_query_file_next_to_binary(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "gitbase.v1"
            path.write_text("")
            Path(f"{path}.regression.yml").write_text("- {ID: x, Statements: [SELECT 1]}\n")
            queries = load_queries(make_binary("v1", str(path)))
        self.assertEqual([q.id for q in queries], ["x"])

    def test_default_queries(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            queries = load_queries(make_binary("v1", str(Path(tmp) / "gitbase")))
        self.assertEqual(queries, DEFAULT_QUERIES)


if __name__ == "__main__":
    unittest.main()

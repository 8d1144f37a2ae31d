"""Benchmark execution engine.

For every version (in the order given) and every query of that version's
suite, the query is run ``repeat`` times.  Each repetition gets its own
server process:

1. start the server against the fixture directory
2. connect a SQL client (not timed)
3. execute every statement, counting rows (timed)
4. disconnect and stop the server
5. record wall time plus the server's CPU time and peak RSS

By default the first failure aborts the whole run.  With
``fail_fast=False`` the failing query is logged, left out of the results
for that version, and the run continues.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Protocol

from regression_gitbase import gitbase
from regression_gitbase.bench.query import Query, SQLClient, load_queries_yaml
from regression_gitbase.bench.results import ResultSet, SampleResult
from regression_gitbase.bench.server import ServerHandle
from regression_gitbase.binary import Binary
from regression_gitbase.config import RegressionConfig
from regression_gitbase.errors import QueryTimeout
from regression_gitbase.logging import get_logger, with_fields

log = get_logger("runner")


class Client(Protocol):
    def connect(self) -> None: ...

    def execute(self, query: Query) -> int: ...

    def close(self) -> None: ...


ServerFactory = Callable[[], ServerHandle]
ClientFactory = Callable[[], Client]


def default_server_factory(config: RegressionConfig) -> ServerFactory:
    def factory() -> ServerHandle:
        return ServerHandle(
            gitbase.server_command,
            host=gitbase.HOST,
            port=gitbase.PORT,
            ready_timeout=config.server_ready_timeout,
        )

    return factory


def default_client_factory() -> Client:
    return SQLClient(gitbase.sql_url())


def load_queries(binary: Binary) -> list[Query]:
    """The query suite shipped with *binary*, or the built-in default."""
    path = binary.extra_file(gitbase.query_file_name())
    if path.is_file():
        log.debug("Loading queries for %s from %s", binary.version, path)
        return load_queries_yaml(path)
    log.debug("No query file for %s, using default queries", binary.version)
    return list(gitbase.DEFAULT_QUERIES)


@dataclass
class RunError:
    """A repetition that failed while ``fail_fast`` was off."""

    version: str
    query_id: str
    repetition: int
    error: str


@dataclass
class BenchmarkRunner:
    """Runs the query suites of several binaries against one fixture directory.

    Usage::

        runner = BenchmarkRunner(config, binaries, fixture_dir)
        results = runner.run()
    """

    config: RegressionConfig
    binaries: dict[str, Binary]
    fixture_dir: Path
    server_factory: ServerFactory | None = None
    client_factory: ClientFactory = default_client_factory
    query_loader: Callable[[Binary], list[Query]] = load_queries

    results: ResultSet = field(default_factory=ResultSet)
    queries: list[Query] = field(default_factory=list)  # union, first-seen order
    errors: list[RunError] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.server_factory is None:
            self.server_factory = default_server_factory(self.config)

    def run(self) -> ResultSet:
        """Execute every repetition and return the collected results."""
        times = self.config.repetitions
        for version in self.config.versions:
            binary = self.binaries.get(version)
            if binary is None:
                raise RuntimeError(f"Binary for {version} not resolved. Was it prepared?")

            vlog = with_fields(log, version=version)
            vlog.info("Running version tests")
            queries = self.query_loader(binary)
            self._remember(queries)

            for query in queries:
                qlog = with_fields(log, version=version, query=query.id)
                samples: list[SampleResult] = []
                for i in range(times):
                    qlog.info("Running query %s (%d/%d)", query.name or query.id, i + 1, times)
                    try:
                        samples.append(self.run_once(binary, query))
                    except Exception as exc:
                        if self.config.fail_fast:
                            raise
                        qlog.error("Query failed, skipping it for this version: %s", exc)
                        self.errors.append(RunError(version, query.id, i + 1, str(exc)))
                        samples = []
                        break
                for sample in samples:
                    self.results.add(version, query.id, sample)

        return self.results

    def _remember(self, queries: list[Query]) -> None:
        known = {q.id for q in self.queries}
        for q in queries:
            if q.id not in known:
                self.queries.append(q)
                known.add(q.id)

    def run_once(self, binary: Binary, query: Query) -> SampleResult:
        """One repetition: fresh server, timed execution, resource usage."""
        assert self.server_factory is not None
        server = self.server_factory()
        server.start(binary.path, self.fixture_dir)
        try:
            client = self.client_factory()
            client.connect()
            try:
                start = time.monotonic()
                rows = self._execute(client, query)
                wall = time.monotonic() - start
            except BaseException:
                _close_quietly(client)
                raise
            client.close()
        finally:
            server.stop()

        usage = server.rusage()
        log.info(
            "Finished queries: wall=%.3fs memory=%.1fMiB rows=%d",
            wall,
            usage.max_rss_bytes / (1024 * 1024),
            rows,
        )
        return SampleResult(
            wall_time=wall,
            user_time=usage.user_time_s,
            sys_time=usage.sys_time_s,
            memory=usage.max_rss_bytes,
            rows=rows,
        )

    def _execute(self, client: Client, query: Query) -> int:
        timeout = self.config.query_timeout
        if timeout is None:
            return client.execute(query)

        # Bounded wait: the worker may keep running after a timeout, but the
        # server is stopped right after, which ends the query.
        pool = ThreadPoolExecutor(max_workers=1)
        try:
            future = pool.submit(client.execute, query)
            try:
                return future.result(timeout=timeout)
            except FutureTimeout:
                raise QueryTimeout(query.id, timeout) from None
        finally:
            pool.shutdown(wait=False)


def _close_quietly(client: Client) -> None:
    """Close *client* while another error is propagating."""
    try:
        client.close()
    except Exception as exc:  # noqa: BLE001
        log.debug("Error closing client after failure: %s", exc)

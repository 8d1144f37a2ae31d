"""CLI entry point for regression-gitbase.

Usage::

    regression-gitbase [OPTIONS] VERSION...

Every VERSION is a release tag (``v0.12.0``), ``latest``, a git reference
(``local:HEAD``, ``remote:master``, ``pull:123``) or a path to an existing
binary.  Versions are benchmarked in the given order and each one is
compared with the next.  With ``--compare-results`` a run saved by
``--save-results`` is compared again without benchmarking; VERSION then
defaults to the saved version order.
"""

from __future__ import annotations

import shutil
import subprocess
import sys
from pathlib import Path

import click
import requests

from regression_gitbase import __version__
from regression_gitbase.bench.compare import compare_versions
from regression_gitbase.bench.display import format_report, format_results_table
from regression_gitbase.bench.export import export_csv, save_latest_csv
from regression_gitbase.bench.query import Query
from regression_gitbase.bench.results import ResultSet, SavedRun, load_result_set, save_result_set
from regression_gitbase.bench.runner import BenchmarkRunner
from regression_gitbase.binary import BinaryResolver
from regression_gitbase.config import AGGREGATIONS, RegressionConfig, validate_config
from regression_gitbase.errors import RegressionError
from regression_gitbase.gitbase import GITBASE
from regression_gitbase.logging import get_logger, setup_logging
from regression_gitbase.repositories import Repositories, format_repositories

log = get_logger("cli")


@click.command()
@click.version_option(version=__version__)
@click.argument("versions", nargs=-1)
@click.option(
    "--binaries",
    "binary_cache",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("binaries"),
    show_default=True,
    envvar="REG_BINARIES",
    help="Directory to store binaries.",
)
@click.option(
    "--repos",
    "repositories_cache",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("repos"),
    show_default=True,
    envvar="REG_REPOS",
    help="Directory to store fixture repositories.",
)
@click.option(
    "--url",
    "git_url",
    type=str,
    default="",
    envvar="REG_GITURL",
    help="URL to the tool repository for remote and pull builds.",
)
@click.option(
    "--repos-file",
    "repositories_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    envvar="REG_REPOS_FILE",
    help="YAML file with the list of fixture repositories.",
)
@click.option(
    "-c",
    "--complexity",
    type=int,
    default=1,
    show_default=True,
    envvar="REG_COMPLEXITY",
    help="Highest repository complexity to test with.",
)
@click.option(
    "-n",
    "--repeat",
    type=int,
    default=3,
    show_default=True,
    envvar="REG_REPEAT",
    help="Number of times each query is run.",
)
@click.option("--show-repos", is_flag=True, help="List available repositories and exit.")
@click.option(
    "-t",
    "--token",
    "github_token",
    type=str,
    default="",
    envvar="REG_TOKEN",
    help="Token used to query the release API.",
)
@click.option("--csv", is_flag=True, help="Save CSV files with the last version's results.")
@click.option(
    "--csv-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Directory for the CSV files.",
)
@click.option(
    "--allowance",
    type=float,
    default=10.0,
    show_default=True,
    help="Percentage a metric may grow before it counts as a regression.",
)
@click.option(
    "--aggregate",
    "aggregation",
    type=click.Choice(AGGREGATIONS),
    default="average",
    show_default=True,
    help="How repetitions are reduced before comparing.",
)
@click.option(
    "--keep-going",
    is_flag=True,
    help="Skip failing queries instead of aborting the run.",
)
@click.option(
    "--query-timeout",
    type=float,
    default=None,
    help="Seconds a single query may run.",
)
@click.option(
    "--save-results",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write all samples to this JSON file, and a long-format CSV next to it.",
)
@click.option(
    "--compare-results",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Compare a run saved with --save-results instead of benchmarking.",
)
@click.option("-v", "--verbose", is_flag=True, help="Show detailed output.")
@click.option("-q", "--quiet", is_flag=True, help="Only show errors.")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write a DEBUG log to this file.",
)
def main(
    versions: tuple[str, ...],
    binary_cache: Path,
    repositories_cache: Path,
    git_url: str,
    repositories_file: Path | None,
    complexity: int,
    repeat: int,
    show_repos: bool,
    github_token: str,
    csv: bool,
    csv_dir: Path,
    allowance: float,
    aggregation: str,
    keep_going: bool,
    query_timeout: float | None,
    save_results: Path | None,
    compare_results: Path | None,
    verbose: bool,
    quiet: bool,
    log_file: Path | None,
) -> None:
    """Benchmark gitbase VERSIONS against each other and fail on regressions."""
    setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)

    config = RegressionConfig(
        versions=list(versions),
        binary_cache=binary_cache,
        repositories_cache=repositories_cache,
        git_url=git_url,
        github_token=github_token,
        repositories_file=repositories_file,
        complexity=complexity,
        repeat=repeat,
        fail_fast=not keep_going,
        query_timeout=query_timeout,
        allowance=allowance,
        aggregation=aggregation,
        csv=csv,
        csv_dir=csv_dir,
        save_results=save_results,
    )

    try:
        repositories = Repositories(config)
    except ValueError as exc:
        raise click.ClickException(f"Invalid repositories file: {exc}") from exc
    if show_repos:
        click.echo(format_repositories(repositories.repos))
        return

    saved: SavedRun | None = None
    if compare_results is not None:
        try:
            saved = load_result_set(compare_results)
        except ValueError as exc:
            raise click.ClickException(f"Invalid results file: {exc}") from exc
        if not config.versions:
            config.versions = list(saved.versions)

    errors = validate_config(config)
    if errors:
        for err in errors:
            click.echo(f"Error: {err.field}: {err.message}", err=True)
        sys.exit(1)

    try:
        if saved is not None:
            passed = report_results(config, saved.results, saved.queries)
        else:
            passed = run_regression(config, repositories)
    except (
        RegressionError,
        subprocess.CalledProcessError,
        OSError,
        requests.RequestException,
        ValueError,
    ) as exc:
        log.error("%s", _describe(exc))
        sys.exit(1)

    if not passed:
        sys.exit(1)


def run_regression(config: RegressionConfig, repositories: Repositories) -> bool:
    """Resolve, benchmark, report.  Returns True when no regression was found."""
    config.binary_cache.mkdir(parents=True, exist_ok=True)

    log.info("Preparing binaries")
    binaries = BinaryResolver(config, GITBASE).resolve_all(config.versions)

    log.info("Downloading repositories")
    repositories.download()
    fixture_dir = repositories.links_dir()
    try:
        runner = BenchmarkRunner(config, binaries, fixture_dir)
        results = runner.run()
    finally:
        shutil.rmtree(fixture_dir, ignore_errors=True)

    for error in runner.errors:
        log.warning(
            "Query %s failed for %s on repetition %d: %s",
            error.query_id,
            error.version,
            error.repetition,
            error.error,
        )

    return report_results(config, results, runner.queries)


def report_results(config: RegressionConfig, results: ResultSet, queries: list[Query]) -> bool:
    """Print the table and the comparison, then write the requested files.

    Returns True when no regression was found.
    """
    click.echo(
        format_results_table(results, config.versions, queries, color=sys.stdout.isatty())
    )

    report = compare_versions(
        results,
        config.versions,
        queries,
        allowance=config.allowance,
        policy=config.aggregation,
    )
    click.echo(format_report(report))

    if config.save_results is not None:
        save_result_set(results, config.save_results, versions=config.versions, queries=queries)
        samples_csv = config.save_results.with_suffix(".csv")
        if samples_csv == config.save_results:
            samples_csv = config.save_results.with_suffix(".samples.csv")
        samples_csv.write_text(export_csv(results, config.versions), encoding="utf-8")
        log.info("Results saved to %s and %s", config.save_results, samples_csv)

    if report.passed and config.csv:
        save_latest_csv(results, config.versions, queries, config.csv_dir)

    return report.passed


def _describe(exc: BaseException) -> str:
    if isinstance(exc, subprocess.CalledProcessError):
        output = (exc.stderr or exc.stdout or "").strip()
        if isinstance(output, bytes):
            output = output.decode("utf-8", errors="replace")
        cmd = " ".join(map(str, exc.cmd)) if isinstance(exc.cmd, (list, tuple)) else str(exc.cmd)
        return f"Command failed ({exc.returncode}): {cmd}" + (f"\n{output}" if output else "")
    return str(exc)

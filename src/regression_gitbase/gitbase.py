"""gitbase-specific pieces: tool description, server command, default queries."""

from __future__ import annotations

from pathlib import Path

from regression_gitbase.bench.query import Query
from regression_gitbase.config import BuildStep, Tool

QUERY_FILE = "_testdata/regression.yml"

HOST = "127.0.0.1"
PORT = 3306
USER = "root"

GITBASE = Tool(
    name="gitbase",
    git_url="https://github.com/src-d/gitbase",
    project_path="github.com/src-d/gitbase",
    build_steps=(BuildStep(dir="", command="make", args=("dependencies", "packages")),),
    extra_files=(QUERY_FILE,),
)


def server_command(binary: str, fixture_dir: Path, index_dir: Path) -> list[str]:
    """Command line that serves *fixture_dir* with indexes in *index_dir*."""
    return [
        binary,
        "server",
        "-g",
        str(fixture_dir),
        "--index",
        str(index_dir),
        "--host",
        HOST,
        "--port",
        str(PORT),
        "--user",
        USER,
    ]


def sql_url(host: str = HOST, port: int = PORT, user: str = USER) -> str:
    """SQLAlchemy URL of a running gitbase server."""
    return f"mysql+pymysql://{user}@{host}:{port}/"


def query_file_name() -> str:
    """Name under which the query suite is cached next to a binary."""
    return Path(QUERY_FILE).name


DEFAULT_QUERIES: list[Query] = [
    Query(id="query0", name="All refs", statements=("SELECT * FROM refs",)),
    Query(id="query1", name="All commits", statements=("SELECT * FROM commits",)),
    Query(id="query2", name="All tree entries", statements=("SELECT * FROM tree_entries",)),
    Query(id="query3", name="All blobs", statements=("SELECT * FROM blobs",)),
    Query(
        id="query4",
        name="Commits per repository",
        statements=(
            "SELECT repository_id, COUNT(*) AS commits FROM commits GROUP BY repository_id",
        ),
    ),
    Query(
        id="query5",
        name="HEAD commit files",
        statements=(
            "SELECT f.file_path FROM refs r "
            "NATURAL JOIN commit_files cf NATURAL JOIN files f "
            "WHERE r.ref_name = 'HEAD'",
        ),
    ),
    Query(
        id="query6",
        name="Languages of HEAD files",
        statements=(
            "SELECT LANGUAGE(f.file_path, f.blob_content) AS lang, COUNT(*) "
            "FROM refs r NATURAL JOIN commit_files NATURAL JOIN files f "
            "WHERE r.ref_name = 'HEAD' GROUP BY lang",
        ),
    ),
    Query(
        id="query7",
        name="Commit authors",
        statements=(
            "SELECT commit_author_email, COUNT(*) AS n FROM commits "
            "GROUP BY commit_author_email ORDER BY n DESC",
        ),
    ),
]

"""Query definitions and the SQL client used to run them.

A query is one or more SQL statements executed back to back; the
benchmark counts every row they return.  Query suites are YAML sequences
of ``{ID, Name, Statements}`` records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import NullPool

from regression_gitbase.logging import get_logger

log = get_logger("query")


@dataclass(frozen=True)
class Query:
    """A named sequence of SQL statements."""

    id: str
    statements: tuple[str, ...]
    name: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"ID": self.id}
        if self.name:
            data["Name"] = self.name
        data["Statements"] = list(self.statements)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Query:
        """Build a query from a YAML record.

        Raises:
            ValueError: If ``ID`` or ``Statements`` is missing.
        """
        if "ID" not in data or "Statements" not in data:
            raise ValueError(f"Query record needs ID and Statements: {data!r}")
        statements = data["Statements"]
        if isinstance(statements, str):
            statements = [statements]
        return cls(
            id=str(data["ID"]),
            name=str(data.get("Name") or ""),
            statements=tuple(str(s) for s in statements),
        )


def parse_queries(text_: str) -> list[Query]:
    """Parse a YAML query suite.

    Raises:
        ValueError: If the document is not valid YAML or not a sequence of
            query records.
    """
    try:
        data = yaml.safe_load(text_)
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML: {exc}") from exc
    if data is None:
        return []
    if not isinstance(data, list):
        raise ValueError("Query file must be a YAML sequence")
    return [Query.from_dict(item) for item in data if isinstance(item, dict)]


def load_queries_yaml(path: Path) -> list[Query]:
    """Load a query suite from *path*."""
    try:
        return parse_queries(path.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise ValueError(f"{path}: {exc}") from exc


# ---------------------------------------------------------------------------
# SQL client
# ---------------------------------------------------------------------------


@dataclass
class SQLClient:
    """Executes queries over a SQLAlchemy connection.

    Statements are sent verbatim, without bind-parameter parsing.

    The engine uses no pool so every repetition opens a fresh connection
    to a freshly started server.
    """

    url: str
    _engine: Engine | None = field(default=None, init=False, repr=False)
    _conn: Connection | None = field(default=None, init=False, repr=False)

    def connect(self) -> None:
        self._engine = create_engine(self.url, poolclass=NullPool)
        self._conn = self._engine.connect()

    def execute(self, query: Query) -> int:
        """Run every statement of *query* and return the total row count."""
        if self._conn is None:
            raise RuntimeError("SQLClient.execute() called before connect()")
        count = 0
        for statement in query.statements:
            log.debug("Executing: %s", statement)
            result = self._conn.exec_driver_sql(statement)
            if result.returns_rows:
                for _ in result:
                    count += 1
            result.close()
        return count

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

"""Data sources that execute structured metric queries.

A query is compiled from its catalog ``QuerySpec`` plus the accepted filter
predicates.  Column names and SQL fragments only ever come from the catalog;
request-supplied filter values are always bound as named parameters.
"""

import logging
import sqlite3
from collections.abc import Sequence
from typing import Any, Protocol

from hr_metrics.metrics.models import MetricFilters, Predicate, QuerySpec

logger = logging.getLogger(__name__)


class DataSource(Protocol):
    def execute(self, query: QuerySpec, predicates: Sequence[Predicate]) -> list[dict[str, Any]]:
        """Run the query and return ordered rows as column -> value mappings."""
        ...


def build_predicates(query: QuerySpec, filters: MetricFilters) -> list[Predicate]:
    """One predicate per accepted filter that the query has a slot for."""
    slots: list[tuple[str, str | None, str]] = [
        ("department", query.department_column, "="),
        ("branch", query.branch_column, "="),
        ("date_from", query.date_column, ">="),
        ("date_to", query.date_column, "<="),
    ]
    predicates: list[Predicate] = []
    for key, column, operator in slots:
        value = getattr(filters, key)
        if not value:
            continue
        if column is None:
            logger.debug("Filter '%s' has no slot in query on %s, skipped", key, query.source)
            continue
        predicates.append(Predicate(column=column, operator=operator, param=key, value=value))  # type: ignore[arg-type]
    return predicates


def compile_query(query: QuerySpec, predicates: Sequence[Predicate]) -> tuple[str, dict[str, str]]:
    """Render a QuerySpec and its predicates into SQL text plus bound parameters."""
    conditions = [*query.where, *(f"{p.column} {p.operator} :{p.param}" for p in predicates)]
    sql = f"SELECT {', '.join(query.select)} FROM {query.source}"
    if conditions:
        sql += " WHERE " + " AND ".join(f"({c})" for c in conditions)
    if query.group_by:
        sql += f" GROUP BY {', '.join(query.group_by)}"
    if query.order_by:
        sql += f" ORDER BY {', '.join(query.order_by)}"
    params = {p.param: p.value for p in predicates}
    return sql, params


class SQLiteDataSource:
    """Executes metric queries against the HR SQLite database.

    A connection is opened per query so worker threads never share one.
    sqlite3 errors propagate; the engine wraps them as ComputationError.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def execute(self, query: QuerySpec, predicates: Sequence[Predicate]) -> list[dict[str, Any]]:
        sql, params = compile_query(query, predicates)
        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        return [dict(row) for row in rows]

    def ping(self) -> bool:
        """Check that the database file can be opened and queried."""
        try:
            conn = self._connect()
            try:
                conn.execute("SELECT 1").fetchone()
            finally:
                conn.close()
            return True
        except sqlite3.Error:
            return False

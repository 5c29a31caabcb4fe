"""
store/records.py -- Generic parameterized query layer over SQLAlchemy Core.

RecordStore executes single-row, multi-row, keyed, count, insert, update and
delete statements against the tables registered in store/schema.py. Callers
describe a query with three pieces:

  table    -- a Table from store.schema (or its registered name)
  columns  -- "*" or a sequence of column names / Column objects
  where    -- a SQLAlchemy boolean expression, e.g. users.c.username == name

Security:
  Values reach the database only as bound parameters. Insert/update values
  are bound positionally against the column list; where-expressions are
  built from Column objects, so a comparison value is a bound parameter too.
  Raw strings are refused as where-expressions (TypeError) and table/column
  names are resolved against the schema (UnknownIdentifierError), so nothing
  a user types can become statement text.

Failure model:
  Every SQLAlchemyError is logged and re-raised as StoreError. The store does
  not retry. fetch_one() and the write operations accept raise_on_error=False
  for callers that prefer a tagged result (Lookup.ERROR / WriteResult(ok=False))
  over an exception.

Concurrency:
  Each call checks a connection out of the engine pool and returns it before
  returning, so one RecordStore is safe to share across request handlers.

Usage:
    records = RecordStore("sqlite:///nevi.db")
    lookup = records.fetch_one(users, "*", users.c.username == "alice")
    if lookup.found:
        records.update(users, ["remember_token"], [token], users.c.id == lookup.row["id"])
    records.close()

Layer rule: store/ imports only stdlib + SQLAlchemy, never api/, web/, auth/
or activity/.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Optional, Union

from sqlalchemy import Column, MetaData, Table, create_engine, event, func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.elements import ColumnElement

from store.errors import StoreError, UnknownIdentifierError
from store.models import Lookup, LookupStatus, WriteResult
from store.schema import metadata as _schema_metadata

logger = logging.getLogger("nevi.store")

TableRef = Union[Table, str]
ColumnRef = Union[str, Column]
Columns = Union[str, Sequence[ColumnRef]]


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by a writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class RecordStore:
    """Parameterized table access for the tables in a MetaData collection.

    Usage:
        store = RecordStore()                               # SQLite default
        store = RecordStore("postgresql://user:pw@host/db") # PostgreSQL
        rows = store.fetch_all(logs, "*", logs.c.userID == 1)
        store.close()
    """

    def __init__(self, db_url: str, metadata: MetaData = _schema_metadata) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.metadata = metadata
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        self.metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def fetch_one(
        self,
        table: TableRef,
        columns: Columns,
        where: ColumnElement,
        *,
        raise_on_error: bool = True,
    ) -> Lookup:
        """Return at most one row matching where, as a tagged Lookup."""
        tbl = self._table(table)
        cols = self._columns(tbl, columns)
        stmt = select(*cols).where(self._where(where, required=True)).limit(1)
        try:
            with self.engine.connect() as conn:
                row = conn.execute(stmt).mappings().first()
        except SQLAlchemyError as exc:
            error = self._failed("fetch_one", tbl, exc)
            if raise_on_error:
                raise error from exc
            return Lookup(LookupStatus.ERROR, error=error)
        if row is None:
            return Lookup(LookupStatus.NOT_FOUND)
        return Lookup(LookupStatus.FOUND, row=dict(row))

    def fetch_all(
        self,
        table: TableRef,
        columns: Columns = "*",
        where: Optional[ColumnElement] = None,
        *,
        order_by: Optional[Sequence[ColumnElement]] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """Return every row matching where. No where-expression selects the whole table."""
        tbl = self._table(table)
        stmt = select(*self._columns(tbl, columns))
        if where is not None:
            stmt = stmt.where(self._where(where))
        if order_by:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).mappings().all()
        except SQLAlchemyError as exc:
            raise self._failed("fetch_all", tbl, exc) from exc
        return [dict(r) for r in rows]

    def fetch_keyed(
        self,
        table: TableRef,
        columns: Columns,
        where: Optional[ColumnElement],
        key_column: ColumnRef,
        value_column: ColumnRef,
    ) -> dict[Any, Any]:
        """Build a {key: value} lookup from a result set.

        Rows are applied in result order, so a later row sharing a key with an
        earlier one overwrites it. No de-duplication or aggregation is done.
        """
        tbl = self._table(table)
        selected = {c.name for c in self._columns(tbl, columns)}
        key = self._column(tbl, key_column).name
        value = self._column(tbl, value_column).name
        for name in (key, value):
            if name not in selected:
                raise UnknownIdentifierError(f"Column {name!r} is not in the selected columns of {tbl.name!r}")
        mapping: dict[Any, Any] = {}
        for row in self.fetch_all(tbl, columns, where):
            mapping[row[key]] = row[value]
        return mapping

    def count(self, table: TableRef, columns: Columns = "*", where: Optional[ColumnElement] = None) -> int:
        """Return the number of rows the equivalent fetch_all() would return."""
        tbl = self._table(table)
        inner = select(*self._columns(tbl, columns))
        if where is not None:
            inner = inner.where(self._where(where))
        stmt = select(func.count()).select_from(inner.subquery())
        try:
            with self.engine.connect() as conn:
                result = conn.execute(stmt).scalar()
        except SQLAlchemyError as exc:
            raise self._failed("count", tbl, exc) from exc
        return result or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(
        self,
        table: TableRef,
        columns: Sequence[ColumnRef],
        values: Sequence[Any],
        *,
        raise_on_error: bool = True,
    ) -> WriteResult:
        """Insert one row, binding values[i] to columns[i]."""
        tbl = self._table(table)
        params = self._bind(tbl, columns, values)
        try:
            with self.engine.connect() as conn:
                result = conn.execute(tbl.insert().values(params))
                conn.commit()
        except SQLAlchemyError as exc:
            return self._write_failed("insert", tbl, exc, raise_on_error)
        pk = result.inserted_primary_key
        return WriteResult(ok=True, rowcount=result.rowcount, inserted_id=pk[0] if pk else None)

    def update(
        self,
        table: TableRef,
        columns: Sequence[ColumnRef],
        values: Sequence[Any],
        where: ColumnElement,
        *,
        raise_on_error: bool = True,
    ) -> WriteResult:
        """Set columns[i] = values[i] on every row matching where."""
        tbl = self._table(table)
        params = self._bind(tbl, columns, values)
        stmt = tbl.update().where(self._where(where, required=True)).values(params)
        try:
            with self.engine.connect() as conn:
                result = conn.execute(stmt)
                conn.commit()
        except SQLAlchemyError as exc:
            return self._write_failed("update", tbl, exc, raise_on_error)
        return WriteResult(ok=True, rowcount=result.rowcount)

    def delete(self, table: TableRef, where: ColumnElement, *, raise_on_error: bool = True) -> WriteResult:
        """Delete every row matching where. A where-expression is mandatory."""
        tbl = self._table(table)
        stmt = tbl.delete().where(self._where(where, required=True))
        try:
            with self.engine.connect() as conn:
                result = conn.execute(stmt)
                conn.commit()
        except SQLAlchemyError as exc:
            return self._write_failed("delete", tbl, exc, raise_on_error)
        return WriteResult(ok=True, rowcount=result.rowcount)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if a connection can be opened and a trivial query run."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.warning("Record store ping failed", exc_info=True)
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Identifier resolution
    # ------------------------------------------------------------------

    def _table(self, table: TableRef) -> Table:
        name = table.name if isinstance(table, Table) else table
        try:
            return self.metadata.tables[name]
        except KeyError:
            raise UnknownIdentifierError(f"Unknown table {name!r}") from None

    @staticmethod
    def _column(table: Table, column: ColumnRef) -> Column:
        name = column if isinstance(column, str) else column.name
        if name not in table.c:
            raise UnknownIdentifierError(f"Unknown column {name!r} on table {table.name!r}")
        return table.c[name]

    def _columns(self, table: Table, columns: Columns) -> list[Column]:
        if isinstance(columns, str):
            if columns == "*":
                return list(table.c)
            columns = [columns]
        if not columns:
            raise ValueError("At least one column must be selected")
        return [self._column(table, c) for c in columns]

    def _bind(self, table: Table, columns: Sequence[ColumnRef], values: Sequence[Any]) -> dict[Column, Any]:
        if isinstance(columns, str):
            raise TypeError("columns must be a sequence of column names, not a single string")
        if len(columns) != len(values):
            raise ValueError(f"{len(columns)} columns but {len(values)} values for table {table.name!r}")
        if not columns:
            raise ValueError("At least one column must be written")
        return {self._column(table, c): v for c, v in zip(columns, values)}

    @staticmethod
    def _where(where: Optional[ColumnElement], required: bool = False) -> Optional[ColumnElement]:
        if where is None:
            if required:
                raise ValueError("A where-expression is required for this operation")
            return None
        if isinstance(where, str):
            raise TypeError("where must be a SQLAlchemy expression built from table columns, not a string")
        if not isinstance(where, ColumnElement):
            raise TypeError(f"where must be a SQLAlchemy column expression, got {type(where).__name__}")
        return where

    # ------------------------------------------------------------------
    # Failure reporting
    # ------------------------------------------------------------------

    @staticmethod
    def _failed(operation: str, table: Table, exc: SQLAlchemyError) -> StoreError:
        logger.error("Record store %s on %s failed: %s", operation, table.name, exc)
        return StoreError(operation, table.name, exc)

    def _write_failed(self, operation: str, table: Table, exc: SQLAlchemyError, raise_on_error: bool) -> WriteResult:
        error = self._failed(operation, table, exc)
        if raise_on_error:
            raise error from exc
        return WriteResult(ok=False)

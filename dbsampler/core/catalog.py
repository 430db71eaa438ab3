"""Primary and foreign key metadata from the database catalog."""

import logging
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .database import DatabaseConnection
from .exceptions import MetadataError
from .models import ForeignKeyEdge, PrimaryKeyInfo


logger = logging.getLogger(__name__)

BASE_TABLE = "BASE TABLE"
VIEW = "VIEW"


class MetadataCatalog:
    """Read-only questions about a schema's keys and relationships.

    Nothing is cached: every call is a fresh catalog query, so the answers
    track the database for the lifetime of the catalog object.
    """

    def __init__(self, db_connection: DatabaseConnection):
        self.db_connection = db_connection
        self.dialect = db_connection.dialect

    def _fetch(self, operation: str, schema: str, table: str,
               statement: Tuple[str, Dict[str, Any]]) -> List[Tuple]:
        sql, params = statement
        try:
            with self.db_connection.engine.connect() as conn:
                return [tuple(row) for row in conn.execute(text(sql), params)]
        except SQLAlchemyError as e:
            logger.error(f"Metadata query {operation} failed for {schema}.{table}: {e}")
            raise MetadataError(schema, table, operation, e) from e

    def primary_key_of(self, schema: str, table: str) -> PrimaryKeyInfo:
        """Primary key columns in key order, deduplicated; empty if none."""
        rows = self._fetch("primary_key", schema, table, self.dialect.primary_key(schema, table))
        columns = []
        for (column,) in rows:
            if column not in columns:
                columns.append(column)
        return PrimaryKeyInfo(table=table, columns=tuple(columns))

    def forward_edges(self, schema: str, table: str) -> List[ForeignKeyEdge]:
        """Foreign keys held by ``table``, at most one edge per column.

        Composite constraints come back one row per column and the same column
        may take part in several constraints; the first edge seen for a
        column wins.
        """
        rows = self._fetch("forward_edges", schema, table, self.dialect.forward_keys(schema, table))
        edges = []
        seen_columns = set()
        for column, referenced_table, referenced_column in rows:
            if referenced_table is None or column in seen_columns:
                continue
            seen_columns.add(column)
            if referenced_column is None:
                referenced_column = self._implicit_reference(schema, referenced_table)
                if referenced_column is None:
                    continue
            edges.append(ForeignKeyEdge(
                table=table,
                table_column=column,
                referenced_table=referenced_table,
                referenced_column=referenced_column,
            ))
        logger.debug(f"{schema}.{table} references {len(edges)} parent column(s)")
        return edges

    def reverse_edges(self, schema: str, table: str) -> List[ForeignKeyEdge]:
        """Every (child table, child column) that references ``table``."""
        rows = self._fetch("reverse_edges", schema, table, self.dialect.reverse_keys(schema, table))
        edges = []
        implicit: Optional[str] = None
        for child_table, child_column, referenced_column in rows:
            if referenced_column is None:
                if implicit is None:
                    implicit = self._implicit_reference(schema, table)
                referenced_column = implicit
                if referenced_column is None:
                    continue
            edges.append(ForeignKeyEdge(
                table=child_table,
                table_column=child_column,
                referenced_table=table,
                referenced_column=referenced_column,
            ))
        logger.debug(f"{schema}.{table} is referenced by {len(edges)} child column(s)")
        return edges

    def _implicit_reference(self, schema: str, table: str) -> Optional[str]:
        """Column a foreign key targets when it names only the parent table."""
        primary_key = self.primary_key_of(schema, table)
        if not primary_key.has_key:
            logger.warning(f"Foreign key to {schema}.{table} names no column and the table has no primary key")
            return None
        return primary_key.columns[0]

    def table_columns(self, schema: str, table: str) -> List[str]:
        rows = self._fetch("table_columns", schema, table, self.dialect.table_columns(schema, table))
        return [column for (column,) in rows]

    def list_tables(self, schema: str) -> List[Tuple[str, str]]:
        """``(name, kind)`` pairs where kind is ``BASE TABLE`` or ``VIEW``."""
        rows = self._fetch("list_tables", schema, "*", self.dialect.list_tables(schema))
        return [(name, kind) for name, kind in rows]

    def base_tables(self, schema: str) -> List[str]:
        return [name for name, kind in self.list_tables(schema) if kind == BASE_TABLE]

    def view_definition(self, schema: str, view: str) -> Optional[str]:
        try:
            with self.db_connection.engine.connect() as conn:
                return self.dialect.view_definition(conn, schema, view)
        except SQLAlchemyError as e:
            logger.error(f"Could not read definition of view {schema}.{view}: {e}")
            raise MetadataError(schema, view, "view_definition", e) from e

"""SQL text for each supported database driver.

A sampling run talks to exactly one database engine, so every piece of SQL
the catalog, replicator, selector and engine issue is produced here by the
dialect picked from ``DatabaseConfig.driver``. Values always travel as bound
parameters; only identifiers are spliced into the text, quoted.
"""

import re
from typing import Any, Dict, List, Sequence, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Connection


Statement = Tuple[str, Dict[str, Any]]


class SQLDialect:
    """Base dialect; subclasses fill in the metadata queries and DDL."""

    name = "generic"
    quote_char = '"'
    random_function = "RANDOM()"
    insert_ignore_prefix = "INSERT INTO"
    insert_ignore_suffix = ""

    def quote(self, identifier: str) -> str:
        q = self.quote_char
        return q + identifier.replace(q, q + q) + q

    def qualify(self, schema: str, table: str) -> str:
        return f"{self.quote(schema)}.{self.quote(table)}"

    def null_safe_equals(self, left: str, right: str) -> str:
        return f"{left} IS NOT DISTINCT FROM {right}"

    # Schema lifecycle

    def create_schema(self, schema: str) -> str:
        return f"CREATE SCHEMA {self.quote(schema)}"

    def drop_schema(self, schema: str) -> str:
        return f"DROP SCHEMA IF EXISTS {self.quote(schema)} CASCADE"

    # Metadata

    def list_tables(self, schema: str) -> Statement:
        return (
            "SELECT table_name, table_type FROM information_schema.tables "
            "WHERE table_schema = :schema ORDER BY table_name",
            {"schema": schema},
        )

    def table_columns(self, schema: str, table: str) -> Statement:
        return (
            "SELECT column_name FROM information_schema.columns "
            "WHERE table_schema = :schema AND table_name = :table "
            "ORDER BY ordinal_position",
            {"schema": schema, "table": table},
        )

    def primary_key(self, schema: str, table: str) -> Statement:
        raise NotImplementedError

    def forward_keys(self, schema: str, table: str) -> Statement:
        """Rows of (column, referenced_table, referenced_column)."""
        raise NotImplementedError

    def reverse_keys(self, schema: str, table: str) -> Statement:
        """Rows of (referencing_table, referencing_column, referenced_column)."""
        raise NotImplementedError

    def view_definition(self, conn: Connection, schema: str, view: str) -> str:
        raise NotImplementedError

    # DDL

    def clone_table(self, conn: Connection, source: str, dest: str, table: str) -> List[str]:
        raise NotImplementedError

    def copy_rows(self, source: str, dest: str, table: str) -> str:
        return f"INSERT INTO {self.qualify(dest, table)} SELECT * FROM {self.qualify(source, table)}"

    def create_view(self, source: str, dest: str, view: str, definition: str) -> str:
        body = self.retarget(definition.strip().rstrip(";"), source, dest)
        return f"CREATE VIEW {self.qualify(dest, view)} AS {body}"

    def retarget(self, sql: str, source: str, dest: str) -> str:
        """Point schema-qualified references at ``dest`` instead of ``source``.

        Textual rewrite: a ``source.`` inside a string literal or alias is
        rewritten too.
        """
        sql = sql.replace(f"{self.quote(source)}.", f"{self.quote(dest)}.")
        return re.sub(
            rf"(?<![\w\"`.]){re.escape(source)}\.", f"{self.quote(dest)}.", sql
        )

    # Row selection

    def select_random(self, schema: str, table: str) -> str:
        return f"SELECT * FROM {self.qualify(schema, table)} ORDER BY {self.random_function} LIMIT :limit"

    def select_in(self, schema: str, table: str, column: str) -> str:
        """Rows whose ``column`` is in the expanding ``:values`` parameter."""
        return f"SELECT * FROM {self.qualify(schema, table)} WHERE {self.quote(column)} IN :values"

    def select_by_value(self, schema: str, table: str, column: str) -> str:
        return f"SELECT * FROM {self.qualify(schema, table)} WHERE {self.quote(column)} = :value"

    # Idempotent inserts

    def insert_by_key(self, source: str, dest: str, table: str,
                      key_columns: Sequence[str]) -> str:
        """Copy the source row matching ``:k0..:kN`` unless its key already exists."""
        where = " AND ".join(
            f"{self.quote(col)} = :k{i}" for i, col in enumerate(key_columns)
        )
        return (
            f"{self.insert_ignore_prefix} {self.qualify(dest, table)} "
            f"SELECT * FROM {self.qualify(source, table)} WHERE {where}"
            f"{self.insert_ignore_suffix}"
        )

    def insert_by_row(self, source: str, dest: str, table: str,
                      columns: Sequence[str]) -> str:
        """Copy rows equal to ``:k0..:kN`` on every column unless an equal row exists.

        Used for tables without a primary key.
        """
        match_source = " AND ".join(
            self.null_safe_equals(f"s.{self.quote(col)}", f":k{i}")
            for i, col in enumerate(columns)
        )
        match_dest = " AND ".join(
            self.null_safe_equals(f"d.{self.quote(col)}", f"s.{self.quote(col)}")
            for col in columns
        )
        return (
            f"{self.insert_ignore_prefix} {self.qualify(dest, table)} "
            f"SELECT s.* FROM {self.qualify(source, table)} AS s WHERE {match_source} "
            f"AND NOT EXISTS (SELECT 1 FROM {self.qualify(dest, table)} AS d WHERE {match_dest})"
            f"{self.insert_ignore_suffix}"
        )

    # Verification

    def count_orphans(self, schema: str, table: str, column: str,
                      referenced_table: str, referenced_column: str) -> str:
        return (
            f"SELECT COUNT(*) FROM {self.qualify(schema, table)} AS c "
            f"WHERE c.{self.quote(column)} IS NOT NULL AND NOT EXISTS ("
            f"SELECT 1 FROM {self.qualify(schema, referenced_table)} AS p "
            f"WHERE p.{self.quote(referenced_column)} = c.{self.quote(column)})"
        )


class MySQLDialect(SQLDialect):
    """MySQL / MariaDB; schemas are databases."""

    name = "mysql"
    quote_char = "`"
    random_function = "RAND()"
    insert_ignore_prefix = "INSERT IGNORE INTO"

    def null_safe_equals(self, left: str, right: str) -> str:
        return f"{left} <=> {right}"

    def create_schema(self, schema: str) -> str:
        return f"CREATE DATABASE {self.quote(schema)}"

    def drop_schema(self, schema: str) -> str:
        return f"DROP DATABASE IF EXISTS {self.quote(schema)}"

    def primary_key(self, schema: str, table: str) -> Statement:
        return (
            "SELECT column_name FROM information_schema.key_column_usage "
            "WHERE table_schema = :schema AND table_name = :table "
            "AND constraint_name = 'PRIMARY' ORDER BY ordinal_position",
            {"schema": schema, "table": table},
        )

    def forward_keys(self, schema: str, table: str) -> Statement:
        return (
            "SELECT column_name, referenced_table_name, referenced_column_name "
            "FROM information_schema.key_column_usage "
            "WHERE table_schema = :schema AND table_name = :table "
            "AND referenced_table_schema = :schema AND referenced_table_name IS NOT NULL "
            "ORDER BY constraint_name, ordinal_position",
            {"schema": schema, "table": table},
        )

    def reverse_keys(self, schema: str, table: str) -> Statement:
        return (
            "SELECT table_name, column_name, referenced_column_name "
            "FROM information_schema.key_column_usage "
            "WHERE referenced_table_schema = :schema AND referenced_table_name = :table "
            "AND table_schema = :schema "
            "ORDER BY table_name, constraint_name, ordinal_position",
            {"schema": schema, "table": table},
        )

    def view_definition(self, conn: Connection, schema: str, view: str) -> str:
        # requires the SHOW VIEW privilege
        return conn.execute(
            text(
                "SELECT view_definition FROM information_schema.views "
                "WHERE table_schema = :schema AND table_name = :view"
            ),
            {"schema": schema, "view": view},
        ).scalar()

    def clone_table(self, conn: Connection, source: str, dest: str, table: str) -> List[str]:
        return [f"CREATE TABLE {self.qualify(dest, table)} LIKE {self.qualify(source, table)}"]


class PostgreSQLDialect(SQLDialect):
    """PostgreSQL; schemas are namespaces inside the connected database."""

    name = "postgresql"
    insert_ignore_suffix = " ON CONFLICT DO NOTHING"

    def primary_key(self, schema: str, table: str) -> Statement:
        return (
            "SELECT kcu.column_name "
            "FROM information_schema.table_constraints tc "
            "JOIN information_schema.key_column_usage kcu "
            "  ON tc.constraint_name = kcu.constraint_name "
            "  AND tc.table_schema = kcu.table_schema "
            "  AND tc.table_name = kcu.table_name "
            "WHERE tc.constraint_type = 'PRIMARY KEY' "
            "AND tc.table_schema = :schema AND tc.table_name = :table "
            "ORDER BY kcu.ordinal_position",
            {"schema": schema, "table": table},
        )

    _REFERENTIAL_JOIN = (
        "FROM information_schema.referential_constraints rc "
        "JOIN information_schema.key_column_usage kcu "
        "  ON kcu.constraint_schema = rc.constraint_schema "
        "  AND kcu.constraint_name = rc.constraint_name "
        "JOIN information_schema.key_column_usage ukcu "
        "  ON ukcu.constraint_schema = rc.unique_constraint_schema "
        "  AND ukcu.constraint_name = rc.unique_constraint_name "
        "  AND ukcu.ordinal_position = kcu.position_in_unique_constraint "
    )

    def forward_keys(self, schema: str, table: str) -> Statement:
        return (
            "SELECT kcu.column_name, ukcu.table_name, ukcu.column_name "
            + self._REFERENTIAL_JOIN
            + "WHERE kcu.table_schema = :schema AND kcu.table_name = :table "
            "AND ukcu.table_schema = :schema "
            "ORDER BY kcu.constraint_name, kcu.ordinal_position",
            {"schema": schema, "table": table},
        )

    def reverse_keys(self, schema: str, table: str) -> Statement:
        return (
            "SELECT kcu.table_name, kcu.column_name, ukcu.column_name "
            + self._REFERENTIAL_JOIN
            + "WHERE ukcu.table_schema = :schema AND ukcu.table_name = :table "
            "AND kcu.table_schema = :schema "
            "ORDER BY kcu.table_name, kcu.constraint_name, kcu.ordinal_position",
            {"schema": schema, "table": table},
        )

    def view_definition(self, conn: Connection, schema: str, view: str) -> str:
        # An empty search_path makes pg_get_viewdef schema-qualify every relation
        conn.execute(text("SELECT set_config('search_path', '', true)"))
        return conn.execute(
            text(
                "SELECT pg_get_viewdef(CAST(format('%I.%I', :schema, :view) AS regclass), true)"
            ),
            {"schema": schema, "view": view},
        ).scalar()

    def clone_table(self, conn: Connection, source: str, dest: str, table: str) -> List[str]:
        return [
            f"CREATE TABLE {self.qualify(dest, table)} "
            f"(LIKE {self.qualify(source, table)} INCLUDING ALL)"
        ]


class SQLiteDialect(SQLDialect):
    """SQLite; schemas are attached database files.

    Schema names cannot be bound in ``schema.sqlite_master`` references, so
    they are quoted into the text; pragma table-valued functions take the
    schema as their last argument and stay parameterized.
    """

    name = "sqlite"
    insert_ignore_prefix = "INSERT OR IGNORE INTO"

    _NAME = r"(?P<name>\"(?:[^\"]|\"\")+\"|`[^`]+`|\[[^\]]+\]|[\w$]+)"
    _CREATE_RE = {
        "table": re.compile(
            r"^\s*CREATE\s+TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?" + _NAME,
            re.IGNORECASE,
        ),
        "view": re.compile(
            r"^\s*CREATE\s+(?:TEMP\s+|TEMPORARY\s+)?VIEW\s+(?:IF\s+NOT\s+EXISTS\s+)?" + _NAME,
            re.IGNORECASE,
        ),
        "index": re.compile(
            r"^\s*CREATE\s+(?P<unique>UNIQUE\s+)?INDEX\s+(?:IF\s+NOT\s+EXISTS\s+)?" + _NAME,
            re.IGNORECASE,
        ),
    }

    def null_safe_equals(self, left: str, right: str) -> str:
        return f"{left} IS {right}"

    def create_schema(self, schema: str) -> str:
        raise NotImplementedError("SQLite schemas are created by attaching a file")

    def drop_schema(self, schema: str) -> str:
        raise NotImplementedError("SQLite schemas are dropped by removing their file")

    def list_tables(self, schema: str) -> Statement:
        return (
            "SELECT name, CASE type WHEN 'view' THEN 'VIEW' ELSE 'BASE TABLE' END "
            f"FROM {self.quote(schema)}.sqlite_master "
            "WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite\\_%' ESCAPE '\\' "
            "ORDER BY name",
            {},
        )

    def table_columns(self, schema: str, table: str) -> Statement:
        return (
            "SELECT name FROM pragma_table_info(:table, :schema) ORDER BY cid",
            {"schema": schema, "table": table},
        )

    def primary_key(self, schema: str, table: str) -> Statement:
        return (
            "SELECT name FROM pragma_table_info(:table, :schema) WHERE pk > 0 ORDER BY pk",
            {"schema": schema, "table": table},
        )

    def forward_keys(self, schema: str, table: str) -> Statement:
        # "to" is NULL when the key references the parent's primary key implicitly
        return (
            'SELECT "from", "table", "to" FROM pragma_foreign_key_list(:table, :schema) '
            "ORDER BY id, seq",
            {"schema": schema, "table": table},
        )

    def reverse_keys(self, schema: str, table: str) -> Statement:
        return (
            'SELECT m.name, p."from", p."to" '
            f"FROM {self.quote(schema)}.sqlite_master AS m "
            "JOIN pragma_foreign_key_list(m.name, :schema) AS p "
            "WHERE m.type = 'table' AND p.\"table\" = :table "
            "ORDER BY m.name, p.id, p.seq",
            {"schema": schema, "table": table},
        )

    def view_definition(self, conn: Connection, schema: str, view: str) -> str:
        return conn.execute(
            text(
                f"SELECT sql FROM {self.quote(schema)}.sqlite_master "
                "WHERE type = 'view' AND name = :view"
            ),
            {"view": view},
        ).scalar()

    def create_view(self, source: str, dest: str, view: str, definition: str) -> str:
        # Unqualified names inside a view resolve within the view's own schema
        return self._rename(definition, "view", self.qualify(dest, view))

    def clone_table(self, conn: Connection, source: str, dest: str, table: str) -> List[str]:
        rows = conn.execute(
            text(
                f"SELECT type, sql FROM {self.quote(source)}.sqlite_master "
                "WHERE tbl_name = :table AND type IN ('table', 'index') AND sql IS NOT NULL "
                "ORDER BY CASE type WHEN 'table' THEN 0 ELSE 1 END, name"
            ),
            {"table": table},
        ).fetchall()
        statements = []
        for kind, sql in rows:
            if kind == "table":
                statements.append(self._rename(sql, "table", self.qualify(dest, table)))
            else:
                statements.append(self._qualify_index(sql, dest))
        return statements

    def _rename(self, sql: str, kind: str, qualified: str) -> str:
        keyword = "TABLE" if kind == "table" else "VIEW"
        return self._CREATE_RE[kind].sub(
            lambda match: f"CREATE {keyword} {qualified}", sql, count=1
        )

    def _qualify_index(self, sql: str, dest: str) -> str:
        def repl(match):
            unique = "UNIQUE " if match.group("unique") else ""
            return f"CREATE {unique}INDEX {self.quote(dest)}.{match.group('name')}"

        return self._CREATE_RE["index"].sub(repl, sql, count=1)


_DIALECTS = {
    "mysql": MySQLDialect,
    "postgresql": PostgreSQLDialect,
    "sqlite": SQLiteDialect,
}


def get_dialect(driver: str) -> SQLDialect:
    """Return the dialect for a ``DatabaseConfig.driver`` value."""
    try:
        return _DIALECTS[driver]()
    except KeyError:
        raise ValueError(f"Unsupported driver: {driver}. Supported: {sorted(_DIALECTS)}")

"""Clone a schema's structure (and optionally some tables' rows) into a new schema."""

import logging
import time
from typing import Dict, Iterable, List, Optional, Set, Tuple
from sqlalchemy.engine import Connection, CursorResult
from sqlalchemy.exc import SQLAlchemyError
from tqdm import tqdm

from .catalog import BASE_TABLE, VIEW, MetadataCatalog
from .database import DatabaseConnection
from .exceptions import MetadataError, ReplicationError
from .models import ReplicationStats


logger = logging.getLogger(__name__)

# DDL is sent without bind parameters, so pyformat drivers leave any '%' in it alone
NO_PARAMETERS = {"no_parameters": True}


class SchemaReplicator:
    """Materialises the destination schema a sampling run fills.

    Table DDL (and full copies of whitelisted tables) runs in one
    transaction; views are created afterwards, outside it, once every table
    they may select from exists.
    """

    def __init__(self, db_connection: DatabaseConnection,
                 catalog: Optional[MetadataCatalog] = None,
                 show_progress: bool = False):
        self.db_connection = db_connection
        self.dialect = db_connection.dialect
        self.catalog = catalog or MetadataCatalog(db_connection)
        self.show_progress = show_progress
        # Schemas this replicator created, the only ones safe to drop after a failure
        self.created_schemas: Set[str] = set()

    def replicate(self, source_schema: str, sample_schema: str,
                  full_copy_tables: Iterable[str] = ()) -> ReplicationStats:
        """Create ``sample_schema`` as a structural copy of ``source_schema``.

        Raises ``ReplicationError`` on any failure; the caller is responsible
        for dropping the partially created schema.
        """
        logger.info(f"Replicating schema {source_schema} into {sample_schema}")
        start_time = time.time()
        stats = ReplicationStats()
        full_copy = set(full_copy_tables)

        try:
            objects = self.catalog.list_tables(source_schema)
        except MetadataError as e:
            raise ReplicationError(f"Could not list tables of {source_schema}: {e}") from e

        tables, views = self._split_objects(objects)
        if not tables and not views:
            raise ReplicationError(f"Schema {source_schema} has no tables or does not exist")

        unknown = sorted(full_copy - set(tables))
        if unknown:
            raise ReplicationError(
                f"Tables to copy in full are not base tables of {source_schema}: {', '.join(unknown)}"
            )

        self._create_tables(source_schema, sample_schema, tables, full_copy, stats)
        self._create_views(source_schema, sample_schema, views, stats)

        stats.total_time_seconds = time.time() - start_time
        logger.info(
            f"Replicated {len(stats.tables_created)} tables and {len(stats.views_created)} views "
            f"into {sample_schema} in {stats.total_time_seconds:.2f} seconds"
        )
        return stats

    def _split_objects(self, objects: List[Tuple[str, str]]) -> Tuple[List[str], List[str]]:
        tables, views = [], []
        for name, kind in objects:
            if kind == BASE_TABLE:
                tables.append(name)
            elif kind == VIEW:
                views.append(name)
            else:
                raise ReplicationError(f"Unknown table type {kind} for {name}")
        return tables, views

    def _attach_sample_schema(self, sample_schema: str) -> None:
        path = self.db_connection.schema_path(sample_schema)
        if path.exists():
            raise ReplicationError(f"Schema file {path} already exists")
        self.db_connection.attach_schema(sample_schema)
        self.created_schemas.add(sample_schema)

    def _create_tables(self, source_schema: str, sample_schema: str, tables: List[str],
                       full_copy: set, stats: ReplicationStats) -> None:
        sqlite = self.db_connection.config.driver == "sqlite"
        if sqlite:
            # ATTACH cannot run inside a transaction
            self._attach_sample_schema(sample_schema)

        statement = None
        try:
            with self.db_connection.engine.begin() as conn:
                if not sqlite:
                    statement = self.dialect.create_schema(sample_schema)
                    self._exec(conn, statement)
                    self.created_schemas.add(sample_schema)

                for table in tqdm(tables, desc="Cloning tables", disable=not self.show_progress):
                    for statement in self.dialect.clone_table(conn, source_schema, sample_schema, table):
                        self._exec(conn, statement)
                    stats.tables_created.append(table)

                    if table in full_copy:
                        statement = self.dialect.copy_rows(source_schema, sample_schema, table)
                        result = self._exec(conn, statement)
                        stats.tables_copied[table] = max(result.rowcount, 0)
                        logger.info(f"Copied {stats.tables_copied[table]} rows of {table} in full")
        except SQLAlchemyError as e:
            logger.error(f"Table replication failed: {e}")
            raise ReplicationError(f"Could not clone tables into {sample_schema}: {e}", statement) from e

    def _create_views(self, source_schema: str, sample_schema: str, views: List[str],
                      stats: ReplicationStats) -> None:
        if not views:
            return

        definitions: Dict[str, str] = {}
        for view in views:
            try:
                definition = self.catalog.view_definition(source_schema, view)
            except MetadataError as e:
                raise ReplicationError(f"Could not read view definition: {e}") from e
            if not definition:
                raise ReplicationError(f"Could not find view definition: {view}")
            definitions[view] = self.dialect.create_view(source_schema, sample_schema, view, definition)

        # A view may select from another view created later in name order;
        # retry failures until a pass makes no progress.
        pending = list(views)
        while pending:
            failed: List[str] = []
            last_error: Optional[Tuple[str, Exception]] = None
            for view in pending:
                statement = definitions[view]
                try:
                    with self.db_connection.engine.begin() as conn:
                        self._exec(conn, statement)
                    stats.views_created.append(view)
                except SQLAlchemyError as e:
                    logger.debug(f"View {view} not created yet: {e}")
                    failed.append(view)
                    last_error = (statement, e)
            if len(failed) == len(pending):
                statement, error = last_error
                logger.error(f"View replication failed: {error}")
                raise ReplicationError(
                    f"Could not create views {', '.join(failed)} in {sample_schema}: {error}", statement
                ) from error
            pending = failed

    def _exec(self, conn: Connection, statement: str) -> CursorResult:
        logger.debug(f"exec {statement}")
        return conn.exec_driver_sql(statement, execution_options=NO_PARAMETERS)

    def drop_schema(self, schema: str) -> None:
        """Remove a (partially) created sample schema."""
        logger.info(f"Dropping schema {schema}")
        if self.db_connection.config.driver == "sqlite":
            self.db_connection.detach_schema(schema)
            path = self.db_connection.schema_path(schema)
            if path.exists():
                path.unlink()
            self.created_schemas.discard(schema)
            return
        statement = self.dialect.drop_schema(schema)
        try:
            with self.db_connection.engine.begin() as conn:
                self._exec(conn, statement)
            self.created_schemas.discard(schema)
        except SQLAlchemyError as e:
            logger.error(f"Could not drop schema {schema}: {e}")
            raise ReplicationError(f"Could not drop schema {schema}: {e}", statement) from e

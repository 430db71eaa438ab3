"""Referential-closure check of a finished sample schema."""

import logging
from typing import Optional
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .catalog import MetadataCatalog
from .database import DatabaseConnection
from .exceptions import QueryError
from .models import OrphanedReference, VerificationReport


logger = logging.getLogger(__name__)


class SampleVerifier:
    """Counts sample rows whose foreign key value has no parent in the sample.

    Edges come from the source schema's metadata, since the cloned tables
    do not necessarily carry the foreign key constraints themselves.
    """

    def __init__(self, db_connection: DatabaseConnection, catalog: Optional[MetadataCatalog] = None):
        self.db_connection = db_connection
        self.dialect = db_connection.dialect
        self.catalog = catalog or MetadataCatalog(db_connection)

    def verify(self, source_schema: str, sample_schema: str) -> VerificationReport:
        report = VerificationReport(sample_schema=sample_schema)

        for table in self.catalog.base_tables(source_schema):
            report.tables_checked += 1
            for edge in self.catalog.forward_edges(source_schema, table):
                report.edges_checked += 1
                statement = self.dialect.count_orphans(
                    sample_schema, edge.table, edge.table_column,
                    edge.referenced_table, edge.referenced_column
                )
                try:
                    with self.db_connection.engine.connect() as conn:
                        count = conn.execute(text(statement)).scalar() or 0
                except SQLAlchemyError as e:
                    logger.error(f"Integrity check failed for {edge}: {e}")
                    raise QueryError(f"Could not check {edge} in {sample_schema}: {e}", statement) from e

                if count:
                    logger.warning(f"Foreign key violation in {sample_schema}: {edge}: {count} orphaned records")
                    report.violations.append(OrphanedReference(edge=edge, count=count))

        if report.is_consistent:
            logger.info(
                f"Sample {sample_schema} is referentially closed "
                f"({report.tables_checked} tables, {report.edges_checked} foreign keys)"
            )
        return report

"""Anchor parsing and resolution of the starting row set."""

import logging
import re
from typing import List
from sqlalchemy import bindparam, text
from sqlalchemy.exc import SQLAlchemyError

from .database import DatabaseConnection
from .exceptions import AnchorSpecError, QueryError
from .models import (
    AnchorSpec, ExplicitSelection, RandomSelection, RowRecord, DEFAULT_RANDOM_LIMIT
)


logger = logging.getLogger(__name__)

ANCHOR_RE = re.compile(r"^(?P<table>\w+)(?:#(?P<column>\w+)=(?P<values>.*))?$")


def parse_anchor_spec(anchor: str, default_limit: int = DEFAULT_RANDOM_LIMIT) -> AnchorSpec:
    """Parse ``table`` or ``table#column=v1,v2,...``.

    A bare table name selects ``default_limit`` random rows. Values are split
    on commas and blank ones are dropped; when none remain the anchor falls
    back to random selection.
    """
    match = ANCHOR_RE.match(anchor.strip()) if anchor else None
    if not match:
        raise AnchorSpecError(anchor)

    table = match.group("table")
    column = match.group("column")
    values = [v.strip() for v in (match.group("values") or "").split(",") if v.strip()]

    if not column or not values:
        return AnchorSpec(table=table, selection=RandomSelection(limit=default_limit))
    return AnchorSpec(table=table, selection=ExplicitSelection(column=column, values=tuple(values)))


class AnchorSelector:
    """Fetches the anchor rows a sampling run starts from."""

    def __init__(self, db_connection: DatabaseConnection):
        self.db_connection = db_connection
        self.dialect = db_connection.dialect

    def resolve(self, spec: AnchorSpec, source_schema: str) -> List[RowRecord]:
        """Rows selected by ``spec``; an empty list when nothing matches."""
        if spec.is_random:
            statement = text(self.dialect.select_random(source_schema, spec.table))
            params = {"limit": spec.selection.limit}
        else:
            statement = text(
                self.dialect.select_in(source_schema, spec.table, spec.selection.column)
            ).bindparams(bindparam("values", expanding=True))
            params = {"values": list(spec.selection.values)}

        try:
            with self.db_connection.engine.connect() as conn:
                rows = [dict(row) for row in conn.execute(statement, params).mappings()]
        except SQLAlchemyError as e:
            logger.error(f"Anchor query failed for {spec}: {e}")
            raise QueryError(f"Could not select anchor rows for {spec}: {e}", str(statement)) from e

        if not rows:
            logger.warning(f"Anchor {spec} matched no rows in {source_schema}")
        else:
            logger.info(f"Anchor {spec} selected {len(rows)} row(s)")
        return rows

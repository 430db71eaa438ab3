"""Dependency-closure sampling: copy anchor rows plus every row they need."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Union
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from tqdm import tqdm

from .anchor import AnchorSelector, parse_anchor_spec
from .cancellation import CancellationToken
from .catalog import MetadataCatalog
from .database import DatabaseConnection
from .exceptions import DepthLimitExceeded, QueryError, TransactionError
from .models import (
    AnchorSpec, ForeignKeyEdge, InsertPlan, PlannedInsert, PrimaryKeyInfo,
    RowRecord, SamplingStats
)
from .visited import VisitedSet


logger = logging.getLogger(__name__)


class _Expand(NamedTuple):
    """Work item: fetch rows of ``table`` where ``column = value`` and plan them."""
    table: str
    column: str
    value: Any
    depth: int


@dataclass
class SamplingRun:
    """State owned by one call to ``SamplingEngine.sample``."""
    token: CancellationToken = field(default_factory=CancellationToken)
    visited: VisitedSet = field(default_factory=VisitedSet)
    expanded_children: VisitedSet = field(default_factory=VisitedSet)
    stats: SamplingStats = field(default_factory=SamplingStats)


class SamplingEngine:
    """Walks foreign keys in both directions from anchor rows and inserts the closure.

    Parents are resolved before the row that references them is inserted, so
    every batch commits with its foreign keys satisfied. Each forward edge of
    a row is planned as one branch (the referenced rows and, before them,
    their own ancestors) and written in a single transaction. Children are
    then fetched through reverse edges, each child getting the same
    parents-first treatment before its own children are expanded.

    Traversal uses explicit work lists, never the call stack; the run's
    visited set stops cycles.
    """

    def __init__(self, db_connection: DatabaseConnection, source_schema: str, sample_schema: str,
                 catalog: Optional[MetadataCatalog] = None,
                 selector: Optional[AnchorSelector] = None,
                 max_depth: Optional[int] = None,
                 show_progress: bool = False):
        self.db_connection = db_connection
        self.dialect = db_connection.dialect
        self.source_schema = source_schema
        self.sample_schema = sample_schema
        self.catalog = catalog or MetadataCatalog(db_connection)
        self.selector = selector or AnchorSelector(db_connection)
        self.max_depth = max_depth
        self.show_progress = show_progress

    def new_run(self, cancel_token: Optional[CancellationToken] = None) -> SamplingRun:
        return SamplingRun(token=cancel_token or CancellationToken())

    def sample(self, anchor: Union[AnchorSpec, str],
               cancel_token: Optional[CancellationToken] = None) -> SamplingStats:
        """Copy the anchor rows and their dependency closure into the sample schema.

        Each batch commits on its own; if a later step fails, earlier batches
        stay in the sample schema and the error propagates.
        """
        if isinstance(anchor, str):
            anchor = parse_anchor_spec(anchor)

        run = self.new_run(cancel_token)
        start_time = time.time()
        logger.info(f"Sampling {self.source_schema} into {self.sample_schema} from anchor {anchor}")

        run.token.raise_if_cancelled("anchor selection")
        anchor_rows = self.selector.resolve(anchor, self.source_schema)
        run.stats.anchor_rows = len(anchor_rows)
        if not anchor_rows:
            logger.info("No anchor rows, nothing to sample")
            return run.stats

        try:
            for row in tqdm(anchor_rows, desc=f"Sampling {anchor.table}", disable=not self.show_progress):
                self.resolve_parents(run, anchor.table, row)
                self.insert_row(run, anchor.table, row)
                self.resolve_children(run, anchor.table, row)
        except Exception as e:
            logger.error(f"Sampling aborted: {e}")
            raise
        finally:
            run.stats.total_time_seconds = time.time() - start_time

        logger.info(
            f"Sampled {run.stats.rows_inserted} rows across {len(run.stats.table_stats)} tables "
            f"in {run.stats.transactions_committed} transactions ({run.stats.total_time_seconds:.2f}s)"
        )
        return run.stats

    # Forward resolution

    def resolve_parents(self, run: SamplingRun, table: str, row: RowRecord, depth: int = 0) -> None:
        """Insert every row ``row`` references, ancestors first, one transaction per edge."""
        for edge in self._forward_edges(run, table):
            value = row.get(edge.table_column)
            if value is None:
                continue
            plan = self.plan_parents(run, edge, value, depth)
            self._execute(run, plan)

    def plan_parents(self, run: SamplingRun, edge: ForeignKeyEdge, value: Any,
                     depth: int = 0) -> InsertPlan:
        """Plan the branch behind one foreign key value.

        Post-order walk: a fetched row's insert is pushed first and its
        parents' expansions above it, so the parents land in the plan before
        the row. A key is marked visited when its expansion is taken off the
        stack, right before the fetch.
        """
        plan = InsertPlan()
        stack: List[Union[_Expand, PlannedInsert]] = [
            _Expand(edge.referenced_table, edge.referenced_column, value, depth + 1)
        ]

        while stack:
            item = stack.pop()
            if isinstance(item, PlannedInsert):
                plan.add(item)
                continue

            if not run.visited.add(item.table, item.column, item.value):
                run.stats.visited_hits += 1
                continue
            self._check_depth(item.table, item.depth)

            rows = self._fetch_rows(run, item.table, item.column, item.value)
            if not rows:
                # orphaned value or filtered parent: nothing to insert
                logger.debug(f"No {item.table} row with {item.column} = {item.value!r}")
                continue

            primary_key = self._primary_key(run, item.table)
            parent_edges = self._forward_edges(run, item.table)
            for row in rows:
                stack.append(self._planned_insert(run, item.table, primary_key, row))
                for parent in reversed(parent_edges):
                    parent_value = row.get(parent.table_column)
                    if parent_value is None:
                        continue
                    if run.visited.contains(parent.referenced_table, parent.referenced_column, parent_value):
                        run.stats.visited_hits += 1
                        continue
                    stack.append(_Expand(
                        parent.referenced_table, parent.referenced_column, parent_value, item.depth + 1
                    ))

        return plan

    # Reverse resolution

    def resolve_children(self, run: SamplingRun, table: str, row: RowRecord, depth: int = 0) -> None:
        """Insert every row that references ``row``, transitively.

        Every referencing row is processed: its parents are resolved, it is
        inserted, and its own children are queued.
        """
        pending = [(table, row, depth)]
        while pending:
            parent_table, parent_row, level = pending.pop()
            for edge in self._reverse_edges(run, parent_table):
                value = parent_row.get(edge.referenced_column)
                if value is None:
                    continue
                if not run.expanded_children.add(edge.table, edge.table_column, value):
                    run.stats.child_queries_skipped += 1
                    continue
                self._check_depth(edge.table, level + 1)

                children = self._fetch_rows(run, edge.table, edge.table_column, value)
                if children:
                    logger.debug(f"{len(children)} {edge.table} row(s) reference {parent_table} via {edge}")
                for child in children:
                    self.resolve_parents(run, edge.table, child, level + 1)
                    self.insert_row(run, edge.table, child)
                    pending.append((edge.table, child, level + 1))

    # Inserts

    def insert_row(self, run: SamplingRun, table: str, row: RowRecord) -> None:
        """Copy one row in its own transaction and mark it visited by its key."""
        primary_key = self._primary_key(run, table)
        plan = InsertPlan()
        plan.add(self._planned_insert(run, table, primary_key, row))
        self._execute(run, plan)
        if len(primary_key.columns) == 1:
            column = primary_key.columns[0]
            run.visited.add(table, column, row.get(column))

    def _planned_insert(self, run: SamplingRun, table: str, primary_key: PrimaryKeyInfo,
                        row: RowRecord) -> PlannedInsert:
        if primary_key.has_key:
            return PlannedInsert(
                table=table,
                key_columns=primary_key.columns,
                key_values=tuple(row.get(c) for c in primary_key.columns),
            )
        if table not in run.stats.degraded_tables:
            run.stats.degraded_tables.append(table)
            logger.warning(
                f"Table {table} has no primary key; rows are matched on every column (best effort)"
            )
        columns = tuple(self.catalog.table_columns(self.source_schema, table)) or tuple(row.keys())
        return PlannedInsert(
            table=table,
            key_columns=columns,
            key_values=tuple(row.get(c) for c in columns),
            degraded=True,
        )

    def insert_statement(self, entry: PlannedInsert) -> str:
        if entry.degraded:
            return self.dialect.insert_by_row(
                self.source_schema, self.sample_schema, entry.table, entry.key_columns
            )
        return self.dialect.insert_by_key(
            self.source_schema, self.sample_schema, entry.table, entry.key_columns
        )

    def _execute(self, run: SamplingRun, plan: InsertPlan) -> None:
        """Run a plan in one transaction; any failure rolls the whole batch back."""
        if not plan:
            return
        run.token.raise_if_cancelled(f"inserting into {', '.join(plan.tables())}")

        inserted: Dict[str, int] = {}
        entry, statement = None, None
        try:
            with self.db_connection.engine.begin() as conn:
                for entry in plan:
                    run.token.raise_if_cancelled(f"inserting into {entry.table}")
                    statement = self.insert_statement(entry)
                    logger.debug(f"insert {statement} {entry.params}")
                    result = conn.execute(text(statement), entry.params)
                    inserted[entry.table] = inserted.get(entry.table, 0) + max(result.rowcount, 0)
        except SQLAlchemyError as e:
            logger.error(f"Batch of {len(plan)} insert(s) rolled back: {e}\n  statement: {statement}")
            table = entry.table if entry else ", ".join(plan.tables())
            raise TransactionError(table, statement, e) from e

        run.stats.transactions_committed += 1
        for table, rows in inserted.items():
            run.stats.record_insert(table, rows)

    # Metadata and row access

    def _check_depth(self, table: str, depth: int) -> None:
        if self.max_depth is not None and depth > self.max_depth:
            raise DepthLimitExceeded(table, depth, self.max_depth)

    def _forward_edges(self, run: SamplingRun, table: str) -> List[ForeignKeyEdge]:
        run.token.raise_if_cancelled(f"reading foreign keys of {table}")
        return self.catalog.forward_edges(self.source_schema, table)

    def _reverse_edges(self, run: SamplingRun, table: str) -> List[ForeignKeyEdge]:
        run.token.raise_if_cancelled(f"reading references to {table}")
        return self.catalog.reverse_edges(self.source_schema, table)

    def _primary_key(self, run: SamplingRun, table: str) -> PrimaryKeyInfo:
        run.token.raise_if_cancelled(f"reading primary key of {table}")
        return self.catalog.primary_key_of(self.source_schema, table)

    def _fetch_rows(self, run: SamplingRun, table: str, column: str, value: Any) -> List[RowRecord]:
        run.token.raise_if_cancelled(f"fetching {table}")
        statement = self.dialect.select_by_value(self.source_schema, table, column)
        try:
            with self.db_connection.engine.connect() as conn:
                return [dict(row) for row in conn.execute(text(statement), {"value": value}).mappings()]
        except SQLAlchemyError as e:
            logger.error(f"Fetching {table} where {column} = {value!r} failed: {e}")
            raise QueryError(f"Could not fetch rows of {table}: {e}", statement) from e

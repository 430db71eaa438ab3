"""Data models for relationship metadata, sampling plans and configuration."""

import time
from typing import List, Dict, Any, Optional, Tuple, Union
from dataclasses import dataclass, field
from pydantic import BaseModel, Field, validator


# One fetched row: column name -> scalar as returned by the driver
RowRecord = Dict[str, Any]

DEFAULT_RANDOM_LIMIT = 5


def freeze_value(value: Any) -> Any:
    """Return a hashable, comparable form of a column value.

    Drivers hand back binary columns as ``bytearray`` or ``memoryview`` and
    array columns as lists; those are normalised so they can be used in
    visited keys.
    """
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, list):
        return tuple(freeze_value(v) for v in value)
    if isinstance(value, dict):
        return tuple(sorted((k, freeze_value(v)) for k, v in value.items()))
    return value


@dataclass(frozen=True)
class ForeignKeyEdge:
    """Directed edge ``table.table_column -> referenced_table.referenced_column``."""
    table: str
    table_column: str
    referenced_table: str
    referenced_column: str

    @property
    def is_self_reference(self) -> bool:
        return self.table == self.referenced_table

    def __str__(self) -> str:
        return f"{self.table}.{self.table_column} -> {self.referenced_table}.{self.referenced_column}"


@dataclass(frozen=True)
class PrimaryKeyInfo:
    """Ordered primary key columns of a table; empty when none is declared."""
    table: str
    columns: Tuple[str, ...] = ()

    @property
    def has_key(self) -> bool:
        return bool(self.columns)


@dataclass(frozen=True)
class RandomSelection:
    """Pick ``limit`` rows in random order."""
    limit: int = DEFAULT_RANDOM_LIMIT


@dataclass(frozen=True)
class ExplicitSelection:
    """Pick every row whose ``column`` equals one of ``values``."""
    column: str
    values: Tuple[Any, ...]


@dataclass(frozen=True)
class AnchorSpec:
    """Where a sampling run starts."""
    table: str
    selection: Union[RandomSelection, ExplicitSelection] = field(default_factory=RandomSelection)

    @property
    def is_random(self) -> bool:
        return isinstance(self.selection, RandomSelection)

    def __str__(self) -> str:
        if self.is_random:
            return f"{self.table} (random {self.selection.limit})"
        values = ",".join(str(v) for v in self.selection.values)
        return f"{self.table}#{self.selection.column}={values}"


@dataclass(frozen=True)
class VisitedKey:
    """A row of ``table`` identified by ``column = value``."""
    table: str
    column: str
    value: Any

    @classmethod
    def of(cls, table: str, column: str, value: Any) -> "VisitedKey":
        return cls(table, column, freeze_value(value))


@dataclass(frozen=True)
class PlannedInsert:
    """Copy one source row into the sample schema.

    ``degraded`` marks tables without a primary key, where ``key_columns``
    lists every column and the row is matched on full-row equality.
    """
    table: str
    key_columns: Tuple[str, ...]
    key_values: Tuple[Any, ...]
    degraded: bool = False

    @property
    def params(self) -> Dict[str, Any]:
        return {f"k{i}": value for i, value in enumerate(self.key_values)}

    @property
    def identity(self) -> Tuple[Any, ...]:
        return (self.table, self.key_columns, tuple(freeze_value(v) for v in self.key_values))


@dataclass
class InsertPlan:
    """Ordered, deduplicated inserts; parents always precede their children."""
    entries: List[PlannedInsert] = field(default_factory=list)
    _seen: set = field(default_factory=set, repr=False, compare=False)

    def add(self, entry: PlannedInsert) -> bool:
        """Queue ``entry``; returns False if the same row is already queued."""
        identity = entry.identity
        if identity in self._seen:
            return False
        self._seen.add(identity)
        self.entries.append(entry)
        return True

    def tables(self) -> List[str]:
        seen = []
        for entry in self.entries:
            if entry.table not in seen:
                seen.append(entry.table)
        return seen

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)


@dataclass
class SamplingStats:
    """Statistics from one sampling run."""
    anchor_rows: int = 0
    rows_inserted: int = 0
    transactions_committed: int = 0
    visited_hits: int = 0
    child_queries_skipped: int = 0
    total_time_seconds: float = 0.0
    degraded_tables: List[str] = field(default_factory=list)
    table_stats: Dict[str, int] = field(default_factory=dict)

    def record_insert(self, table: str, rows: int) -> None:
        self.rows_inserted += rows
        self.table_stats[table] = self.table_stats.get(table, 0) + rows


@dataclass
class ReplicationStats:
    """What the schema replicator created."""
    tables_created: List[str] = field(default_factory=list)
    views_created: List[str] = field(default_factory=list)
    tables_copied: Dict[str, int] = field(default_factory=dict)
    total_time_seconds: float = 0.0


@dataclass
class OrphanedReference:
    """Sample rows whose foreign key has no parent row in the sample."""
    edge: ForeignKeyEdge
    count: int

    def __str__(self) -> str:
        return f"{self.edge}: {self.count} orphaned rows"


@dataclass
class VerificationReport:
    """Result of checking a sample schema for referential closure."""
    sample_schema: str
    tables_checked: int = 0
    edges_checked: int = 0
    violations: List[OrphanedReference] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not self.violations


def default_sample_schema() -> str:
    return f"sample_db_{int(time.time())}"


class SamplingConfig(BaseModel):
    """Configuration for one sampling run."""

    source_schema: str = Field(..., description="Schema to sample from")
    sample_schema: str = Field(
        default_factory=default_sample_schema, description="Schema to create and fill"
    )
    anchor: str = Field(..., description="Anchor spec: table or table#column=v1,v2")
    no_sample: List[str] = Field(
        default_factory=list, description="Tables copied in full instead of sampled"
    )
    max_depth: Optional[int] = Field(
        default=None, description="Maximum relationship depth to follow (None = unbounded)"
    )
    timeout_seconds: Optional[float] = Field(
        default=None, description="Abort the run after this many seconds"
    )
    verify: bool = Field(default=True, description="Check referential closure after sampling")
    show_progress: bool = Field(default=True, description="Show progress bars")

    @validator("no_sample", pre=True)
    def split_no_sample(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [t.strip() for t in v.split(",") if t.strip()]
        return v

    @validator("sample_schema")
    def validate_sample_schema(cls, v, values):
        if v == values.get("source_schema"):
            raise ValueError("Sample schema must differ from the source schema")
        return v

    @validator("max_depth")
    def validate_max_depth(cls, v):
        if v is not None and v < 1:
            raise ValueError("max_depth must be at least 1")
        return v

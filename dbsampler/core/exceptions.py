"""Exception hierarchy for sampling runs."""

from typing import Optional


class DBSamplerError(Exception):
    """Base exception for dbsampler errors."""

    pass


class DatabaseConnectionError(DBSamplerError, ConnectionError):
    """The database could not be reached or did not answer a ping."""

    pass


class MetadataError(DBSamplerError):
    """A catalog query failed (an empty result is not an error)."""

    def __init__(self, schema: str, table: str, operation: str, cause: Exception):
        self.schema = schema
        self.table = table
        self.operation = operation
        super().__init__(
            f"Metadata query '{operation}' failed for {schema}.{table}: {cause}"
        )


class ReplicationError(DBSamplerError):
    """Cloning the source schema into the sample schema failed.

    The sample schema is left in an unusable state and should be dropped by
    the caller.
    """

    def __init__(self, message: str, statement: Optional[str] = None):
        self.statement = statement
        if statement:
            message = f"{message}\n  statement: {statement}"
        super().__init__(message)


class AnchorSpecError(DBSamplerError, ValueError):
    """Anchor text does not match ``table`` or ``table#column=v1,v2``."""

    def __init__(self, text: str):
        super().__init__(
            f"Bad format for anchor '{text}'.\n\n"
            f"Expected one of:\n"
            f"  table                 sample 5 random rows\n"
            f"  table#column=v1,v2    sample rows where column is v1 or v2"
        )


class SamplingError(DBSamplerError):
    """Base exception for failures during dependency-closure sampling."""

    pass


class QueryError(SamplingError):
    """Fetching rows from the source schema failed."""

    def __init__(self, message: str, statement: Optional[str] = None):
        self.statement = statement
        if statement:
            message = f"{message}\n  statement: {statement}"
        super().__init__(message)


class TransactionError(SamplingError):
    """A batch transaction failed and was rolled back."""

    def __init__(self, table: str, statement: str, cause: Exception):
        self.table = table
        self.statement = statement
        super().__init__(
            f"Insert into '{table}' failed, batch rolled back: {cause}\n"
            f"  statement: {statement}"
        )


class SamplingCancelled(SamplingError):
    """The run was cancelled or its deadline passed."""

    pass


class DepthLimitExceeded(SamplingError):
    """Traversal went deeper than the configured ``max_depth``."""

    def __init__(self, table: str, depth: int, max_depth: int):
        self.table = table
        self.depth = depth
        self.max_depth = max_depth
        super().__init__(
            f"Relationship depth {depth} at table '{table}' exceeds max_depth={max_depth}"
        )

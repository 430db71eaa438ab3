"""Database connection and management utilities."""

import logging
from pathlib import Path
from typing import Dict, Any, Optional
from sqlalchemy import create_engine, event, Engine, text
from sqlalchemy.exc import SQLAlchemyError
from pydantic import BaseModel, Field, validator

from .dialects import SQLDialect, get_dialect
from .exceptions import DatabaseConnectionError


logger = logging.getLogger(__name__)

DEFAULT_PORTS = {
    "mysql": 3306,
    "postgresql": 5432,
    "sqlite": 0,
}


class DatabaseConfig(BaseModel):
    """Configuration model for database connections."""

    driver: str = Field(default="mysql", description="Database driver")
    host: str = Field(default="localhost", description="Database host")
    port: Optional[int] = Field(default=None, description="Database port (driver default if unset)")
    database: str = Field(
        default="",
        description="Database to connect to; for SQLite, the directory holding one file per schema",
    )
    username: str = Field(default="root", description="Database username")
    password: str = Field(default="root", description="Database password")
    ssl_mode: Optional[str] = Field(default=None, description="SSL mode")
    charset: str = Field(default="utf8mb4", description="Character set")
    pool_size: int = Field(default=10, description="Persistent connections kept in the pool")
    max_overflow: int = Field(default=20, description="Extra connections allowed beyond pool_size")
    pool_recycle: int = Field(default=3600, description="Seconds before a pooled connection is recycled")

    @validator("driver")
    def validate_driver(cls, v):
        supported_drivers = ["postgresql", "mysql", "sqlite"]
        if v not in supported_drivers:
            raise ValueError(f"Unsupported driver: {v}. Supported: {supported_drivers}")
        return v

    @validator("port", pre=True, always=True)
    def validate_port(cls, v, values):
        driver = values.get("driver", "mysql")
        if v is None:
            return DEFAULT_PORTS.get(driver, 0)
        # SQLite doesn't use ports
        if driver == "sqlite":
            return v
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v


class DatabaseConnection:
    """Manages database connections and provides utilities for database operations.

    For SQLite every schema is a separate database file inside
    ``config.database`` and is ATTACHed to each pooled connection under the
    schema name, so ``schema.table`` addressing works the same way it does
    on the server drivers.
    """

    def __init__(self, config: DatabaseConfig):
        """Initialize database connection with configuration."""
        self.config = config
        self._engine: Optional[Engine] = None
        self._attached: Dict[str, str] = {}

    def connect(self) -> None:
        """Establish connection to the database."""
        try:
            connection_url = self._build_connection_url()
            logger.info(f"Connecting to {self.config.driver} database at {self.config.host}:{self.config.port}")

            engine_kwargs = {
                "echo": False,
                "pool_pre_ping": True,
                "connect_args": self._get_connect_args()
            }

            # Bounded pool; SQLite uses its own single-connection pool classes
            if self.config.driver != "sqlite":
                engine_kwargs["pool_size"] = self.config.pool_size
                engine_kwargs["max_overflow"] = self.config.max_overflow
                engine_kwargs["pool_recycle"] = self.config.pool_recycle

            self._engine = create_engine(connection_url, **engine_kwargs)

            if self.config.driver == "sqlite":
                event.listen(self._engine, "connect", self._attach_schemas)

            # Test connection
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
                logger.info("Database connection established successfully")

        except SQLAlchemyError as e:
            logger.error(f"Failed to connect to database: {e}")
            raise DatabaseConnectionError(f"Database connection failed: {e}") from e

    def _build_connection_url(self) -> str:
        """Build SQLAlchemy connection URL from config."""
        if self.config.driver == "postgresql":
            driver_name = "postgresql+psycopg2"
        elif self.config.driver == "mysql":
            driver_name = "mysql+pymysql"
        elif self.config.driver == "sqlite":
            # Schemas live in attached files, the main database is scratch space
            return "sqlite://"
        else:
            raise ValueError(f"Unsupported driver: {self.config.driver}")

        base_url = f"{driver_name}://{self.config.username}:{self.config.password}@{self.config.host}:{self.config.port}"

        if self.config.database:
            return f"{base_url}/{self.config.database}"
        else:
            # Server-level connection, schemas are addressed explicitly
            return base_url

    def _get_connect_args(self) -> Dict[str, Any]:
        """Get driver-specific connection arguments."""
        args = {}

        if self.config.driver == "mysql":
            args["charset"] = self.config.charset
            if self.config.ssl_mode:
                args["ssl"] = {"mode": self.config.ssl_mode}
        elif self.config.driver == "postgresql":
            if self.config.ssl_mode:
                args["sslmode"] = self.config.ssl_mode
        elif self.config.driver == "sqlite":
            args["check_same_thread"] = False

        return args

    def _attach_schemas(self, dbapi_connection, connection_record) -> None:
        """Attach every registered SQLite schema file to a new DBAPI connection."""
        for name, path in self._attached.items():
            dbapi_connection.execute(
                f"ATTACH DATABASE ? AS {self.quote_identifier(name)}", (path,)
            )

    def schema_path(self, schema: str) -> Path:
        """Location of the file backing a SQLite schema."""
        return Path(self.config.database or ".") / f"{schema}.db"

    def attach_schema(self, schema: str, must_exist: bool = False) -> None:
        """Make ``schema`` addressable; a no-op outside SQLite.

        ATTACH creates the file if it does not exist yet, unless
        ``must_exist`` is set.
        """
        if self.config.driver != "sqlite" or schema in self._attached:
            return
        path = self.schema_path(schema)
        if must_exist and not path.exists():
            raise DatabaseConnectionError(f"SQLite schema file not found: {path}")
        self._attached[schema] = str(path)
        if self._engine is not None:
            # Pooled connections predate the attachment, reopen them
            self._engine.dispose()
        logger.debug(f"Attached SQLite schema {schema} from {self._attached[schema]}")

    def detach_schema(self, schema: str) -> None:
        """Forget an attached SQLite schema; a no-op outside SQLite."""
        if self._attached.pop(schema, None) is not None and self._engine is not None:
            self._engine.dispose()

    @property
    def engine(self) -> Engine:
        """Get the SQLAlchemy engine."""
        if self._engine is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._engine

    def close(self) -> None:
        """Close database connection and cleanup resources."""
        if self._engine:
            self._engine.dispose()
            self._engine = None
            logger.info("Database connection closed")

    @property
    def dialect(self) -> SQLDialect:
        """SQL dialect matching the configured driver."""
        return get_dialect(self.config.driver)

    def quote_identifier(self, identifier: str) -> str:
        """Quote table or column name properly based on database type."""
        return self.dialect.quote(identifier)

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


"""
DBSampler - Copy a small, referentially closed sample of a SQL database schema.

This package provides tools to:
- Clone a schema's tables and views into a new sample schema
- Select anchor rows at random or by column value
- Follow foreign keys both ways so every sampled row keeps its parents and children
- Verify that the finished sample has no dangling references
- Support multiple database engines (MySQL, PostgreSQL, SQLite)
"""

__version__ = "1.0.0"

from dbsampler.core.database import DatabaseConnection, DatabaseConfig
from dbsampler.core.anchor import AnchorSelector, parse_anchor_spec
from dbsampler.core.catalog import MetadataCatalog
from dbsampler.core.replicator import SchemaReplicator
from dbsampler.core.engine import SamplingEngine
from dbsampler.core.verifier import SampleVerifier

__all__ = [
    "DatabaseConnection",
    "DatabaseConfig",
    "AnchorSelector",
    "parse_anchor_spec",
    "MetadataCatalog",
    "SchemaReplicator",
    "SamplingEngine",
    "SampleVerifier",
]

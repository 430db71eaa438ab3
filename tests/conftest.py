"""Test configuration and fixtures for DBSampler tests."""

import pytest
from unittest.mock import MagicMock, Mock
from sqlalchemy import create_engine, text

from dbsampler.core.database import DatabaseConnection, DatabaseConfig
from dbsampler.core.dialects import get_dialect
from dbsampler.core.replicator import SchemaReplicator


SOURCE_SCHEMA = "shop"
SAMPLE_SCHEMA = "sample"

SHOP_DDL = [
    "CREATE TABLE customers (id INTEGER PRIMARY KEY, name TEXT NOT NULL)",
    "CREATE TABLE shipping_address ("
    "  id INTEGER PRIMARY KEY,"
    "  customer_id INTEGER NOT NULL REFERENCES customers(id),"
    "  street TEXT)",
    "CREATE TABLE products (id INTEGER PRIMARY KEY, name TEXT NOT NULL)",
    "CREATE TABLE orders ("
    "  id INTEGER PRIMARY KEY,"
    "  customer_id INTEGER NOT NULL REFERENCES customers(id),"
    "  shipping_address_id INTEGER REFERENCES shipping_address(id),"
    "  total REAL)",
    "CREATE TABLE order_items ("
    "  order_id INTEGER NOT NULL REFERENCES orders(id),"
    "  product_id INTEGER NOT NULL REFERENCES products(id),"
    "  quantity INTEGER NOT NULL,"
    "  PRIMARY KEY (order_id, product_id))",
    # references the parent's primary key without naming the column
    "CREATE TABLE reviews (id INTEGER PRIMARY KEY, customer_id INTEGER REFERENCES customers, body TEXT)",
    # no primary key
    "CREATE TABLE audit_log (customer_id INTEGER REFERENCES customers(id), note TEXT)",
    "CREATE TABLE employees (id INTEGER PRIMARY KEY, name TEXT, manager_id INTEGER REFERENCES employees(id))",
    # person <-> team cycle
    "CREATE TABLE team (id INTEGER PRIMARY KEY, name TEXT, lead_id INTEGER REFERENCES person(id))",
    "CREATE TABLE person (id INTEGER PRIMARY KEY, name TEXT, team_id INTEGER REFERENCES team(id))",
    "CREATE TABLE countries (code TEXT PRIMARY KEY, name TEXT NOT NULL)",
    "CREATE INDEX idx_orders_customer ON orders (customer_id)",
    "CREATE VIEW customer_orders AS "
    "SELECT c.name AS customer, o.id AS order_id FROM customers c JOIN orders o ON o.customer_id = c.id",
    "CREATE VIEW big_orders AS SELECT * FROM customer_orders WHERE order_id > 1000",
]

SHOP_ROWS = [
    "INSERT INTO customers VALUES (1, 'Alice'), (2, 'Bob'), (3, 'Carol')",
    "INSERT INTO shipping_address VALUES (10, 1, 'Main St 1'), (11, 1, 'Harbour 7'), (12, 2, 'Hill Rd 3')",
    "INSERT INTO products VALUES (100, 'Widget'), (101, 'Gadget'), (102, 'Gizmo')",
    "INSERT INTO orders VALUES (1000, 1, 10, 25.0), (1001, 1, 11, 12.5), (1002, 2, 12, 99.0), (1003, 3, NULL, 5.0)",
    "INSERT INTO order_items VALUES (1000, 100, 2), (1000, 101, 1), (1002, 101, 5)",
    "INSERT INTO reviews VALUES (1, 1, 'Great'), (2, 3, 'Meh')",
    "INSERT INTO audit_log VALUES (1, 'signup'), (1, 'login'), (2, 'signup')",
    "INSERT INTO employees VALUES (1, 'CEO', NULL), (2, 'VP', 1), (3, 'Manager', 2), (4, 'Engineer', 3), (5, 'CFO', 1)",
    "INSERT INTO team VALUES (1, 'Core', 1)",
    "INSERT INTO person VALUES (1, 'Lead', 1), (2, 'Member', 1)",
    "INSERT INTO countries VALUES ('US', 'United States'), ('FR', 'France')",
]


@pytest.fixture
def sqlite_dir(tmp_path):
    """Directory holding the ``shop`` source schema as ``shop.db``."""
    engine = create_engine(f"sqlite:///{tmp_path / (SOURCE_SCHEMA + '.db')}")
    with engine.begin() as conn:
        for statement in SHOP_DDL + SHOP_ROWS:
            conn.exec_driver_sql(statement)
    engine.dispose()
    return tmp_path


@pytest.fixture
def sqlite_config(sqlite_dir):
    return DatabaseConfig(driver="sqlite", database=str(sqlite_dir))


@pytest.fixture
def sqlite_connection(sqlite_config):
    """Connected SQLite database with the source schema attached."""
    connection = DatabaseConnection(sqlite_config)
    connection.connect()
    connection.attach_schema(SOURCE_SCHEMA, must_exist=True)
    yield connection
    connection.close()


@pytest.fixture
def sample_schema(sqlite_connection):
    """Empty structural copy of the source schema."""
    SchemaReplicator(sqlite_connection).replicate(SOURCE_SCHEMA, SAMPLE_SCHEMA)
    return SAMPLE_SCHEMA


@pytest.fixture
def query(sqlite_connection):
    """Return ``query(statement, params)`` -> list of row dicts."""
    def _query(statement, params=None):
        with sqlite_connection.engine.connect() as conn:
            return [dict(row) for row in conn.execute(text(statement), params or {}).mappings()]
    return _query


@pytest.fixture
def fetch(query):
    """Return ``fetch(schema, table, order_by)`` -> list of row dicts."""
    def _fetch(schema, table, order_by="rowid"):
        return query(f'SELECT * FROM "{schema}"."{table}" ORDER BY {order_by}')
    return _fetch


@pytest.fixture
def mock_db_config():
    """Create a mock database configuration for testing."""
    return DatabaseConfig(
        host="localhost",
        port=5432,
        database="test_db",
        username="test_user",
        password="test_pass",
        driver="postgresql"
    )


@pytest.fixture
def mock_db_connection(mock_db_config):
    """Create a mock database connection for testing."""
    connection = Mock(spec=DatabaseConnection)
    connection.config = mock_db_config
    connection.dialect = get_dialect(mock_db_config.driver)
    connection.engine = MagicMock()
    return connection

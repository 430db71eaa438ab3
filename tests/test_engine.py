"""Tests for dependency-closure sampling against a SQLite source schema."""

import pytest
from unittest.mock import patch
from sqlalchemy.exc import OperationalError

from dbsampler.core.cancellation import CancellationToken
from dbsampler.core.engine import SamplingEngine
from dbsampler.core.exceptions import (
    DepthLimitExceeded, QueryError, SamplingCancelled, TransactionError
)
from dbsampler.core.models import AnchorSpec, ForeignKeyEdge, RandomSelection
from dbsampler.core.verifier import SampleVerifier


@pytest.fixture
def engine(sqlite_connection, sample_schema):
    return SamplingEngine(sqlite_connection, "shop", sample_schema)


@pytest.fixture
def ids(fetch):
    """Return ``ids(table)`` -> sorted primary key values in the sample."""
    def _ids(table, column="id"):
        return sorted(row[column] for row in fetch("sample", table))
    return _ids


def assert_closed(sqlite_connection):
    report = SampleVerifier(sqlite_connection).verify("shop", "sample")
    assert report.is_consistent, [str(v) for v in report.violations]


class TestForwardResolution:
    """Parents of the anchor are copied before the anchor itself."""

    def test_order_pulls_customer_address_items_and_products(self, engine, ids, fetch, sqlite_connection):
        stats = engine.sample("orders#id=1000")

        assert ids("orders") == [1000]
        assert ids("customers") == [1]
        assert ids("shipping_address") == [10]
        assert ids("products") == [100, 101]
        items = fetch("sample", "order_items", order_by="order_id, product_id")
        assert [(i["order_id"], i["product_id"]) for i in items] == [(1000, 100), (1000, 101)]
        # parents are not expanded into their other children
        assert ids("reviews") == []
        assert fetch("sample", "audit_log") == []

        assert stats.anchor_rows == 1
        assert stats.rows_inserted == 7
        assert stats.table_stats["products"] == 2
        assert_closed(sqlite_connection)

    def test_chain_is_planned_root_first(self, engine):
        run = engine.new_run()
        edge = ForeignKeyEdge("employees", "manager_id", "employees", "id")

        plan = engine.plan_parents(run, edge, 3)

        assert [entry.key_values for entry in plan] == [(1,), (2,), (3,)]
        assert plan.tables() == ["employees"]

    def test_four_level_chain_in_one_transaction(self, engine, ids, sqlite_connection):
        stats = engine.sample("employees#id=4")

        assert ids("employees") == [1, 2, 3, 4]
        # one transaction for the manager chain, one for the anchor
        assert stats.transactions_committed == 2
        assert_closed(sqlite_connection)

    def test_null_foreign_key_is_skipped(self, engine, ids):
        engine.sample("orders#id=1003")

        assert ids("orders") == [1003]
        assert ids("customers") == [3]
        assert ids("shipping_address") == []

    def test_missing_parent_row_is_not_an_error(self, engine, ids, sqlite_connection):
        with sqlite_connection.engine.begin() as conn:
            conn.exec_driver_sql('INSERT INTO "shop".orders VALUES (1004, 2, 99, 1.0)')

        engine.sample("orders#id=1004")

        assert ids("orders") == [1004]
        assert ids("customers") == [2]
        assert ids("shipping_address") == []


class TestReverseResolution:
    """Rows referencing the anchor are copied with their own parents."""

    def test_customer_pulls_every_child(self, engine, ids, fetch, sqlite_connection):
        stats = engine.sample("customers#id=1")

        assert ids("customers") == [1]
        assert ids("shipping_address") == [10, 11]
        assert ids("orders") == [1000, 1001]
        assert ids("reviews") == [1]
        assert ids("products") == [100, 101]
        assert len(fetch("sample", "order_items")) == 2
        assert sorted(r["note"] for r in fetch("sample", "audit_log")) == ["login", "signup"]
        assert stats.degraded_tables == ["audit_log"]
        assert stats.child_queries_skipped > 0
        assert_closed(sqlite_connection)

    def test_self_referencing_children(self, engine, ids, sqlite_connection):
        engine.sample("employees#id=1")

        assert ids("employees") == [1, 2, 3, 4, 5]
        assert_closed(sqlite_connection)

    def test_no_children(self, engine, ids):
        engine.sample("products#id=102")

        assert ids("products") == [102]
        assert ids("order_items") == []


class TestCycles:

    def test_person_team_cycle_terminates(self, engine, ids, sqlite_connection):
        stats = engine.sample("person#id=2")

        assert ids("person") == [1, 2]
        assert ids("team") == [1]
        assert stats.visited_hits > 0
        assert_closed(sqlite_connection)

    def test_cycle_from_the_other_side(self, engine, ids, sqlite_connection):
        engine.sample("team#id=1")

        assert ids("team") == [1]
        assert ids("person") == [1, 2]
        assert_closed(sqlite_connection)


class TestAnchors:

    def test_empty_anchor_set_is_a_noop(self, engine, ids):
        stats = engine.sample("orders#id=9999")

        assert stats.anchor_rows == 0
        assert stats.rows_inserted == 0
        assert stats.transactions_committed == 0
        assert ids("orders") == []

    def test_multiple_anchor_values(self, engine, ids, sqlite_connection):
        stats = engine.sample("orders#id=1000,1002")

        assert stats.anchor_rows == 2
        assert ids("orders") == [1000, 1002]
        assert ids("customers") == [1, 2]
        assert ids("shipping_address") == [10, 12]
        assert_closed(sqlite_connection)

    def test_random_anchor(self, engine, ids, sqlite_connection):
        stats = engine.sample(AnchorSpec("customers", RandomSelection(limit=2)))

        assert stats.anchor_rows == 2
        assert len(ids("customers")) == 2
        assert_closed(sqlite_connection)


class TestIdempotence:

    def test_second_run_inserts_nothing(self, engine, ids, fetch):
        first = engine.sample("customers#id=1")
        second = engine.sample("customers#id=1")

        assert first.rows_inserted > 0
        assert second.rows_inserted == 0
        assert ids("orders") == [1000, 1001]
        assert len(fetch("sample", "audit_log")) == 2

    def test_overlapping_runs_share_rows(self, engine, ids):
        engine.sample("orders#id=1000")
        stats = engine.sample("orders#id=1001")

        assert ids("orders") == [1000, 1001]
        assert ids("customers") == [1]
        assert stats.table_stats.get("customers", 0) == 0


class TestFailures:

    def test_depth_limit(self, sqlite_connection, sample_schema, ids):
        engine = SamplingEngine(sqlite_connection, "shop", sample_schema, max_depth=2)

        with pytest.raises(DepthLimitExceeded, match="exceeds max_depth=2"):
            engine.sample("employees#id=4")
        assert ids("employees") == []

    def test_depth_limit_not_reached(self, sqlite_connection, sample_schema, ids):
        engine = SamplingEngine(sqlite_connection, "shop", sample_schema, max_depth=3)
        engine.sample("employees#id=4")
        assert ids("employees") == [1, 2, 3, 4]

    def test_cancelled_before_start(self, engine, ids):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(SamplingCancelled):
            engine.sample("orders#id=1000", token)
        assert ids("orders") == []

    def test_cancelled_mid_run_keeps_committed_batches(self, engine, ids):
        token = CancellationToken()
        execute = engine._execute

        def execute_then_cancel(run, plan):
            execute(run, plan)
            token.cancel("stopped by operator")

        with patch.object(engine, "_execute", side_effect=execute_then_cancel):
            with pytest.raises(SamplingCancelled, match="stopped by operator"):
                engine.sample("orders#id=1000", token)

        assert ids("orders") == []
        assert len(ids("customers")) + len(ids("shipping_address")) > 0

    def test_failed_statement_rolls_back_batch(self, engine, ids):
        insert_statement = engine.insert_statement

        def fail_on_vp(entry):
            if entry.key_values == (2,):
                return "INSERT INTO missing_table SELECT :k0"
            return insert_statement(entry)

        with patch.object(engine, "insert_statement", side_effect=fail_on_vp):
            with pytest.raises(TransactionError, match="batch rolled back") as exc_info:
                engine.sample("employees#id=4")

        assert exc_info.value.table == "employees"
        assert "missing_table" in exc_info.value.statement
        # employee 1 was in the same batch
        assert ids("employees") == []

    def test_lost_connection_at_begin(self, engine, ids, sqlite_connection):
        lost = OperationalError("BEGIN", {}, Exception("server has gone away"))

        with patch.object(sqlite_connection.engine, "begin", side_effect=lost):
            with pytest.raises(TransactionError, match="server has gone away") as exc_info:
                engine.sample("employees#id=4")

        assert exc_info.value.table == "employees"
        assert exc_info.value.statement is None
        assert ids("employees") == []

    def test_fetch_failure(self, engine):
        with pytest.raises(QueryError, match="Could not fetch rows of nope"):
            engine._fetch_rows(engine.new_run(), "nope", "id", 1)

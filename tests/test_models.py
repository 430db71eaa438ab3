"""Tests for data models."""

import pytest
from pydantic import ValidationError

from dbsampler.core.models import (
    AnchorSpec, ExplicitSelection, ForeignKeyEdge, InsertPlan, OrphanedReference,
    PlannedInsert, PrimaryKeyInfo, RandomSelection, SamplingConfig, SamplingStats,
    VerificationReport, VisitedKey, freeze_value
)


class TestForeignKeyEdge:
    """Test ForeignKeyEdge data class."""

    def test_edge_str(self):
        edge = ForeignKeyEdge("orders", "customer_id", "customers", "id")
        assert str(edge) == "orders.customer_id -> customers.id"
        assert not edge.is_self_reference

    def test_self_reference(self):
        edge = ForeignKeyEdge("employees", "manager_id", "employees", "id")
        assert edge.is_self_reference


class TestPrimaryKeyInfo:

    def test_has_key(self):
        assert PrimaryKeyInfo("orders", ("id",)).has_key
        assert not PrimaryKeyInfo("audit_log").has_key


class TestAnchorSpec:
    """Test AnchorSpec and its selections."""

    def test_random_default(self):
        spec = AnchorSpec("customers")
        assert spec.is_random
        assert spec.selection == RandomSelection(limit=5)
        assert str(spec) == "customers (random 5)"

    def test_explicit(self):
        spec = AnchorSpec("orders", ExplicitSelection("id", ("1000", "1001")))
        assert not spec.is_random
        assert str(spec) == "orders#id=1000,1001"


class TestVisitedKey:

    def test_binary_values_compare_equal(self):
        assert VisitedKey.of("t", "c", bytearray(b"ab")) == VisitedKey.of("t", "c", b"ab")

    def test_freeze_value(self):
        assert freeze_value([1, [2, 3]]) == (1, (2, 3))
        assert freeze_value(memoryview(b"x")) == b"x"
        assert freeze_value({"b": 1, "a": 2}) == (("a", 2), ("b", 1))
        assert freeze_value(42) == 42


class TestInsertPlan:
    """Test InsertPlan ordering and dedup."""

    def test_params(self):
        entry = PlannedInsert("order_items", ("order_id", "product_id"), (1000, 100))
        assert entry.params == {"k0": 1000, "k1": 100}

    def test_dedup_keeps_first_position(self):
        plan = InsertPlan()
        assert plan.add(PlannedInsert("customers", ("id",), (1,)))
        assert plan.add(PlannedInsert("orders", ("id",), (1000,)))
        assert not plan.add(PlannedInsert("customers", ("id",), (1,)))

        assert len(plan) == 2
        assert [e.table for e in plan] == ["customers", "orders"]
        assert plan.tables() == ["customers", "orders"]

    def test_empty_plan_is_falsy(self):
        assert not InsertPlan()


class TestStats:

    def test_record_insert(self):
        stats = SamplingStats()
        stats.record_insert("orders", 2)
        stats.record_insert("orders", 1)
        stats.record_insert("customers", 0)
        assert stats.rows_inserted == 3
        assert stats.table_stats == {"orders": 3, "customers": 0}

    def test_verification_report(self):
        report = VerificationReport(sample_schema="sample")
        assert report.is_consistent
        edge = ForeignKeyEdge("orders", "customer_id", "customers", "id")
        report.violations.append(OrphanedReference(edge, 2))
        assert not report.is_consistent
        assert str(report.violations[0]) == "orders.customer_id -> customers.id: 2 orphaned rows"


class TestSamplingConfig:
    """Test SamplingConfig validation."""

    def test_default_config(self):
        config = SamplingConfig(source_schema="shop", anchor="orders")
        assert config.sample_schema.startswith("sample_db_")
        assert config.sample_schema[len("sample_db_"):].isdigit()
        assert config.no_sample == []
        assert config.max_depth is None
        assert config.timeout_seconds is None
        assert config.verify is True

    def test_no_sample_from_comma_string(self):
        config = SamplingConfig(source_schema="shop", anchor="orders", no_sample="countries, products,")
        assert config.no_sample == ["countries", "products"]

    def test_no_sample_from_list(self):
        config = SamplingConfig(source_schema="shop", anchor="orders", no_sample=["countries"])
        assert config.no_sample == ["countries"]

    def test_same_schema_rejected(self):
        with pytest.raises(ValidationError, match="must differ"):
            SamplingConfig(source_schema="shop", sample_schema="shop", anchor="orders")

    def test_max_depth_positive(self):
        with pytest.raises(ValidationError, match="at least 1"):
            SamplingConfig(source_schema="shop", anchor="orders", max_depth=0)

"""Tests for keyspaces, replication and metadata catalogs."""

import asyncio
import logging

import pytest

from dakota.catalog import LegacySchemaCatalog, SystemSchemaCatalog, get_catalog, strip_reversed
from dakota.config import EnsureExists
from dakota.errors import AlterError, CreateError, DropError, InvalidArgument, ProbeError
from dakota.keyspace import Keyspace
from dakota.reconcile import ReconcileState
from dakota.replication import (
    check_replication,
    replication_differs,
    replication_to_string,
    strategy_name,
)

from conftest import FakeExecutor, probe_responder

SIMPLE_3 = {"class": "SimpleStrategy", "replication_factor": 3}

LIVE_ROW = {
    "keyspace_name": "dakota_test",
    "durable_writes": True,
    "replication": {
        "class": "org.apache.cassandra.locator.SimpleStrategy",
        "replication_factor": "1",
    },
}


def failing(query, params):
    raise RuntimeError("unavailable")


class TestReplication:
    """Tests for replication helpers."""

    def test_strategy_name(self):
        """Test the locator package is stripped."""
        assert strategy_name("org.apache.cassandra.locator.SimpleStrategy") == "SimpleStrategy"
        assert strategy_name("SimpleStrategy") == "SimpleStrategy"

    def test_check_replication(self):
        """Test the class is required and must be known."""
        assert check_replication(SIMPLE_3) == SIMPLE_3
        with pytest.raises(InvalidArgument):
            check_replication({"replication_factor": 3})
        with pytest.raises(InvalidArgument):
            check_replication({"class": "MadeUpStrategy"})
        with pytest.raises(InvalidArgument):
            check_replication("SimpleStrategy")

    def test_to_string(self):
        """Test strings are quoted and numbers are bare."""
        assert replication_to_string(SIMPLE_3) == (
            "{'class': 'SimpleStrategy', 'replication_factor': 3}"
        )
        assert replication_to_string({"class": "NetworkTopologyStrategy", "dc'1": 2}) == (
            "{'class': 'NetworkTopologyStrategy', 'dc''1': 2}"
        )

    def test_differs(self):
        """Test comparison against string-valued live options."""
        assert not replication_differs(SIMPLE_3, "org.apache.cassandra.locator.SimpleStrategy",
                                       {"replication_factor": "3"})
        assert replication_differs(SIMPLE_3, "SimpleStrategy", {"replication_factor": "1"})
        assert replication_differs(SIMPLE_3, "NetworkTopologyStrategy", {"replication_factor": "3"})
        assert replication_differs(SIMPLE_3, "SimpleStrategy", {})

    def test_extra_live_options_ignored(self):
        """Test options the desired mapping does not mention."""
        desired = {"class": "NetworkTopologyStrategy", "dc1": 3}
        assert not replication_differs(desired, "NetworkTopologyStrategy", {"dc1": "3", "dc2": "2"})


class TestCatalogs:
    """Tests for metadata catalogs."""

    def test_get_catalog(self):
        """Test catalogs are found by layout name."""
        assert isinstance(get_catalog("system_schema"), SystemSchemaCatalog)
        assert isinstance(get_catalog("legacy"), LegacySchemaCatalog)
        with pytest.raises(InvalidArgument):
            get_catalog("nope")

    def test_system_schema_keyspace_snapshot(self):
        """Test replication is split into strategy and options."""
        snapshot = SystemSchemaCatalog().keyspace_snapshot("dakota_test", [LIVE_ROW])
        assert snapshot.strategy == "org.apache.cassandra.locator.SimpleStrategy"
        assert snapshot.options == {"replication_factor": "1"}
        assert snapshot.durable_writes is True
        assert SystemSchemaCatalog().keyspace_snapshot("dakota_test", []) is None

    def test_legacy_keyspace_snapshot(self):
        """Test JSON strategy options are decoded."""
        catalog = LegacySchemaCatalog()
        row = {
            "keyspace_name": "dakota_test",
            "durable_writes": False,
            "strategy_class": "org.apache.cassandra.locator.SimpleStrategy",
            "strategy_options": '{"replication_factor":"2"}',
        }
        snapshot = catalog.keyspace_snapshot("dakota_test", [row])
        assert snapshot.options == {"replication_factor": "2"}
        assert snapshot.durable_writes is False

        row["strategy_options"] = "{not json"
        with pytest.raises(ProbeError):
            catalog.keyspace_snapshot("dakota_test", [row])

    def test_probes_bind_names(self):
        """Test probes bind keyspace and entity names."""
        probe = SystemSchemaCatalog().table_probe("dakota_test", "users")
        assert "system_schema.columns" in probe.query
        assert probe.params == ["dakota_test", "users"]
        probe = LegacySchemaCatalog().type_probe("dakota_test", "address")
        assert probe.query.endswith("ALLOW FILTERING")
        assert probe.params == ["dakota_test", "address"]

    def test_type_snapshot(self):
        """Test field names and types are zipped."""
        snapshot = SystemSchemaCatalog().type_snapshot(
            "address", [{"field_names": ["street", "zip"], "field_types": ["text", "int"]}]
        )
        assert snapshot.fields == {"street": "text", "zip": "int"}
        with pytest.raises(ProbeError):
            SystemSchemaCatalog().type_snapshot(
                "address", [{"field_names": ["street"], "field_types": []}]
            )

    def test_system_schema_same_type(self, registry):
        """Test live types compare canonically."""
        catalog = SystemSchemaCatalog()
        desired = registry.parse_type("map<text,inet>")
        assert catalog.same_type(registry, desired, "map<text, inet>", "ks")
        assert not catalog.same_type(registry, desired, "map<text, text>", "ks")
        unknown = registry.parse_type("int")
        assert not catalog.same_type(registry, unknown, "frozen<other_type>", "ks")

    def test_system_schema_frozen_tuples(self, registry):
        """Test live frozen tuples match tuples declared without frozen."""
        catalog = SystemSchemaCatalog()
        desired = registry.parse_type("map<text, tuple<int, text>>")
        assert catalog.same_type(registry, desired, "map<text, frozen<tuple<int, text>>>", "ks")
        assert catalog.same_type(
            registry, registry.parse_type("frozen<tuple<int>>"), "frozen<tuple<int>>", "ks"
        )
        assert not catalog.same_type(registry, desired, "map<text, frozen<tuple<int>>>", "ks")

    def test_legacy_same_type(self, registry):
        """Test legacy validators, including reversed clustering columns."""
        catalog = LegacySchemaCatalog()
        desired = registry.parse_type("text")
        utf8 = "org.apache.cassandra.db.marshal.UTF8Type"
        assert catalog.same_type(registry, desired, utf8, "ks")
        reversed_ = f"org.apache.cassandra.db.marshal.ReversedType({utf8})"
        assert strip_reversed(reversed_) == utf8
        assert catalog.same_type(registry, desired, reversed_, "ks")


class TestKeyspaceStatements:
    """Tests for keyspace DDL."""

    def setup_method(self):
        self.keyspace = Keyspace(FakeExecutor(), "dakota_test", SIMPLE_3)

    def test_create(self):
        """Test CREATE KEYSPACE."""
        statement = self.keyspace.create_statement(if_not_exists=True)
        assert statement.query == (
            "CREATE KEYSPACE IF NOT EXISTS dakota_test WITH REPLICATION = "
            "{'class': 'SimpleStrategy', 'replication_factor': 3} AND DURABLE_WRITES = true"
        )
        assert statement.params == []

    def test_drop(self):
        """Test DROP KEYSPACE."""
        assert self.keyspace.drop_statement().query == "DROP KEYSPACE dakota_test"
        assert self.keyspace.drop_statement(if_exists=True).query == "DROP KEYSPACE IF EXISTS dakota_test"

    def test_alter(self):
        """Test ALTER KEYSPACE with one or both settings."""
        assert self.keyspace.alter_statement(durable_writes=False).query == (
            "ALTER KEYSPACE dakota_test WITH DURABLE_WRITES = false"
        )
        assert self.keyspace.alter_statement(SIMPLE_3, True).query == (
            "ALTER KEYSPACE dakota_test WITH REPLICATION = "
            "{'class': 'SimpleStrategy', 'replication_factor': 3} AND DURABLE_WRITES = true"
        )
        with pytest.raises(InvalidArgument):
            self.keyspace.alter_statement()

    def test_bad_arguments(self):
        """Test names, replication and durable writes are validated."""
        with pytest.raises(InvalidArgument):
            Keyspace(FakeExecutor(), "", SIMPLE_3)
        with pytest.raises(InvalidArgument):
            Keyspace(FakeExecutor(), "ks", {"class": "Nope"})
        with pytest.raises(InvalidArgument):
            Keyspace(FakeExecutor(), "ks", SIMPLE_3, durable_writes="yes")

    def test_operation_errors(self):
        """Test failing DDL is wrapped in schema errors."""
        keyspace = Keyspace(FakeExecutor(failing), "dakota_test", SIMPLE_3)
        with pytest.raises(DropError, match="unavailable"):
            asyncio.run(keyspace.drop())
        with pytest.raises(AlterError):
            asyncio.run(keyspace.alter(durable_writes=False))
        with pytest.raises(CreateError):
            asyncio.run(keyspace.create())


    def test_statements_without_executor(self):
        """Test statements build without an executor but cannot run."""
        keyspace = Keyspace(None, "dakota_test", SIMPLE_3)
        assert keyspace.drop_statement().query == "DROP KEYSPACE dakota_test"
        with pytest.raises(InvalidArgument, match="no executor"):
            asyncio.run(keyspace.drop())


class TestKeyspaceEnsureExists:
    """Tests for keyspace reconciliation."""

    def test_skipped(self):
        """Test run=False issues nothing."""
        executor = FakeExecutor()
        keyspace = Keyspace(executor, "dakota_test", SIMPLE_3, ensure_exists=EnsureExists(run=False))
        result = asyncio.run(keyspace.ensure_exists())
        assert result.state is ReconcileState.UNCHECKED
        assert executor.calls == []

    def test_absent_creates(self, caplog):
        """Test a missing keyspace is created."""
        executor = FakeExecutor()
        keyspace = Keyspace(executor, "dakota_test", SIMPLE_3)
        with caplog.at_level(logging.WARNING, logger="dakota.reconcile"):
            result = asyncio.run(keyspace.ensure_exists())
        assert result.found is ReconcileState.ABSENT
        assert result.state is ReconcileState.RECONCILED
        assert [s.query for s in result.statements] == [keyspace.create_statement(True).query]
        assert executor.queries[0].startswith("SELECT keyspace_name, durable_writes, replication")
        assert executor.queries[1].startswith("CREATE KEYSPACE IF NOT EXISTS dakota_test")
        assert "Creating keyspace: dakota_test" in caplog.text

    def test_matching(self):
        """Test a matching keyspace needs nothing."""
        executor = FakeExecutor(probe_responder([LIVE_ROW]))
        keyspace = Keyspace(executor, "dakota_test", {"class": "SimpleStrategy", "replication_factor": 1})
        result = asyncio.run(keyspace.ensure_exists())
        assert result.found is ReconcileState.PRESENT_MATCHING
        assert result.statements == []
        assert len(executor.calls) == 1

    def test_mismatch_with_alter(self):
        """Test alter=True issues one ALTER with both settings."""
        executor = FakeExecutor(probe_responder([LIVE_ROW]))
        keyspace = Keyspace(executor, "dakota_test", SIMPLE_3, durable_writes=False)
        result = asyncio.run(keyspace.ensure_exists(EnsureExists(alter=True)))
        assert result.found is ReconcileState.PRESENT_MISMATCHED
        assert result.diff.replication and result.diff.durable_writes
        assert [s.query for s in result.statements] == [
            "ALTER KEYSPACE dakota_test WITH REPLICATION = "
            "{'class': 'SimpleStrategy', 'replication_factor': 3} AND DURABLE_WRITES = false"
        ]
        assert executor.queries[-1] == result.statements[0].query

    def test_mismatch_without_alter_warns(self, caplog):
        """Test mismatches are only logged when alter is off."""
        executor = FakeExecutor(probe_responder([LIVE_ROW]))
        keyspace = Keyspace(executor, "dakota_test", SIMPLE_3, durable_writes=False)
        with caplog.at_level(logging.WARNING, logger="dakota.reconcile"):
            result = asyncio.run(keyspace.ensure_exists())
        assert result.statements == []
        assert len(executor.calls) == 1
        assert [w.message for w in result.warnings] == [
            "different replication strategy found for existing keyspace",
            "different durable writes value found for existing keyspace",
        ]
        assert "different replication strategy" in caplog.text
        assert "different durable writes" in caplog.text

    def test_probe_failure(self):
        """Test a failing probe raises ProbeError."""
        keyspace = Keyspace(FakeExecutor(failing), "dakota_test", SIMPLE_3)
        with pytest.raises(ProbeError, match="unavailable"):
            asyncio.run(keyspace.ensure_exists())

    def test_create_failure(self):
        """Test a failing create raises CreateError."""

        def respond(query, params):
            if query.startswith("CREATE"):
                raise RuntimeError("no quorum")
            return []

        keyspace = Keyspace(FakeExecutor(respond), "dakota_test", SIMPLE_3)
        with pytest.raises(CreateError, match="no quorum"):
            asyncio.run(keyspace.ensure_exists())

    def test_legacy_catalog(self):
        """Test reconciliation against legacy metadata."""
        row = {
            "keyspace_name": "dakota_test",
            "durable_writes": True,
            "strategy_class": "org.apache.cassandra.locator.SimpleStrategy",
            "strategy_options": '{"replication_factor":"3"}',
        }
        executor = FakeExecutor(probe_responder([row]))
        keyspace = Keyspace(executor, "dakota_test", SIMPLE_3, catalog=LegacySchemaCatalog())
        result = asyncio.run(keyspace.ensure_exists())
        assert result.found is ReconcileState.PRESENT_MATCHING
        assert executor.queries[0].startswith("SELECT * FROM system.schema_keyspaces")

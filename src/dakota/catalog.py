"""Reading live schema metadata.

Two metadata layouts are understood:

- ``system_schema`` (Cassandra 3.0 and later, ScyllaDB): replication is a
  text map including the class, column types are CQL type strings.
- ``legacy`` (``system.schema_*``, Cassandra 2.x): the strategy class and a
  JSON-encoded options map are separate columns, column types are marshal
  class "validators".

A catalog only builds probe statements and turns probe rows into
snapshots. Running the probes is left to the caller.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from dakota.errors import DakotaError, InvalidArgument, ProbeError
from dakota.statement import Statement
from dakota.types import TypeDefinition, TypeRegistry, freeze_tuples

logger = logging.getLogger(__name__)

_REVERSED = re.compile(r"^org\.apache\.cassandra\.db\.marshal\.ReversedType\((.*)\)$")


@dataclass
class KeyspaceSnapshot:
    """Live replication settings of a keyspace."""

    name: str
    strategy: str
    options: dict[str, str] = field(default_factory=dict)
    durable_writes: bool = True


@dataclass
class FieldSnapshot:
    """Live field (or column) types of a table or user-defined type."""

    name: str
    fields: dict[str, str] = field(default_factory=dict)


class Catalog(ABC):
    """Probe statements and snapshot conversion for one metadata layout."""

    name: str

    @abstractmethod
    def keyspace_probe(self, keyspace: str) -> Statement: ...

    @abstractmethod
    def table_probe(self, keyspace: str, table: str) -> Statement: ...

    @abstractmethod
    def type_probe(self, keyspace: str, type_name: str) -> Statement: ...

    @abstractmethod
    def keyspace_snapshot(self, name: str, rows: list[Mapping[str, Any]]) -> KeyspaceSnapshot | None:
        """Return the snapshot, or None when the keyspace does not exist."""

    @abstractmethod
    def table_snapshot(self, name: str, rows: list[Mapping[str, Any]]) -> FieldSnapshot | None:
        """Return the snapshot, or None when the table does not exist."""

    def type_snapshot(self, name: str, rows: list[Mapping[str, Any]]) -> FieldSnapshot | None:
        """Return the snapshot, or None when the type does not exist."""
        if not rows:
            return None
        row = rows[0]
        names = row.get("field_names") or []
        types = row.get("field_types") or []
        if len(names) != len(types):
            raise ProbeError(f"Type '{name}' metadata has mismatched field names and types")
        return FieldSnapshot(name=name, fields=dict(zip(names, types)))

    @abstractmethod
    def same_type(
        self, registry: TypeRegistry, desired: TypeDefinition, live: str, keyspace: str
    ) -> bool:
        """Return whether a live type string denotes the desired type."""


class SystemSchemaCatalog(Catalog):
    """Metadata in the ``system_schema`` keyspace."""

    name = "system_schema"

    def keyspace_probe(self, keyspace: str) -> Statement:
        return Statement(
            "SELECT keyspace_name, durable_writes, replication "
            "FROM system_schema.keyspaces WHERE keyspace_name = ?",
            [keyspace],
        )

    def table_probe(self, keyspace: str, table: str) -> Statement:
        return Statement(
            "SELECT column_name, type FROM system_schema.columns "
            "WHERE keyspace_name = ? AND table_name = ?",
            [keyspace, table],
        )

    def type_probe(self, keyspace: str, type_name: str) -> Statement:
        return Statement(
            "SELECT type_name, field_names, field_types FROM system_schema.types "
            "WHERE keyspace_name = ? AND type_name = ?",
            [keyspace, type_name],
        )

    def keyspace_snapshot(self, name: str, rows: list[Mapping[str, Any]]) -> KeyspaceSnapshot | None:
        if not rows:
            return None
        row = rows[0]
        replication = dict(row.get("replication") or {})
        strategy = replication.pop("class", "")
        return KeyspaceSnapshot(
            name=name,
            strategy=strategy,
            options={str(k): str(v) for k, v in replication.items()},
            durable_writes=bool(row.get("durable_writes", True)),
        )

    def table_snapshot(self, name: str, rows: list[Mapping[str, Any]]) -> FieldSnapshot | None:
        if not rows:
            return None
        return FieldSnapshot(name=name, fields={r["column_name"]: r["type"] for r in rows})

    def same_type(
        self, registry: TypeRegistry, desired: TypeDefinition, live: str, keyspace: str
    ) -> bool:
        expected = freeze_tuples(desired).cql
        try:
            return freeze_tuples(registry.parse_type(live)).cql == expected
        except DakotaError:
            # A live type naming a user type the registry does not know
            logger.debug("Could not parse live type %r, comparing as text", live)
            return _squash(live) == _squash(expected)


class LegacySchemaCatalog(Catalog):
    """Metadata in the ``system.schema_*`` tables."""

    name = "legacy"

    def keyspace_probe(self, keyspace: str) -> Statement:
        return Statement(
            "SELECT * FROM system.schema_keyspaces WHERE keyspace_name = ? ALLOW FILTERING",
            [keyspace],
        )

    def table_probe(self, keyspace: str, table: str) -> Statement:
        return Statement(
            "SELECT column_name, validator FROM system.schema_columns "
            "WHERE keyspace_name = ? AND columnfamily_name = ? ALLOW FILTERING",
            [keyspace, table],
        )

    def type_probe(self, keyspace: str, type_name: str) -> Statement:
        return Statement(
            "SELECT type_name, field_names, field_types FROM system.schema_usertypes "
            "WHERE keyspace_name = ? AND type_name = ? ALLOW FILTERING",
            [keyspace, type_name],
        )

    def keyspace_snapshot(self, name: str, rows: list[Mapping[str, Any]]) -> KeyspaceSnapshot | None:
        if not rows:
            return None
        row = rows[0]
        raw_options = row.get("strategy_options") or "{}"
        try:
            options = json.loads(raw_options)
        except ValueError as err:
            raise ProbeError(f"Keyspace '{name}' has unreadable strategy options") from err
        return KeyspaceSnapshot(
            name=name,
            strategy=row.get("strategy_class", ""),
            options={str(k): str(v) for k, v in options.items()},
            durable_writes=bool(row.get("durable_writes", True)),
        )

    def table_snapshot(self, name: str, rows: list[Mapping[str, Any]]) -> FieldSnapshot | None:
        if not rows:
            return None
        return FieldSnapshot(name=name, fields={r["column_name"]: r["validator"] for r in rows})

    def same_type(
        self, registry: TypeRegistry, desired: TypeDefinition, live: str, keyspace: str
    ) -> bool:
        return registry.db_validator(desired, keyspace) == strip_reversed(live)


def strip_reversed(validator: str) -> str:
    """Drop the ReversedType wrapper of a descending clustering column."""
    match = _REVERSED.match(validator)
    return match.group(1) if match else validator


def _squash(type_string: str) -> str:
    return re.sub(r"\s+", "", type_string).lower()


CATALOGS: dict[str, type[Catalog]] = {
    SystemSchemaCatalog.name: SystemSchemaCatalog,
    LegacySchemaCatalog.name: LegacySchemaCatalog,
}


def get_catalog(name: str) -> Catalog:
    """Return the catalog for a metadata layout name."""
    catalog = CATALOGS.get(name)
    if catalog is None:
        raise InvalidArgument(f"Unknown metadata layout '{name}', expected one of {sorted(CATALOGS)}")
    return catalog()

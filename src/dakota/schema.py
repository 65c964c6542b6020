"""Declarative model schemas."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from dakota.errors import DakotaError, InvalidArgument
from dakota.types import (
    TypeDefinition,
    TypeRegistry,
    UserDefinedTypeDefinition,
    referenced_user_types,
)

CALLBACK_NAMES = (
    "after_new",
    "before_create",
    "after_create",
    "before_validate",
    "after_validate",
    "before_save",
    "after_save",
    "before_delete",
    "after_delete",
)

DEFINITION_KEYS = frozenset({
    "columns",
    "key",
    "clustering_order",
    "callbacks",
    "methods",
    "static_methods",
    "options",
})

COLUMN_KEYS = frozenset({"type", "alias", "set", "get"})


@dataclass
class Column:
    """A declared column.

    ``alias`` names the generated helper methods (``append_<alias>`` and so
    on) when the column name does not read well in them. ``setter`` and
    ``getter`` transform values on assignment and on access.
    """

    name: str
    type: str
    type_def: TypeDefinition
    alias: str | None = None
    setter: Callable[[Any], Any] | None = None
    getter: Callable[[Any], Any] | None = None

    @property
    def helper_stem(self) -> str:
        return self.alias or self.name

    @property
    def is_counter(self) -> bool:
        return self.type_def.resolve_base_type().is_counter

    @property
    def is_collection(self) -> bool:
        return self.type_def.is_collection

    @property
    def is_frozen(self) -> bool:
        return self.type_def.is_frozen


@dataclass
class Schema:
    """Columns, primary key and behaviour of one model."""

    registry: TypeRegistry
    columns: dict[str, Column]
    partition_key: list[str]
    clustering_key: list[str] = field(default_factory=list)
    clustering_order: dict[str, str] = field(default_factory=dict)
    callbacks: dict[str, list[Callable[..., Any]]] = field(default_factory=dict)
    methods: dict[str, Callable[..., Any]] = field(default_factory=dict)
    static_methods: dict[str, Callable[..., Any]] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_definition(cls, registry: TypeRegistry, definition: Mapping[str, Any]) -> Schema:
        """Build a schema from a definition mapping.

        Args:
            registry: Registry used to parse the column types.
            definition: Mapping with ``columns`` and ``key`` and optionally
                ``clustering_order``, ``callbacks``, ``methods``,
                ``static_methods`` and ``options``.

        Raises:
            InvalidArgument: If the definition is malformed.
        """
        if not isinstance(definition, Mapping):
            raise InvalidArgument("Schema definition should be a mapping")
        unknown = set(definition) - DEFINITION_KEYS
        if unknown:
            raise InvalidArgument(f"Unknown schema definition keys: {sorted(unknown)}")

        raw_columns = definition.get("columns")
        if not isinstance(raw_columns, Mapping) or not raw_columns:
            raise InvalidArgument("Schema definition should declare at least one column")
        columns = {
            name: _parse_column(registry, name, spec) for name, spec in raw_columns.items()
        }

        partition_key, clustering_key = _parse_key(definition.get("key"))

        clustering_order = {}
        for name, direction in (definition.get("clustering_order") or {}).items():
            direction = str(direction).lower()
            if direction not in ("asc", "desc"):
                raise InvalidArgument(f"Clustering order for '{name}' should be asc or desc")
            clustering_order[name] = direction

        callbacks: dict[str, list[Callable[..., Any]]] = {}
        for name, hooks in (definition.get("callbacks") or {}).items():
            if name not in CALLBACK_NAMES:
                raise InvalidArgument(f"Unknown callback '{name}'")
            if callable(hooks):
                hooks = [hooks]
            if not all(callable(h) for h in hooks):
                raise InvalidArgument(f"Callbacks for '{name}' should be callables")
            callbacks[name] = list(hooks)

        schema = cls(
            registry=registry,
            columns=columns,
            partition_key=partition_key,
            clustering_key=clustering_key,
            clustering_order=clustering_order,
            callbacks=callbacks,
            methods=dict(definition.get("methods") or {}),
            static_methods=dict(definition.get("static_methods") or {}),
            options=dict(definition.get("options") or {}),
        )
        schema._check()
        return schema

    def _check(self) -> None:
        """Enforce the key and counter invariants."""
        for name in self.primary_key:
            column = self.columns.get(name)
            if column is None:
                raise InvalidArgument(f"Key column '{name}' is not a declared column")
            if column.is_counter:
                raise InvalidArgument(f"Key column '{name}' cannot be a counter")
            if column.type_def.resolve_base_type().is_collection and not column.is_frozen:
                raise InvalidArgument(f"Key column '{name}' cannot be a non-frozen collection")
        if len(set(self.primary_key)) != len(self.primary_key):
            raise InvalidArgument("Key columns should be unique")
        for name in self.clustering_order:
            if name not in self.clustering_key:
                raise InvalidArgument(f"Clustering order names non-clustering column '{name}'")

        counters = [c.name for c in self.columns.values() if c.is_counter]
        if counters:
            others = [
                c.name
                for c in self.columns.values()
                if not c.is_counter and c.name not in self.primary_key
            ]
            if others:
                raise InvalidArgument(
                    f"Tables with counter columns {counters} cannot have "
                    f"non-counter columns outside the key: {others}"
                )

    @property
    def primary_key(self) -> list[str]:
        return self.partition_key + self.clustering_key

    @property
    def is_counter_table(self) -> bool:
        return any(c.is_counter for c in self.columns.values())

    def column(self, name: str) -> Column | None:
        """Get a column by name."""
        return self.columns.get(name)

    def column_names(self) -> list[str]:
        """Column names in declaration order."""
        return list(self.columns)

    def is_key(self, name: str) -> bool:
        return name in self.partition_key or name in self.clustering_key

    def user_defined_types(self) -> list[UserDefinedTypeDefinition]:
        """User-defined types the columns refer to, dependencies first."""
        ordered: list[UserDefinedTypeDefinition] = []
        for column in self.columns.values():
            for udt in referenced_user_types(column.type_def):
                if all(u.name != udt.name for u in ordered):
                    ordered.append(udt)
        return ordered


def _parse_column(registry: TypeRegistry, name: str, spec: Any) -> Column:
    if isinstance(spec, str):
        spec = {"type": spec}
    if not isinstance(spec, Mapping) or "type" not in spec:
        raise InvalidArgument(f"Column '{name}' should be a type string or a mapping with a type")
    unknown = set(spec) - COLUMN_KEYS
    if unknown:
        raise InvalidArgument(f"Unknown keys for column '{name}': {sorted(unknown)}")
    for hook in ("set", "get"):
        if spec.get(hook) is not None and not callable(spec[hook]):
            raise InvalidArgument(f"Column '{name}' {hook} should be callable")
    try:
        type_def = registry.parse_type(spec["type"])
    except DakotaError as err:
        raise InvalidArgument(f"Column '{name}' has an invalid type: {err}") from err
    return Column(
        name=name,
        type=spec["type"],
        type_def=type_def,
        alias=spec.get("alias"),
        setter=spec.get("set"),
        getter=spec.get("get"),
    )


def _parse_key(key: Any) -> tuple[list[str], list[str]]:
    """Split a key declaration into partition and clustering columns.

    ``"id"`` and ``["id"]`` declare a single partition column;
    ``[["id", "name"], "loc"]`` declares a composite partition key
    followed by clustering columns.
    """
    if isinstance(key, str):
        return [key], []
    if not isinstance(key, (list, tuple)) or not key:
        raise InvalidArgument("Schema definition should declare a key")
    head, *rest = key
    partition = [head] if isinstance(head, str) else list(head)
    if not partition or not all(isinstance(k, str) for k in partition + rest):
        raise InvalidArgument("Key columns should be named by strings")
    return partition, list(rest)

"""Operation descriptors and their compilation into CQL statements.

A Query is built up with chained calls and compiled with ``build()``::

    Query(schema, "users", "app")
        .action("select")
        .where({"name": "Dakota", "age": {"gte": 5}})
        .order_by("loc", "desc")
        .limit(99)
        .allow_filtering()
        .build()

Compiling never changes the query, so one descriptor can be built any
number of times. Values always travel as bound parameters; only
identifiers and keywords become statement text.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from dakota.changes import COUNTER_KINDS, ChangeTracker, Mutation, MutationKind, counter_mutation
from dakota.errors import BuildError, InvalidArgument
from dakota.schema import Column, Schema
from dakota.statement import Clause, Statement, concat, join, qualified_name, quote_identifier
from dakota.types import (
    ListTypeDefinition,
    MapTypeDefinition,
    SetTypeDefinition,
    UserDefinedTypeDefinition,
)

ACTIONS = ("select", "insert", "update", "delete")

WHERE_OPERATORS = {
    "eq": "=",
    "in": "IN",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "contains": "CONTAINS",
    "contains_key": "CONTAINS KEY",
}

CONDITION_OPERATORS = {
    "eq": "=",
    "ne": "!=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "in": "IN",
}

UPDATE_OPERATORS = frozenset({
    "set", "append", "prepend", "add", "remove",
    "increment", "decrement", "inject", "remove_key",
})

ORDER_DIRECTIONS = ("asc", "desc")

_MISSING = object()


@dataclass(frozen=True)
class Predicate:
    """A ``column <operator> value`` test used in WHERE and IF clauses."""

    column: str
    operator: str
    value: Any


class Query:
    """An incrementally built select/insert/update/delete operation."""

    def __init__(self, schema: Schema, table: str, keyspace: str | None = None) -> None:
        self.schema = schema
        self.table = table
        self.keyspace = keyspace
        self._action: str | None = None
        self._selected: list[str] = []
        self._count = False
        self._predicates: list[Predicate] = []
        self._conditions: list[Predicate] = []
        self._order: dict[str, str] = {}
        self._limit: int | None = None
        self._allow_filtering = False
        self._ttl: int | None = None
        self._timestamp: int | None = None
        self._if_exists = False
        self._if_not_exists = False
        self._values: dict[str, Any] = {}
        self._mutations: list[tuple[str, Mutation]] = []

    def clone(self) -> Query:
        """Return an independent copy of this query."""
        other = copy.copy(self)
        other._selected = list(self._selected)
        other._predicates = list(self._predicates)
        other._conditions = list(self._conditions)
        other._order = dict(self._order)
        other._values = dict(self._values)
        other._mutations = list(self._mutations)
        return other

    # ------------------------------------------------------------------
    # Building the descriptor
    # ------------------------------------------------------------------

    def action(self, name: str) -> Query:
        """Set the action: select, insert, update or delete."""
        if not isinstance(name, str):
            raise InvalidArgument("Action should be a string")
        self._action = name.lower()
        return self

    def select(self, *columns: str | Iterable[str]) -> Query:
        """Choose the columns to read (select) or clear (delete)."""
        for column in columns:
            if isinstance(column, str):
                self._selected.append(column)
            else:
                self._selected.extend(column)
        return self

    def count(self, flag: bool = True) -> Query:
        """Select ``COUNT(*)`` instead of columns."""
        self._count = bool(flag)
        return self

    def where(self, column: str | Mapping[str, Any], value: Any = _MISSING) -> Query:
        """Add predicates.

        Accepts ``where("name", "Dakota")`` or a mapping. A mapping value
        made of operator names (``{"gte": 5}``) adds one predicate per
        operator; anything else is an equality test.
        """
        for name, operator, operand in self._expand(column, value, WHERE_OPERATORS):
            if operator == "in" and not isinstance(operand, (list, tuple)):
                raise InvalidArgument(f"IN predicate on '{name}' should be a list")
            self._predicates.append(Predicate(name, operator, operand))
        return self

    def if_(self, column: str | Mapping[str, Any], value: Any = _MISSING) -> Query:
        """Add lightweight-transaction conditions (``IF col op ?``)."""
        for name, operator, operand in self._expand(column, value, CONDITION_OPERATORS):
            self._conditions.append(Predicate(name, operator, operand))
        return self

    def if_exists(self, flag: bool = True) -> Query:
        self._if_exists = bool(flag)
        return self

    def if_not_exists(self, flag: bool = True) -> Query:
        self._if_not_exists = bool(flag)
        return self

    def order_by(self, column: str | Mapping[str, str], direction: str = "asc") -> Query:
        """Order by a clustering column; a later call for the same column wins."""
        items = column.items() if isinstance(column, Mapping) else [(column, direction)]
        for name, dir_ in items:
            dir_ = str(dir_).lower()
            if dir_ not in ORDER_DIRECTIONS:
                raise InvalidArgument(f"Order direction should be asc or desc, got '{dir_}'")
            self._order[name] = dir_
        return self

    def limit(self, n: int) -> Query:
        if not isinstance(n, int) or isinstance(n, bool) or n <= 0:
            raise InvalidArgument("Limit should be a positive integer")
        self._limit = n
        return self

    def allow_filtering(self, flag: bool = True) -> Query:
        self._allow_filtering = bool(flag)
        return self

    def using(self, name: str | Mapping[str, int], value: Any = _MISSING) -> Query:
        """Set ``ttl`` and/or ``timestamp`` directives."""
        items = name.items() if isinstance(name, Mapping) else [(name, value)]
        for key, val in items:
            if key == "ttl":
                self.ttl(val)
            elif key == "timestamp":
                self.timestamp(val)
            else:
                raise InvalidArgument(f"Unknown USING directive '{key}'")
        return self

    def ttl(self, seconds: int) -> Query:
        self._ttl = _non_negative_int(seconds, "TTL")
        return self

    def timestamp(self, value: int) -> Query:
        self._timestamp = _non_negative_int(value, "Timestamp")
        return self

    def insert(self, column: str | Mapping[str, Any], value: Any = _MISSING) -> Query:
        """Set column values for an insert."""
        if isinstance(column, Mapping):
            self._values.update(column)
        elif value is _MISSING:
            raise InvalidArgument(f"No value given for '{column}'")
        else:
            self._values[column] = value
        return self

    def update(self, column: str | Mapping[str, Any], value: Any = _MISSING) -> Query:
        """Add update mutations.

        A plain value replaces the column. A mapping of operator names
        (``{"append": "x", "prepend": "y"}``) adds one mutation per
        operator, in mapping order. ``inject`` takes a mapping of list index
        or map key to value; ``remove_key`` a key or a list of keys.

        On map and user-defined type columns a mapping is read as operators
        only when every key is an operator name, so a map value such as
        ``{"set": 1}`` must be wrapped: ``{"set": {"set": 1}}``.
        """
        if isinstance(column, Mapping):
            for name, operand in column.items():
                self.update(name, operand)
            return self
        if value is _MISSING:
            raise InvalidArgument(f"No value given for '{column}'")

        col = self.schema.column(column)
        if not _is_operator_mapping(value, UPDATE_OPERATORS, col):
            self._mutations.append((column, Mutation(MutationKind.SET, value)))
            return self

        for operator, operand in value.items():
            for mutation in _mutations_for(col, operator, operand):
                self._mutations.append((column, mutation))
        return self

    def apply_changes(self, tracker: ChangeTracker) -> Query:
        """Add every pending mutation of a change tracker."""
        for attr, mutation in tracker:
            self._mutations.append((attr, mutation))
        return self

    def _expand(
        self, column: str | Mapping[str, Any], value: Any, operators: Mapping[str, str]
    ) -> list[tuple[str, str, Any]]:
        """Turn ``where``/``if_`` arguments into (column, operator, value) triples."""
        if isinstance(column, Mapping):
            pairs = list(column.items())
        elif value is _MISSING:
            raise InvalidArgument(f"No value given for '{column}'")
        else:
            pairs = [(column, value)]

        triples = []
        for name, operand in pairs:
            if _is_operator_mapping(operand, operators, self.schema.column(name)):
                for operator, op_value in operand.items():
                    if operator not in operators:
                        raise InvalidArgument(f"Unknown operator '{operator}' for '{name}'")
                    triples.append((name, operator, op_value))
            else:
                triples.append((name, "eq", operand))
        return triples

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------

    def build(self) -> Statement:
        """Compile the query into a statement.

        Raises:
            BuildError: If the operation cannot be expressed.
        """
        if self._action is None:
            raise BuildError("No action set")
        builders = {
            "select": self._build_select,
            "insert": self._build_insert,
            "update": self._build_update,
            "delete": self._build_delete,
        }
        builder = builders.get(self._action)
        if builder is None:
            raise BuildError(f"Unrecognized action '{self._action}'")
        return builder()

    @property
    def _target(self) -> str:
        return qualified_name(self.table, self.keyspace)

    def _build_select(self) -> Statement:
        self._forbid(
            ttl=True, timestamp=True, if_exists=True, if_not_exists=True,
            conditions=True, values=True, mutations=True,
        )
        self._check_columns(self._selected, "Selected")
        self._check_columns([p.column for p in self._predicates], "Predicate")
        for name in self._order:
            if name not in self.schema.clustering_key:
                raise BuildError(f"Cannot order by '{name}', it is not a clustering column")

        if self._count:
            projection = "COUNT(*)"
        else:
            columns = self._selected or self.schema.column_names()
            projection = ", ".join(quote_identifier(c) for c in columns)

        return concat([
            Clause(f"SELECT {projection} FROM {self._target}"),
            build_where(self.schema, self._predicates),
            build_order(self._order),
            build_limit(self._limit),
            Clause("ALLOW FILTERING") if self._allow_filtering else Clause(""),
        ])

    def _build_insert(self) -> Statement:
        self._forbid(
            if_exists=True, conditions=True, predicates=True, mutations=True, reads=True,
        )
        if self.schema.is_counter_table:
            raise BuildError("Counter tables can only be written with update")
        if not self._values:
            raise BuildError("Insert has no values")
        self._check_columns(self._values, "Insert")
        for name in self.schema.primary_key:
            if self._values.get(name) is None:
                raise BuildError(f"Insert is missing a value for key column '{name}'")

        columns = [c for c in self.schema.column_names() if self._values.get(c) is not None]
        placeholders = ", ".join("?" for _ in columns)
        names = ", ".join(quote_identifier(c) for c in columns)

        return concat([
            Clause(
                f"INSERT INTO {self._target} ({names}) VALUES ({placeholders})",
                [self._values[c] for c in columns],
            ),
            Clause("IF NOT EXISTS") if self._if_not_exists else Clause(""),
            build_using(self._ttl, self._timestamp),
        ])

    def _build_update(self) -> Statement:
        self._forbid(if_not_exists=True, values=True, reads=True)
        self._check_lwt()
        if not self._mutations:
            raise BuildError("Update has no mutations")
        self._check_columns([attr for attr, _ in self._mutations], "Update")
        for attr, mutation in self._mutations:
            if self.schema.is_key(attr):
                raise BuildError(f"Cannot update key column '{attr}'")
            if self._ttl is not None and mutation.kind in COUNTER_KINDS:
                raise BuildError("Counter updates cannot use a TTL")
        self._check_key_predicates(require_clustering=True)

        return concat([
            Clause(f"UPDATE {self._target}"),
            build_using(self._ttl, self._timestamp),
            build_assignments(self.schema, self._mutations),
            build_where(self.schema, self._predicates),
            build_conditions(self._conditions, self._if_exists),
        ])

    def _build_delete(self) -> Statement:
        self._forbid(ttl=True, if_not_exists=True, values=True, mutations=True, reads=True)
        self._check_lwt()
        self._check_columns(self._selected, "Deleted")
        for name in self._selected:
            if self.schema.is_key(name):
                raise BuildError(f"Cannot delete key column '{name}'")
        self._check_key_predicates(require_clustering=False)

        columns = ", ".join(quote_identifier(c) for c in self._selected)
        head = f"DELETE {columns} FROM {self._target}" if columns else f"DELETE FROM {self._target}"
        return concat([
            Clause(head),
            build_using(None, self._timestamp),
            build_where(self.schema, self._predicates),
            build_conditions(self._conditions, self._if_exists),
        ])

    def _forbid(
        self,
        ttl: bool = False,
        timestamp: bool = False,
        if_exists: bool = False,
        if_not_exists: bool = False,
        conditions: bool = False,
        predicates: bool = False,
        values: bool = False,
        mutations: bool = False,
        reads: bool = False,
    ) -> None:
        """Raise BuildError for directives the current action does not take."""
        action = self._action
        checks = [
            (ttl, self._ttl is not None, "USING TTL"),
            (timestamp, self._timestamp is not None, "USING TIMESTAMP"),
            (if_exists, self._if_exists, "IF EXISTS"),
            (if_not_exists, self._if_not_exists, "IF NOT EXISTS"),
            (conditions, bool(self._conditions), "IF conditions"),
            (predicates, bool(self._predicates), "WHERE predicates"),
            (values, bool(self._values), "insert values"),
            (mutations, bool(self._mutations), "update mutations"),
            (reads, bool(self._order), "ORDER BY"),
            (reads, self._limit is not None, "LIMIT"),
            (reads, self._allow_filtering, "ALLOW FILTERING"),
            (reads, self._count, "COUNT"),
        ]
        for forbidden, present, label in checks:
            if forbidden and present:
                raise BuildError(f"{action} does not support {label}")

    def _check_lwt(self) -> None:
        if self._if_exists and self._conditions:
            raise BuildError("IF EXISTS and IF conditions are mutually exclusive")
        self._check_columns([c.column for c in self._conditions], "Condition")

    def _check_columns(self, names: Iterable[str], what: str) -> None:
        for name in names:
            if self.schema.column(name) is None:
                raise BuildError(f"{what} column '{name}' is not declared in the schema")

    def _check_key_predicates(self, require_clustering: bool) -> None:
        """Require equality on the partition key (and clustering key when asked)."""
        self._check_columns([p.column for p in self._predicates], "Predicate")
        for predicate in self._predicates:
            if not self.schema.is_key(predicate.column):
                raise BuildError(
                    f"{self._action} cannot filter on non-key column '{predicate.column}'"
                )
        restricted = {p.column for p in self._predicates if p.operator in ("eq", "in")}
        required = list(self.schema.partition_key)
        if require_clustering:
            required += self.schema.clustering_key
        for name in required:
            if name not in restricted:
                raise BuildError(f"{self._action} is missing a value for key column '{name}'")


# ----------------------------------------------------------------------
# Clause builders
# ----------------------------------------------------------------------


def _declaration_sorted(schema: Schema, items: list[Any], column_of: Any) -> list[Any]:
    """Sort by schema declaration order, keeping call order within a column."""
    order = {name: i for i, name in enumerate(schema.column_names())}
    return sorted(items, key=lambda item: order.get(column_of(item), len(order)))


def build_where(schema: Schema, predicates: list[Predicate]) -> Clause:
    if not predicates:
        return Clause("")
    parts = [
        Clause(f"{quote_identifier(p.column)} {WHERE_OPERATORS[p.operator]} ?", [p.value])
        for p in _declaration_sorted(schema, predicates, lambda p: p.column)
    ]
    clause = join(parts, " AND ")
    return Clause(f"WHERE {clause.text}", clause.params)


def build_conditions(conditions: list[Predicate], if_exists: bool) -> Clause:
    if if_exists:
        return Clause("IF EXISTS")
    if not conditions:
        return Clause("")
    parts = [
        Clause(f"{quote_identifier(c.column)} {CONDITION_OPERATORS[c.operator]} ?", [c.value])
        for c in conditions
    ]
    clause = join(parts, " AND ")
    return Clause(f"IF {clause.text}", clause.params)


def build_using(ttl: int | None, timestamp: int | None) -> Clause:
    parts = []
    if ttl is not None:
        parts.append(Clause("TTL ?", [ttl]))
    if timestamp is not None:
        parts.append(Clause("TIMESTAMP ?", [timestamp]))
    if not parts:
        return Clause("")
    clause = join(parts, " AND ")
    return Clause(f"USING {clause.text}", clause.params)


def build_order(order: Mapping[str, str]) -> Clause:
    if not order:
        return Clause("")
    columns = ", ".join(f"{quote_identifier(c)} {d.upper()}" for c, d in order.items())
    return Clause(f"ORDER BY {columns}")


def build_limit(limit: int | None) -> Clause:
    if limit is None:
        return Clause("")
    return Clause(f"LIMIT {int(limit)}")


def build_assignments(schema: Schema, mutations: list[tuple[str, Mutation]]) -> Clause:
    ordered = _declaration_sorted(schema, mutations, lambda m: m[0])
    parts = []
    for attr, mutation in ordered:
        column = schema.column(attr)
        assert column is not None
        parts.append(build_assignment(column, mutation))
    clause = join(parts, ", ")
    return Clause(f"SET {clause.text}", clause.params)


def build_assignment(column: Column, mutation: Mutation) -> Clause:
    """Emit the SET fragment for one mutation of one column."""
    name = quote_identifier(column.name)
    base = column.type_def.resolve_base_type()
    kind = mutation.kind

    if kind is MutationKind.SET:
        if column.is_counter:
            raise BuildError(f"Counter column '{column.name}' can only be incremented or decremented")
        return Clause(f"{name} = ?", [mutation.value])

    if kind in COUNTER_KINDS:
        if not column.is_counter:
            raise BuildError(f"Cannot {kind.value} non-counter column '{column.name}'")
        delta = mutation.delta
        sign = "+" if delta >= 0 else "-"
        return Clause(f"{name} = {name} {sign} ?", [abs(delta)])

    if column.is_frozen:
        raise BuildError(f"Cannot {kind.value} frozen column '{column.name}', set it instead")

    is_list = isinstance(base, ListTypeDefinition)
    is_set = isinstance(base, SetTypeDefinition)
    is_map = isinstance(base, MapTypeDefinition)

    if kind is MutationKind.APPEND and is_list:
        return Clause(f"{name} = {name} + ?", [list(mutation.value)])
    if kind is MutationKind.PREPEND and is_list:
        return Clause(f"{name} = ? + {name}", [list(mutation.value)])
    if kind is MutationKind.ADD and is_set and not mutation.merges_map:
        return Clause(f"{name} = {name} + ?", [_set_param(mutation.value)])
    if kind is MutationKind.ADD and is_map and mutation.merges_map:
        return Clause(f"{name} = {name} + ?", [dict(mutation.value)])
    if kind is MutationKind.REMOVE and is_list:
        return Clause(f"{name} = {name} - ?", [list(mutation.value)])
    if kind is MutationKind.REMOVE and (is_set or is_map):
        return Clause(f"{name} = {name} - ?", [_set_param(mutation.value)])
    if kind is MutationKind.REMOVE_KEY and is_map:
        return Clause(f"{name} = {name} - ?", [_set_param(mutation.value)])
    if kind is MutationKind.INJECT_AT_INDEX and is_list:
        return Clause(f"{name}[?] = ?", [mutation.key, mutation.value])
    if kind is MutationKind.INJECT_AT_KEY and is_map:
        return Clause(f"{name}[?] = ?", [mutation.key, mutation.value])

    raise BuildError(f"Cannot {kind.value} column '{column.name}' of type {column.type_def.cql}")


def _set_param(elements: Iterable[Any]) -> set[Any] | list[Any]:
    """A set literal parameter, or a list when elements are unhashable."""
    elements = list(elements)
    try:
        return set(elements)
    except TypeError:
        return elements


def _mutations_for(column: Column | None, operator: str, operand: Any) -> list[Mutation]:
    """Mutations for one ``update({col: {operator: operand}})`` entry."""
    if operator not in UPDATE_OPERATORS:
        raise InvalidArgument(f"Unknown update operator '{operator}'")
    if operator == "set":
        return [Mutation(MutationKind.SET, operand)]
    if operator in ("increment", "decrement"):
        if not isinstance(operand, int) or isinstance(operand, bool):
            raise InvalidArgument(f"{operator} should be an integer")
        return [counter_mutation(operand if operator == "increment" else -operand)]
    if operator == "inject":
        if not isinstance(operand, Mapping):
            raise InvalidArgument("inject should be a mapping of index or key to value")
        is_list = column is not None and isinstance(
            column.type_def.resolve_base_type(), ListTypeDefinition
        )
        kind = MutationKind.INJECT_AT_INDEX if is_list else MutationKind.INJECT_AT_KEY
        return [Mutation(kind, value, key) for key, value in operand.items()]
    if operator == "remove_key":
        keys = operand if isinstance(operand, (list, tuple, set)) else [operand]
        return [Mutation(MutationKind.REMOVE_KEY, tuple(keys))]
    if operator == "add" and isinstance(operand, Mapping):
        return [Mutation(MutationKind.ADD, dict(operand))]
    kind = MutationKind(operator)
    return [Mutation(kind, (operand,))]


def _is_operator_mapping(value: Any, operators: Iterable[str], column: Column | None) -> bool:
    """Decide whether a mapping value is a set of operators or a plain value.

    For map and user-defined type columns a mapping is only read as
    operators when every key is an operator name.
    """
    if not isinstance(value, Mapping) or not value:
        return False
    keys = set(value)
    ops = set(operators)
    if column is not None and isinstance(
        column.type_def.resolve_base_type(), (MapTypeDefinition, UserDefinedTypeDefinition)
    ):
        return keys <= ops
    return True


def _non_negative_int(value: Any, what: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise InvalidArgument(f"{what} should be a non-negative integer")
    return value

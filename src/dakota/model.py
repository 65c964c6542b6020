"""Models: record classes generated from a schema.

``Dakota.model()`` builds a Model subclass per schema. Each declared
column becomes a property, and collection and counter columns get typed
helper methods named after the column (or its alias)::

    User = dakota.model("User", {
        "columns": {"id": "uuid", "name": "text", "thngs": {"type": "list<text>", "alias": "thing"}},
        "key": ["id"],
    })
    user = User.new({"id": uuid.uuid4(), "name": "Dakota"})
    user.append_thing("dog")
    await user.save()

Every change is recorded on the instance's ChangeTracker, so saving a
loaded (or upserted) row issues an UPDATE with exactly the recorded
mutations and never reads the row first.
"""

from __future__ import annotations

import inspect
import logging
import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, AsyncIterator

from dakota.changes import ChangeTracker, Mutation, MutationKind, fold_into
from dakota.errors import InvalidArgument
from dakota.executor import execute, stream
from dakota.query import Query
from dakota.schema import Column, Schema
from dakota.types import ListTypeDefinition, MapTypeDefinition, SetTypeDefinition

if TYPE_CHECKING:
    from dakota.client import Dakota
    from dakota.table import Table

logger = logging.getLogger(__name__)

_MISSING = object()


class Model:
    """Base class of generated models."""

    model_name: str = "Model"
    _client: Dakota
    _schema: Schema
    _table: Table

    def __init__(self, values: Mapping[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = {}
        self._changes = ChangeTracker()
        self._is_new = True
        self._reset_directives()
        if values:
            self.set(values)

    def _reset_directives(self) -> None:
        self._ttl: int | None = None
        self._timestamp: int | None = None
        self._if_exists = False
        self._if_not_exists = False
        self._conditions: dict[str, Any] = {}

    def __repr__(self) -> str:
        keys = ", ".join(f"{k}={self._values.get(k)!r}" for k in self._schema.primary_key)
        return f"<{self.model_name} {keys}>"

    @property
    def is_new(self) -> bool:
        """True until the instance has been saved or was loaded from a row."""
        return self._is_new

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    def _column(self, name: str) -> Column:
        column = self._schema.column(name)
        if column is None:
            raise InvalidArgument(f"{self.model_name} has no column '{name}'")
        return column

    def get(self, column: str) -> Any:
        col = self._column(column)
        value = self._values.get(column)
        if col.getter is not None:
            return col.getter(value)
        return value

    def set(self, column: str | Mapping[str, Any], value: Any = _MISSING) -> Model:
        """Replace column values.

        Accepts ``set("name", "Dakota")`` or a mapping of column values.
        """
        if isinstance(column, Mapping):
            for name, v in column.items():
                self.set(name, v)
            return self
        if value is _MISSING:
            raise InvalidArgument(f"No value given for '{column}'")

        col = self._column(column)
        if col.is_counter:
            raise InvalidArgument(f"Counter column '{column}' can only be incremented or decremented")
        if col.setter is not None:
            value = col.setter(value)
        if not self._is_new and self._schema.is_key(column) and self._values.get(column) != value:
            raise InvalidArgument(f"Cannot change key column '{column}' of a saved row")
        self._schema.registry.validate(col.type_def, value, column)

        self._values[column] = value
        if not self._schema.is_key(column):
            self._changes.record_set(column, value)
        return self

    def _apply(self, column: str, mutation: Mutation) -> None:
        """Keep the local value in step with a recorded mutation."""
        current = self._values.get(column)
        if mutation.kind is MutationKind.INJECT_AT_INDEX and current is None and not self._is_new:
            # Blind update of a list we have not read
            return
        try:
            self._values[column] = fold_into(current, mutation)
        except IndexError as err:
            raise InvalidArgument(f"{column}: {err}") from err

    def _collection(self, column: str, kinds: tuple[type, ...], operation: str) -> Column:
        col = self._column(column)
        if col.is_frozen:
            raise InvalidArgument(f"Cannot {operation} frozen column '{column}', set it instead")
        if not isinstance(col.type_def.resolve_base_type(), kinds):
            raise InvalidArgument(f"Cannot {operation} column '{column}' of type {col.type_def.cql}")
        return col

    def _check(self, type_def: Any, value: Any, path: str) -> None:
        self._schema.registry.validate(type_def, value, path)

    def append(self, column: str, value: Any) -> Model:
        col = self._collection(column, (ListTypeDefinition,), "append to")
        self._check(col.type_def.resolve_base_type().element_type, value, column)
        self._changes.record_append(column, value)
        self._apply(column, Mutation(MutationKind.APPEND, (value,)))
        return self

    def prepend(self, column: str, value: Any) -> Model:
        col = self._collection(column, (ListTypeDefinition,), "prepend to")
        self._check(col.type_def.resolve_base_type().element_type, value, column)
        self._changes.record_prepend(column, value)
        self._apply(column, Mutation(MutationKind.PREPEND, (value,)))
        return self

    def add(self, column: str, value: Any) -> Model:
        """Add an element to a set, or merge a mapping into a map."""
        col = self._collection(column, (SetTypeDefinition, MapTypeDefinition), "add to")
        base = col.type_def.resolve_base_type()
        if isinstance(base, MapTypeDefinition):
            if not isinstance(value, Mapping):
                raise InvalidArgument(f"Adding to map column '{column}' takes a mapping")
            self._check(base, value, column)
            mutation = Mutation(MutationKind.ADD, dict(value))
        else:
            self._check(base.element_type, value, column)
            mutation = Mutation(MutationKind.ADD, (value,))
        self._changes.record_add(column, value)
        self._apply(column, mutation)
        return self

    def remove(self, column: str, value: Any) -> Model:
        """Remove an element from a list or set, or a key from a map."""
        col = self._collection(
            column, (ListTypeDefinition, SetTypeDefinition, MapTypeDefinition), "remove from"
        )
        base = col.type_def.resolve_base_type()
        self._check(base.key_type if isinstance(base, MapTypeDefinition) else base.element_type, value, column)
        self._changes.record_remove(column, value)
        self._apply(column, Mutation(MutationKind.REMOVE, (value,)))
        return self

    def remove_key(self, column: str, key: Any) -> Model:
        col = self._collection(column, (MapTypeDefinition,), "remove a key from")
        self._check(col.type_def.resolve_base_type().key_type, key, column)
        self._changes.record_remove_key(column, key)
        self._apply(column, Mutation(MutationKind.REMOVE_KEY, (key,)))
        return self

    def inject(self, column: str, key: Any, value: Any) -> Model:
        """Assign a list slot by index or a map entry by key.

        Injecting None nulls the slot; it does not remove it.
        """
        col = self._collection(column, (ListTypeDefinition, MapTypeDefinition), "inject into")
        base = col.type_def.resolve_base_type()
        if isinstance(base, ListTypeDefinition):
            if not isinstance(key, int) or isinstance(key, bool):
                raise InvalidArgument(f"List index for '{column}' should be an integer")
            self._check(base.element_type, value, column)
            # Local value first, so an out-of-range index is rejected before recording
            self._apply(column, Mutation(MutationKind.INJECT_AT_INDEX, value, key))
            self._changes.record_inject_at_index(column, key, value)
        else:
            self._check(base.key_type, key, column)
            self._check(base.value_type, value, column)
            self._apply(column, Mutation(MutationKind.INJECT_AT_KEY, value, key))
            self._changes.record_inject_at_key(column, key, value)
        return self

    def increment(self, column: str, delta: int = 1) -> Model:
        col = self._column(column)
        if not col.is_counter:
            raise InvalidArgument(f"Cannot increment non-counter column '{column}'")
        if not isinstance(delta, int) or isinstance(delta, bool):
            raise InvalidArgument("Counter delta should be an integer")
        self._changes.record_increment(column, delta)
        self._values[column] = (self._values.get(column) or 0) + delta
        return self

    def decrement(self, column: str, delta: int = 1) -> Model:
        if not isinstance(delta, int) or isinstance(delta, bool):
            raise InvalidArgument("Counter delta should be an integer")
        return self.increment(column, -delta)

    def changes(self) -> dict[str, list[Mutation]]:
        """Pending mutations keyed by column."""
        return self._changes.pending()

    def validate(self) -> None:
        """Check every column value against its type.

        Raises:
            TypeValidationError: On the first non-conforming value.
        """
        for name, column in self._schema.columns.items():
            self._schema.registry.validate(column.type_def, self._values.get(name), name)

    # ------------------------------------------------------------------
    # Directives for the next save or delete
    # ------------------------------------------------------------------

    def ttl(self, seconds: int) -> Model:
        self._ttl = seconds
        return self

    def timestamp(self, value: int) -> Model:
        self._timestamp = value
        return self

    def if_exists(self, flag: bool = True) -> Model:
        self._if_exists = flag
        return self

    def if_not_exists(self, flag: bool = True) -> Model:
        self._if_not_exists = flag
        return self

    def if_(self, conditions: Mapping[str, Any]) -> Model:
        self._conditions.update(conditions)
        return self

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _callbacks(self, name: str) -> None:
        """Run a callback list in order; the first exception stops the rest."""
        for hook in self._schema.callbacks.get(name, []):
            result = hook(self)
            if inspect.isawaitable(result):
                await result

    def _key_query(self, action: str) -> Query:
        query = self.query().action(action)
        for name in self._schema.primary_key:
            if self._values.get(name) is not None:
                query.where(name, self._values[name])
        if self._timestamp is not None:
            query.timestamp(self._timestamp)
        if self._if_exists:
            query.if_exists()
        if self._conditions:
            query.if_(self._conditions)
        return query

    def _insert_query(self) -> Query:
        if self._if_exists or self._conditions:
            raise InvalidArgument("A new instance cannot be saved with IF EXISTS or IF conditions")
        query = self.query().action("insert")
        query.insert({k: v for k, v in self._values.items() if v is not None})
        if self._ttl is not None:
            query.ttl(self._ttl)
        if self._timestamp is not None:
            query.timestamp(self._timestamp)
        if self._if_not_exists:
            query.if_not_exists()
        return query

    def _update_query(self) -> Query:
        query = self._key_query("update").apply_changes(self._changes)
        if self._ttl is not None:
            query.ttl(self._ttl)
        if self._if_not_exists:
            query.if_not_exists()
        return query

    async def save(self) -> Model:
        """Insert a new instance, or update a saved one with its pending mutations.

        Pending mutations and directives are cleared whether or not the
        save succeeds.
        """
        try:
            await self._callbacks("before_validate")
            self.validate()
            await self._callbacks("after_validate")
            await self._callbacks("before_save")

            creating = self._is_new and not self._schema.is_counter_table
            if creating:
                await self._callbacks("before_create")
                statement = self._insert_query().build()
            elif self._changes:
                statement = self._update_query().build()
            else:
                logger.debug("Nothing to save for %r", self)
                statement = None

            if statement is not None:
                await execute(self._client.executor, statement)
            self._is_new = False
            if creating:
                await self._callbacks("after_create")
            await self._callbacks("after_save")
        finally:
            self._changes.clear()
            self._reset_directives()
        return self

    async def delete(self) -> None:
        """Delete this row."""
        try:
            await self._callbacks("before_delete")
            await execute(self._client.executor, self._key_query("delete").build())
            await self._callbacks("after_delete")
        finally:
            self._reset_directives()

    # ------------------------------------------------------------------
    # Class API
    # ------------------------------------------------------------------

    @classmethod
    def query(cls) -> Query:
        """A fresh query on this model's table."""
        return Query(cls._schema, cls._table.name, cls._table.keyspace)

    @classmethod
    def new(cls, values: Mapping[str, Any] | None = None) -> Model:
        """Create an unsaved instance and run its after_new callbacks.

        after_new callbacks run synchronously and may not be coroutines.
        """
        instance = cls(values)
        for hook in cls._schema.callbacks.get("after_new", []):
            result = hook(instance)
            if inspect.isawaitable(result):
                if inspect.iscoroutine(result):
                    result.close()
                raise InvalidArgument("after_new callbacks cannot be asynchronous")
        return instance

    @classmethod
    async def create(cls, values: Mapping[str, Any] | None = None) -> Model:
        instance = cls.new(values)
        await instance.save()
        return instance

    @classmethod
    def upsert(cls, values: Mapping[str, Any]) -> Model:
        """An instance for a blind update of the row identified by ``values``' keys.

        Saving it issues an UPDATE of the given non-key values without
        reading the row.
        """
        instance = cls()
        instance._is_new = False
        for name, value in values.items():
            col = instance._column(name)
            if instance._schema.is_key(name):
                if col.setter is not None:
                    value = col.setter(value)
                instance._schema.registry.validate(col.type_def, value, name)
                instance._values[name] = value
            else:
                instance.set(name, value)
        return instance

    @classmethod
    def _from_row(cls, row: Mapping[str, Any]) -> Model:
        instance = cls()
        instance._is_new = False
        registry = cls._schema.registry
        for name, column in cls._schema.columns.items():
            if name in row:
                instance._values[name] = registry.parse_value(column.type_def, row[name])
        return instance

    @classmethod
    def where(cls, predicates: Mapping[str, Any] | None = None, **kwargs: Any) -> ModelQuery:
        query = cls.query().action("select")
        if predicates or kwargs:
            query.where({**(predicates or {}), **kwargs})
        return ModelQuery(cls, query)

    @classmethod
    async def find(cls, predicates: Mapping[str, Any] | None = None, **kwargs: Any) -> list[Model]:
        return await cls.where(predicates, **kwargs).all()

    @classmethod
    async def find_one(cls, predicates: Mapping[str, Any] | None = None, **kwargs: Any) -> Model | None:
        return await cls.where(predicates, **kwargs).first()

    @classmethod
    async def all(cls) -> list[Model]:
        return await cls.where().all()

    @classmethod
    async def first(cls) -> Model | None:
        return await cls.where().first()

    @classmethod
    async def count(cls, predicates: Mapping[str, Any] | None = None, **kwargs: Any) -> int:
        return await cls.where(predicates, **kwargs).count()

    @classmethod
    async def stream(
        cls, predicates: Mapping[str, Any] | None = None, **kwargs: Any
    ) -> AsyncIterator[Model]:
        async for instance in cls.where(predicates, **kwargs).stream():
            yield instance

    @classmethod
    async def delete_all(cls) -> None:
        """Truncate the model's table."""
        await cls._table.truncate()


class ModelQuery:
    """A select on a model's table whose rows come back as model instances."""

    def __init__(self, model: type[Model], query: Query) -> None:
        self.model = model
        self.query = query

    def where(self, predicates: Mapping[str, Any] | None = None, **kwargs: Any) -> ModelQuery:
        self.query.where({**(predicates or {}), **kwargs})
        return self

    def select(self, *columns: str) -> ModelQuery:
        self.query.select(*columns)
        return self

    def order_by(self, column: str | Mapping[str, str], direction: str = "asc") -> ModelQuery:
        self.query.order_by(column, direction)
        return self

    def limit(self, n: int) -> ModelQuery:
        self.query.limit(n)
        return self

    def allow_filtering(self, flag: bool = True) -> ModelQuery:
        self.query.allow_filtering(flag)
        return self

    async def all(self) -> list[Model]:
        rows = await execute(self.model._client.executor, self.query.build())
        return [self.model._from_row(row) for row in rows]

    async def first(self) -> Model | None:
        rows = await execute(self.model._client.executor, self.query.clone().limit(1).build())
        return self.model._from_row(rows[0]) if rows else None

    async def count(self) -> int:
        rows = await execute(self.model._client.executor, self.query.clone().count().build())
        if not rows:
            return 0
        row = rows[0]
        return int(row["count"] if "count" in row else next(iter(row.values())))

    async def stream(self) -> AsyncIterator[Model]:
        async for row in stream(self.model._client.executor, self.query.build()):
            yield self.model._from_row(row)

    async def delete(self) -> None:
        """Delete the rows matching this query's predicates."""
        query = self.query.clone().action("delete")
        await execute(self.model._client.executor, query.build())


# ----------------------------------------------------------------------
# Model class generation
# ----------------------------------------------------------------------


def default_table_name(model_name: str) -> str:
    """``User`` -> ``users``, ``UserEvent`` -> ``user_events``."""
    name = re.sub(r"(?<!^)(?=[A-Z])", "_", model_name).lower()
    return name if name.endswith("s") else name + "s"


def _column_property(name: str) -> property:
    def getter(self: Model) -> Any:
        return self.get(name)

    def setter(self: Model, value: Any) -> None:
        self.set(name, value)

    return property(getter, setter, doc=f"The '{name}' column.")


def _helper(method: str, column: str, stem: str) -> Any:
    def helper(self: Model, *args: Any) -> Model:
        return getattr(self, method)(column, *args)

    helper.__name__ = f"{method}_{stem}"
    helper.__doc__ = f"``{method}`` on the '{column}' column."
    return helper


def _helpers(column: Column) -> dict[str, Any]:
    """Typed helper methods for a collection or counter column."""
    if column.is_counter:
        methods = ["increment", "decrement"]
    elif column.is_frozen:
        methods = []
    else:
        base = column.type_def.resolve_base_type()
        if isinstance(base, ListTypeDefinition):
            methods = ["append", "prepend", "remove", "inject"]
        elif isinstance(base, SetTypeDefinition):
            methods = ["add", "remove"]
        elif isinstance(base, MapTypeDefinition):
            methods = ["inject", "remove"]
        else:
            methods = []
    stem = column.helper_stem
    return {f"{m}_{stem}": _helper(m, column.name, stem) for m in methods}


def build_model(client: Dakota, name: str, schema: Schema, table: Table) -> type[Model]:
    """Generate the Model subclass for a schema.

    Raises:
        InvalidArgument: If a column, helper or method name collides with
            another attribute of the model.
    """
    attrs: dict[str, Any] = {
        "model_name": name,
        "_client": client,
        "_schema": schema,
        "_table": table,
    }

    def reserve(attr: str) -> None:
        if attr in attrs or hasattr(Model, attr) or attr.startswith("_"):
            raise InvalidArgument(f"Model {name}: '{attr}' collides with another attribute")

    for column in schema.columns.values():
        reserve(column.name)
        attrs[column.name] = _column_property(column.name)
    for column in schema.columns.values():
        for helper_name, helper in _helpers(column).items():
            reserve(helper_name)
            attrs[helper_name] = helper
    for method_name, method in schema.methods.items():
        reserve(method_name)
        attrs[method_name] = method
    for method_name, method in schema.static_methods.items():
        reserve(method_name)
        attrs[method_name] = staticmethod(method)

    return type(name, (Model,), attrs)

"""The Dakota object: one executor, one keyspace, its types and models."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from dakota.catalog import get_catalog
from dakota.config import Options, configure_logging, snake_case
from dakota.errors import InvalidArgument
from dakota.executor import Executor
from dakota.keyspace import Keyspace
from dakota.model import Model, build_model, default_table_name
from dakota.reconcile import Reconciliation
from dakota.schema import Schema
from dakota.table import Table
from dakota.types import TypeRegistry
from dakota.user_defined_type import UserDefinedType

logger = logging.getLogger(__name__)

MODEL_OPTION_KEYS = frozenset({"ensure_exists", "table"})


class Dakota:
    """Binds an executor, options, type registry, keyspace and models.

    Args:
        executor: Executor every statement runs on.
        options: Options, or a mapping accepted by ``Options.from_mapping``.
            A keyspace section is required.
        user_defined_types: ``{type_name: {field: type_string}}``.
    """

    def __init__(
        self,
        executor: Executor,
        options: Options | Mapping[str, Any],
        user_defined_types: Mapping[str, Mapping[str, str]] | None = None,
    ) -> None:
        if not isinstance(options, Options):
            options = Options.from_mapping(options)
        if options.keyspace is None:
            raise InvalidArgument("Options should name a keyspace")
        configure_logging(options.logger)

        self.executor = executor
        self.options = options
        self.registry = TypeRegistry(user_defined_types)
        self.catalog = get_catalog(options.metadata)
        self.keyspace = Keyspace(
            executor,
            options.keyspace.name,
            options.keyspace.replication,
            options.keyspace.durable_writes,
            catalog=self.catalog,
            ensure_exists=options.keyspace.ensure_exists,
        )
        self._models: dict[str, type[Model]] = {}

    @property
    def keyspace_name(self) -> str:
        return self.keyspace.name

    def model(self, name: str, definition: Mapping[str, Any], table: str | None = None) -> type[Model]:
        """Define a model.

        Args:
            name: Model class name.
            definition: Schema definition (see ``Schema.from_definition``).
                ``options`` may carry ``ensure_exists`` overrides for the
                table and a ``table`` name.
            table: Table name; defaults to the options' ``table`` or to the
                pluralized snake_case model name.

        Returns:
            The generated Model subclass.
        """
        if name in self._models:
            raise InvalidArgument(f"Model '{name}' is already defined")
        schema = Schema.from_definition(self.registry, definition)
        model_options = {snake_case(k): v for k, v in schema.options.items()}
        unknown = set(model_options) - MODEL_OPTION_KEYS
        if unknown:
            raise InvalidArgument(f"Unknown options for model '{name}': {sorted(unknown)}")

        table_name = table or model_options.get("table") or default_table_name(name)
        entity = Table(
            self.executor,
            self.keyspace_name,
            table_name,
            schema,
            catalog=self.catalog,
            ensure_exists=self.options.table.merged(model_options.get("ensure_exists")),
        )
        model = build_model(self, name, schema, entity)
        self._models[name] = model
        logger.debug("Defined model %s on table %s", name, table_name)
        return model

    def get_model(self, name: str) -> type[Model]:
        model = self._models.get(name)
        if model is None:
            raise InvalidArgument(f"Model '{name}' is not defined")
        return model

    def models(self) -> list[type[Model]]:
        return list(self._models.values())

    def user_defined_type(self, name: str) -> UserDefinedType:
        """The schema entity of a registered user-defined type."""
        type_def = self.registry.get(name)
        if type_def is None or type_def not in self.registry.user_defined_types():
            raise InvalidArgument(f"'{name}' is not a registered user-defined type")
        return UserDefinedType(
            self.executor,
            self.keyspace_name,
            type_def,
            self.registry,
            catalog=self.catalog,
            ensure_exists=self.options.type,
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def ensure_keyspace(self) -> Reconciliation:
        return await self.keyspace.ensure_exists()

    async def ensure_model(self, model: type[Model] | str) -> list[Reconciliation]:
        """Reconcile a model's user-defined types, dependencies first, then its table.

        The first failure propagates and leaves the rest unreconciled.
        """
        if isinstance(model, str):
            model = self.get_model(model)
        results = []
        for type_def in model._schema.user_defined_types():
            results.append(await self.user_defined_type(type_def.name).ensure_exists())
        results.append(await model._table.ensure_exists())
        return results

    async def ensure_all(self) -> list[Reconciliation]:
        """Reconcile the keyspace and then every model."""
        results = [await self.ensure_keyspace()]
        for model in self.models():
            results.extend(await self.ensure_model(model))
        return results

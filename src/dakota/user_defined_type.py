"""User-defined types."""

from __future__ import annotations

import logging

from dakota.catalog import Catalog, FieldSnapshot
from dakota.config import EnsureExists
from dakota.errors import AlterError, CreateError, DropError, InvalidArgument
from dakota.executor import Executor, Row
from dakota.reconcile import FieldDiff, FieldedEntity, Reconciliation
from dakota.statement import Clause, Statement, concat, quote_identifier
from dakota.types import TypeDefinition, TypeRegistry, UserDefinedTypeDefinition

logger = logging.getLogger(__name__)


class UserDefinedType(FieldedEntity):
    """A user-defined type declared in the registry.

    The cluster cannot drop fields from a type, so extra fields and
    recreate-column requests are only reported.
    """

    entity = "type"

    def __init__(
        self,
        executor: Executor,
        keyspace: str,
        type_def: UserDefinedTypeDefinition,
        registry: TypeRegistry,
        catalog: Catalog | None = None,
        ensure_exists: EnsureExists | None = None,
    ) -> None:
        if not isinstance(type_def, UserDefinedTypeDefinition):
            raise InvalidArgument("Expected a user-defined type definition")
        super().__init__(executor, keyspace, type_def.name, registry, catalog, ensure_exists)
        self.type_def = type_def

    def desired_fields(self) -> dict[str, TypeDefinition]:
        return {f.name: f.type_def for f in self.type_def.fields}

    def _field_type(self, name: str, type_string: str | None = None) -> str:
        if type_string is not None:
            return self.registry.canonicalize(type_string)
        declared = self.type_def.get_field(name)
        if declared is None:
            raise InvalidArgument(f"Type '{self.name}' has no field '{name}'")
        return declared.type_def.cql

    def probe_statement(self) -> Statement:
        return self.catalog.type_probe(self.keyspace, self.name)

    def create_statement(self, if_not_exists: bool = False) -> Statement:
        fields = ", ".join(
            f"{quote_identifier(f.name)} {f.type_def.cql}" for f in self.type_def.fields
        )
        return concat([
            Clause("CREATE TYPE"),
            Clause("IF NOT EXISTS") if if_not_exists else Clause(""),
            Clause(f"{self.target} ({fields})"),
        ])

    def drop_statement(self, if_exists: bool = False) -> Statement:
        return concat([
            Clause("DROP TYPE"),
            Clause("IF EXISTS") if if_exists else Clause(""),
            Clause(self.target),
        ])

    def add_field_statement(self, name: str, type_string: str | None = None) -> Statement:
        field_type = self._field_type(name, type_string)
        return Statement(f"ALTER TYPE {self.target} ADD {quote_identifier(name)} {field_type}")

    def rename_field_statement(self, old: str, new: str) -> Statement:
        return Statement(
            f"ALTER TYPE {self.target} RENAME {quote_identifier(old)} TO {quote_identifier(new)}"
        )

    def alter_type_statement(self, name: str, type_string: str | None = None) -> Statement:
        field_type = self._field_type(name, type_string)
        return Statement(f"ALTER TYPE {self.target} ALTER {quote_identifier(name)} TYPE {field_type}")

    async def drop(self, if_exists: bool = False) -> list[Row]:
        return await self._run(
            self.drop_statement(if_exists), DropError, f"Drop type '{self.name}' failed"
        )

    async def add_field(self, name: str, type_string: str | None = None) -> list[Row]:
        return await self._run(
            self.add_field_statement(name, type_string),
            AlterError,
            f"Add field '{name}' to type '{self.name}' failed",
        )

    async def rename_field(self, old: str, new: str) -> list[Row]:
        return await self._run(
            self.rename_field_statement(old, new),
            AlterError,
            f"Rename field '{old}' of type '{self.name}' failed",
        )

    async def alter_type(self, name: str, type_string: str | None = None) -> list[Row]:
        return await self._run(
            self.alter_type_statement(name, type_string),
            AlterError,
            f"Alter type of field '{name}' of type '{self.name}' failed",
        )

    def snapshot(self, rows: list[Row]) -> FieldSnapshot | None:
        return self.catalog.type_snapshot(self.name, rows)

    async def remediate(self, diff: FieldDiff, options: EnsureExists, result: Reconciliation) -> None:
        if options.recreate:
            logger.warning("Recreating type %s", self.name)
            await self.apply(result, self.drop_statement(), DropError, f"Drop type '{self.name}' failed")
            await self.apply(
                result, self.create_statement(), CreateError, f"Create type '{self.name}' failed"
            )
            return

        for name in diff.type_mismatch:
            if options.change_type:
                logger.warning("Changing type of field %s.%s", self.name, name)
                await self.apply(
                    result,
                    self.alter_type_statement(name),
                    AlterError,
                    f"Alter type of field '{name}' failed",
                )
            elif options.recreate_column:
                logger.warning(
                    "Cannot recreate field %s.%s, fields of a type cannot be dropped", self.name, name
                )

        if options.remove_extra and diff.extra:
            logger.warning(
                "Cannot remove extra fields %s from type %s, fields of a type cannot be dropped",
                diff.extra,
                self.name,
            )

        if options.add_missing:
            for name in diff.missing:
                logger.warning("Adding missing field %s.%s", self.name, name)
                await self.apply(
                    result,
                    self.add_field_statement(name),
                    AlterError,
                    f"Add field '{name}' failed",
                )

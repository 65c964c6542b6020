"""Tables."""

from __future__ import annotations

import logging

from dakota.catalog import Catalog, FieldSnapshot
from dakota.config import EnsureExists
from dakota.errors import AlterError, CreateError, DropError, InvalidArgument
from dakota.executor import Executor, Row
from dakota.reconcile import FieldDiff, FieldedEntity, Reconciliation
from dakota.schema import Schema
from dakota.statement import Clause, Statement, concat, quote_identifier
from dakota.types import TypeDefinition

logger = logging.getLogger(__name__)


class Table(FieldedEntity):
    """The table backing a model."""

    entity = "table"
    field_label = "column"

    def __init__(
        self,
        executor: Executor,
        keyspace: str,
        name: str,
        schema: Schema,
        catalog: Catalog | None = None,
        ensure_exists: EnsureExists | None = None,
    ) -> None:
        if not isinstance(name, str) or not name:
            raise InvalidArgument("Table name should be a non-empty string")
        super().__init__(executor, keyspace, name, schema.registry, catalog, ensure_exists)
        self.schema = schema

    def desired_fields(self) -> dict[str, TypeDefinition]:
        return {name: column.type_def for name, column in self.schema.columns.items()}

    def _column_type(self, column: str, type_string: str | None = None) -> str:
        if type_string is not None:
            return self.registry.canonicalize(type_string)
        declared = self.schema.column(column)
        if declared is None:
            raise InvalidArgument(f"Column '{column}' is not declared in the schema")
        return declared.type_def.cql

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def probe_statement(self) -> Statement:
        return self.catalog.table_probe(self.keyspace, self.name)

    def create_statement(self, if_not_exists: bool = False) -> Statement:
        definitions = [
            f"{quote_identifier(name)} {column.type_def.cql}"
            for name, column in self.schema.columns.items()
        ]
        definitions.append(_primary_key(self.schema))
        order = self.schema.clustering_order
        return concat([
            Clause("CREATE TABLE"),
            Clause("IF NOT EXISTS") if if_not_exists else Clause(""),
            Clause(f"{self.target} ({', '.join(definitions)})"),
            Clause(
                "WITH CLUSTERING ORDER BY ("
                + ", ".join(f"{quote_identifier(c)} {d.upper()}" for c, d in order.items())
                + ")"
            ) if order else Clause(""),
        ])

    def drop_statement(self, if_exists: bool = False) -> Statement:
        return concat([
            Clause("DROP TABLE"),
            Clause("IF EXISTS") if if_exists else Clause(""),
            Clause(self.target),
        ])

    def add_column_statement(self, column: str, type_string: str | None = None) -> Statement:
        column_type = self._column_type(column, type_string)
        return Statement(f"ALTER TABLE {self.target} ADD {quote_identifier(column)} {column_type}")

    def drop_column_statement(self, column: str) -> Statement:
        return Statement(f"ALTER TABLE {self.target} DROP {quote_identifier(column)}")

    def rename_column_statement(self, old: str, new: str) -> Statement:
        return Statement(
            f"ALTER TABLE {self.target} RENAME {quote_identifier(old)} TO {quote_identifier(new)}"
        )

    def alter_type_statement(self, column: str, type_string: str | None = None) -> Statement:
        column_type = self._column_type(column, type_string)
        return Statement(
            f"ALTER TABLE {self.target} ALTER {quote_identifier(column)} TYPE {column_type}"
        )

    def truncate_statement(self) -> Statement:
        return Statement(f"TRUNCATE {self.target}")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def drop(self, if_exists: bool = False) -> list[Row]:
        return await self._run(
            self.drop_statement(if_exists), DropError, f"Drop table '{self.name}' failed"
        )

    async def add_column(self, column: str, type_string: str | None = None) -> list[Row]:
        return await self._run(
            self.add_column_statement(column, type_string),
            AlterError,
            f"Add column '{column}' to table '{self.name}' failed",
        )

    async def drop_column(self, column: str) -> list[Row]:
        return await self._run(
            self.drop_column_statement(column),
            AlterError,
            f"Drop column '{column}' from table '{self.name}' failed",
        )

    async def rename_column(self, old: str, new: str) -> list[Row]:
        return await self._run(
            self.rename_column_statement(old, new),
            AlterError,
            f"Rename column '{old}' of table '{self.name}' failed",
        )

    async def alter_type(self, column: str, type_string: str | None = None) -> list[Row]:
        return await self._run(
            self.alter_type_statement(column, type_string),
            AlterError,
            f"Alter type of column '{column}' of table '{self.name}' failed",
        )

    async def truncate(self) -> list[Row]:
        return await self._run(
            self.truncate_statement(), AlterError, f"Truncate table '{self.name}' failed"
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def snapshot(self, rows: list[Row]) -> FieldSnapshot | None:
        return self.catalog.table_snapshot(self.name, rows)

    async def remediate(self, diff: FieldDiff, options: EnsureExists, result: Reconciliation) -> None:
        if options.recreate:
            logger.warning("Recreating table %s", self.name)
            await self.apply(result, self.drop_statement(), DropError, f"Drop table '{self.name}' failed")
            await self.apply(
                result, self.create_statement(), CreateError, f"Create table '{self.name}' failed"
            )
            return

        for column in diff.type_mismatch:
            if options.change_type:
                logger.warning("Changing type of column %s.%s", self.name, column)
                await self.apply(
                    result,
                    self.alter_type_statement(column),
                    AlterError,
                    f"Alter type of column '{column}' failed",
                )
            elif options.recreate_column:
                logger.warning("Recreating column %s.%s", self.name, column)
                await self.apply(
                    result,
                    self.drop_column_statement(column),
                    AlterError,
                    f"Drop column '{column}' failed",
                )
                await self.apply(
                    result,
                    self.add_column_statement(column),
                    AlterError,
                    f"Add column '{column}' failed",
                )

        if options.remove_extra:
            for column in diff.extra:
                logger.warning("Removing extra column %s.%s", self.name, column)
                await self.apply(
                    result,
                    self.drop_column_statement(column),
                    AlterError,
                    f"Drop column '{column}' failed",
                )

        if options.add_missing:
            for column in diff.missing:
                logger.warning("Adding missing column %s.%s", self.name, column)
                await self.apply(
                    result,
                    self.add_column_statement(column),
                    AlterError,
                    f"Add column '{column}' failed",
                )


def _primary_key(schema: Schema) -> str:
    partition = ", ".join(quote_identifier(c) for c in schema.partition_key)
    if len(schema.partition_key) > 1:
        partition = f"({partition})"
    keys = [partition] + [quote_identifier(c) for c in schema.clustering_key]
    return f"PRIMARY KEY ({', '.join(keys)})"

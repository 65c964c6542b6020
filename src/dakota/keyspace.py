"""Keyspaces."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from dakota.catalog import Catalog, KeyspaceSnapshot
from dakota.config import EnsureExists
from dakota.errors import AlterError, DropError, InvalidArgument
from dakota.executor import Executor, Row
from dakota.reconcile import KeyspaceDiff, Reconciliation, SchemaEntity
from dakota.replication import check_replication, replication_differs, replication_to_string
from dakota.statement import Clause, Statement, concat, quote_identifier

logger = logging.getLogger(__name__)


def _durable_writes(flag: bool) -> str:
    return "true" if flag else "false"


class Keyspace(SchemaEntity):
    """A keyspace with its desired replication and durable-writes setting."""

    entity = "keyspace"

    def __init__(
        self,
        executor: Executor | None,
        name: str,
        replication: Mapping[str, Any],
        durable_writes: bool = True,
        catalog: Catalog | None = None,
        ensure_exists: EnsureExists | None = None,
    ) -> None:
        if not isinstance(name, str) or not name:
            raise InvalidArgument("Keyspace name should be a non-empty string")
        if not isinstance(durable_writes, bool):
            raise InvalidArgument("durable_writes should be a boolean")
        super().__init__(executor, name, catalog, ensure_exists)
        self.replication = check_replication(replication)
        self.durable_writes = durable_writes

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def probe_statement(self) -> Statement:
        return self.catalog.keyspace_probe(self.name)

    def create_statement(self, if_not_exists: bool = False) -> Statement:
        return concat([
            Clause("CREATE KEYSPACE"),
            Clause("IF NOT EXISTS") if if_not_exists else Clause(""),
            Clause(quote_identifier(self.name)),
            Clause(f"WITH REPLICATION = {replication_to_string(self.replication)}"),
            Clause(f"AND DURABLE_WRITES = {_durable_writes(self.durable_writes)}"),
        ])

    def drop_statement(self, if_exists: bool = False) -> Statement:
        return concat([
            Clause("DROP KEYSPACE"),
            Clause("IF EXISTS") if if_exists else Clause(""),
            Clause(quote_identifier(self.name)),
        ])

    def alter_statement(
        self, replication: Mapping[str, Any] | None = None, durable_writes: bool | None = None
    ) -> Statement:
        """``ALTER KEYSPACE`` with either or both settings."""
        if replication is None and durable_writes is None:
            raise InvalidArgument("Alter keyspace needs replication or durable_writes")
        settings = []
        if replication is not None:
            replication = check_replication(replication)
            settings.append(f"REPLICATION = {replication_to_string(replication)}")
        if durable_writes is not None:
            if not isinstance(durable_writes, bool):
                raise InvalidArgument("durable_writes should be a boolean")
            settings.append(f"DURABLE_WRITES = {_durable_writes(durable_writes)}")
        return concat([
            Clause(f"ALTER KEYSPACE {quote_identifier(self.name)}"),
            Clause("WITH " + " AND ".join(settings)),
        ])

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def drop(self, if_exists: bool = False) -> list[Row]:
        return await self._run(
            self.drop_statement(if_exists), DropError, f"Drop keyspace '{self.name}' failed"
        )

    async def alter(
        self, replication: Mapping[str, Any] | None = None, durable_writes: bool | None = None
    ) -> list[Row]:
        return await self._run(
            self.alter_statement(replication, durable_writes),
            AlterError,
            f"Alter keyspace '{self.name}' failed",
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def snapshot(self, rows: list[Row]) -> KeyspaceSnapshot | None:
        return self.catalog.keyspace_snapshot(self.name, rows)

    def diff(self, snapshot: KeyspaceSnapshot) -> KeyspaceDiff:
        return KeyspaceDiff(
            replication=replication_differs(self.replication, snapshot.strategy, snapshot.options),
            durable_writes=snapshot.durable_writes != self.durable_writes,
        )

    def mismatch_messages(self, diff: KeyspaceDiff) -> list[str]:
        messages = []
        if diff.replication:
            messages.append("different replication strategy found for existing keyspace")
        if diff.durable_writes:
            messages.append("different durable writes value found for existing keyspace")
        return messages

    async def remediate(self, diff: KeyspaceDiff, options: EnsureExists, result: Reconciliation) -> None:
        if not options.alter:
            return
        logger.warning("Altering keyspace %s to match schema", self.name)
        await self.apply(
            result,
            self.alter_statement(self.replication, self.durable_writes),
            AlterError,
            f"Alter keyspace '{self.name}' failed",
        )

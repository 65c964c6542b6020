"""The schema reconciliation state machine.

Each schema entity (keyspace, table, user-defined type) is reconciled the
same way:

1. Probe the live metadata. A failing probe raises ProbeError.
2. No rows: create the entity with ``CREATE ... IF NOT EXISTS``.
3. Otherwise diff the live snapshot against the desired descriptor, log a
   MismatchWarning per difference, and let the entity remediate what its
   policy flags allow.

Remediation failures propagate; nothing is retried.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from dakota.catalog import Catalog, FieldSnapshot, SystemSchemaCatalog
from dakota.config import EnsureExists
from dakota.errors import CreateError, InvalidArgument, MismatchWarning, ProbeError, SchemaError
from dakota.executor import Executor, Row, execute
from dakota.statement import Statement, qualified_name
from dakota.types import TypeDefinition, TypeRegistry

logger = logging.getLogger(__name__)


class ReconcileState(Enum):
    UNCHECKED = "unchecked"
    PROBED = "probed"
    ABSENT = "absent"
    PRESENT_MATCHING = "present_matching"
    PRESENT_MISMATCHED = "present_mismatched"
    RECONCILED = "reconciled"


@dataclass
class KeyspaceDiff:
    replication: bool = False
    durable_writes: bool = False

    def __bool__(self) -> bool:
        return self.replication or self.durable_writes


@dataclass
class FieldDiff:
    """Field names missing from, extra in, or typed differently in the live schema."""

    missing: list[str] = field(default_factory=list)
    extra: list[str] = field(default_factory=list)
    type_mismatch: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.missing or self.extra or self.type_mismatch)


@dataclass
class Reconciliation:
    """What one ``ensure_exists`` call found and did."""

    entity: str
    name: str
    state: ReconcileState = ReconcileState.UNCHECKED
    # What the probe showed: ABSENT, PRESENT_MATCHING or PRESENT_MISMATCHED
    found: ReconcileState | None = None
    diff: KeyspaceDiff | FieldDiff | None = None
    statements: list[Statement] = field(default_factory=list)
    warnings: list[MismatchWarning] = field(default_factory=list)


class SchemaEntity(ABC):
    """Base class for keyspaces, tables and user-defined types."""

    entity = "entity"

    def __init__(
        self,
        executor: Executor | None,
        name: str,
        catalog: Catalog | None = None,
        ensure_exists: EnsureExists | None = None,
    ) -> None:
        self.executor = executor
        self.name = name
        self.catalog = catalog or SystemSchemaCatalog()
        self.ensure_exists_options = ensure_exists or EnsureExists()

    # ------------------------------------------------------------------
    # Entity specifics
    # ------------------------------------------------------------------

    @abstractmethod
    def probe_statement(self) -> Statement: ...

    @abstractmethod
    def snapshot(self, rows: list[Row]) -> Any:
        """Convert probe rows to a snapshot, or None when the entity is absent."""

    @abstractmethod
    def create_statement(self, if_not_exists: bool = False) -> Statement: ...

    @abstractmethod
    def diff(self, snapshot: Any) -> KeyspaceDiff | FieldDiff: ...

    @abstractmethod
    def mismatch_messages(self, diff: Any) -> list[str]: ...

    @abstractmethod
    async def remediate(self, diff: Any, options: EnsureExists, result: Reconciliation) -> None:
        """Issue the corrective statements the policy flags allow."""

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _run(self, statement: Statement, error: type[SchemaError], message: str) -> list[Row]:
        if self.executor is None:
            raise InvalidArgument(f"{self.entity.capitalize()} '{self.name}' has no executor")
        try:
            return await execute(self.executor, statement)
        except Exception as err:
            raise error(f"{message}: {err}") from err

    async def apply(
        self,
        result: Reconciliation,
        statement: Statement,
        error: type[SchemaError],
        message: str,
    ) -> list[Row]:
        """Run a remediation statement and record it on the result."""
        result.statements.append(statement)
        return await self._run(statement, error, message)

    async def select_schema(self) -> list[Row]:
        """Run the metadata probe and return its rows."""
        return await self._run(
            self.probe_statement(), ProbeError, f"Probe of {self.entity} '{self.name}' failed"
        )

    async def create(self, if_not_exists: bool = False) -> list[Row]:
        return await self._run(
            self.create_statement(if_not_exists),
            CreateError,
            f"Create {self.entity} '{self.name}' failed",
        )

    async def ensure_exists(self, options: EnsureExists | None = None) -> Reconciliation:
        """Bring the live entity in line with its descriptor.

        Args:
            options: Policy flags; defaults to the entity's own.

        Returns:
            The reconciliation result, with the statements issued and the
            mismatches found.

        Raises:
            ProbeError: If the metadata probe fails.
            CreateError, AlterError, DropError: If a remediation statement fails.
        """
        options = options or self.ensure_exists_options
        result = Reconciliation(self.entity, self.name)

        if not options.run:
            logger.debug("Ensure %s skipped: %s", self.entity, self.name)
            return result

        rows = await self.select_schema()
        result.state = ReconcileState.PROBED
        snapshot = self.snapshot(rows)

        if snapshot is None:
            result.state = result.found = ReconcileState.ABSENT
            logger.warning("Creating %s: %s", self.entity, self.name)
            await self.apply(
                result,
                self.create_statement(if_not_exists=True),
                CreateError,
                f"Create {self.entity} '{self.name}' failed",
            )
            result.state = ReconcileState.RECONCILED
            return result

        diff = self.diff(snapshot)
        result.diff = diff
        if not diff:
            result.found = ReconcileState.PRESENT_MATCHING
            result.state = ReconcileState.RECONCILED
            return result

        result.state = result.found = ReconcileState.PRESENT_MISMATCHED
        for message in self.mismatch_messages(diff):
            warning = MismatchWarning(self.entity, self.name, message)
            logger.warning("%s", warning)
            result.warnings.append(warning)

        await self.remediate(diff, options, result)
        result.state = ReconcileState.RECONCILED
        return result


class FieldedEntity(SchemaEntity):
    """Base class for entities made of typed fields: tables and user-defined types."""

    field_label = "field"

    def __init__(
        self,
        executor: Executor,
        keyspace: str,
        name: str,
        registry: TypeRegistry,
        catalog: Catalog | None = None,
        ensure_exists: EnsureExists | None = None,
    ) -> None:
        super().__init__(executor, name, catalog, ensure_exists)
        self.keyspace = keyspace
        self.registry = registry

    @property
    def target(self) -> str:
        return qualified_name(self.name, self.keyspace)

    @abstractmethod
    def desired_fields(self) -> dict[str, TypeDefinition]:
        """Desired field types in declaration order."""

    def diff(self, snapshot: FieldSnapshot) -> FieldDiff:
        desired = self.desired_fields()
        live = snapshot.fields
        return FieldDiff(
            missing=[n for n in desired if n not in live],
            extra=[n for n in live if n not in desired],
            type_mismatch=[
                n
                for n, type_def in desired.items()
                if n in live
                and not self.catalog.same_type(self.registry, type_def, live[n], self.keyspace)
            ],
        )

    def mismatch_messages(self, diff: FieldDiff) -> list[str]:
        label = self.field_label
        return (
            [f"missing {label} '{n}'" for n in diff.missing]
            + [f"extra {label} '{n}'" for n in diff.extra]
            + [f"{label} '{n}' has a different type" for n in diff.type_mismatch]
        )

"""Options for schema reconciliation and logging.

Options can be built from a mapping or loaded from a TOML file::

    metadata = "system_schema"

    [keyspace]
    name = "app"
    durable_writes = true
    replication = { class = "SimpleStrategy", replication_factor = 1 }
    ensure_exists = { run = true, alter = false }

    [table.ensure_exists]
    add_missing = true

    [logger]
    level = "INFO"
    queries = false

Keys may be written in snake_case or camelCase (``ensureExists``,
``addMissing`` and so on). Unknown keys are rejected.
"""

from __future__ import annotations

import logging
import re
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from dakota.errors import InvalidArgument
from dakota.replication import check_replication

logger = logging.getLogger(__name__)

METADATA_LAYOUTS = ("system_schema", "legacy")

KEYSPACE_FLAGS = frozenset({"run", "alter"})
ENTITY_FLAGS = frozenset({
    "run", "recreate", "recreate_column", "change_type", "remove_extra", "add_missing",
})


def snake_case(key: str) -> str:
    """Convert a camelCase option key to snake_case."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def _normalized(mapping: Any, what: str, allowed: frozenset[str] | set[str]) -> dict[str, Any]:
    if not isinstance(mapping, Mapping):
        raise InvalidArgument(f"{what} should be a mapping")
    result = {snake_case(str(k)): v for k, v in mapping.items()}
    unknown = set(result) - set(allowed)
    if unknown:
        raise InvalidArgument(f"Unknown {what} options: {sorted(unknown)}")
    return result


@dataclass(frozen=True)
class EnsureExists:
    """Reconciliation policy flags.

    ``run = False`` skips reconciliation without probing. The remaining
    flags enable remediation of a detected mismatch; a mismatch whose flag
    is off is logged and left alone.
    """

    run: bool = True
    alter: bool = False
    recreate: bool = False
    recreate_column: bool = False
    change_type: bool = False
    remove_extra: bool = False
    add_missing: bool = False

    @classmethod
    def from_mapping(
        cls, mapping: Mapping[str, Any] | None, allowed: frozenset[str] = ENTITY_FLAGS
    ) -> EnsureExists:
        values = _normalized(mapping or {}, "ensure_exists", allowed)
        for key, value in values.items():
            if not isinstance(value, bool):
                raise InvalidArgument(f"ensure_exists.{key} should be a boolean")
        return cls(**values)

    def merged(self, overrides: Mapping[str, Any] | None) -> EnsureExists:
        """Return a copy with per-model overrides applied."""
        if not overrides:
            return self
        allowed = frozenset(f.name for f in fields(self))
        values = _normalized(overrides, "ensure_exists", allowed)
        return replace(self, **values)


@dataclass
class KeyspaceOptions:
    name: str
    replication: dict[str, Any] = field(
        default_factory=lambda: {"class": "SimpleStrategy", "replication_factor": 1}
    )
    durable_writes: bool = True
    ensure_exists: EnsureExists = field(default_factory=EnsureExists)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> KeyspaceOptions:
        values = _normalized(
            mapping, "keyspace", {"name", "replication", "durable_writes", "ensure_exists"}
        )
        if not isinstance(values.get("name"), str) or not values["name"]:
            raise InvalidArgument("keyspace.name should be a non-empty string")
        if "replication" in values:
            values["replication"] = check_replication(values["replication"])
        if not isinstance(values.get("durable_writes", True), bool):
            raise InvalidArgument("keyspace.durable_writes should be a boolean")
        values["ensure_exists"] = EnsureExists.from_mapping(
            values.get("ensure_exists"), KEYSPACE_FLAGS
        )
        return cls(**values)


@dataclass
class LoggerOptions:
    level: str = "WARNING"
    queries: bool = False

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> LoggerOptions:
        values = _normalized(mapping, "logger", {"level", "queries"})
        level = str(values.get("level", cls.level)).upper()
        if level not in logging.getLevelNamesMapping():
            raise InvalidArgument(f"Unknown log level '{level}'")
        queries = values.get("queries", cls.queries)
        if not isinstance(queries, bool):
            raise InvalidArgument("logger.queries should be a boolean")
        return cls(level=level, queries=queries)


@dataclass
class Options:
    keyspace: KeyspaceOptions | None = None
    table: EnsureExists = field(default_factory=EnsureExists)
    type: EnsureExists = field(default_factory=EnsureExists)
    logger: LoggerOptions = field(default_factory=LoggerOptions)
    metadata: str = "system_schema"

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> Options:
        """Build options from a (possibly camelCase) mapping.

        Raises:
            InvalidArgument: On unknown keys or ill-typed values.
        """
        aliases = {"user_defined_type": "type"}
        values = _normalized(
            mapping,
            "top-level",
            {"keyspace", "model", "table", "type", "user_defined_type", "logger", "metadata"},
        )
        if "model" in values:
            # model.table is accepted as an alias of table
            model = _normalized(values.pop("model"), "model", {"table"})
            if "table" in model:
                values.setdefault("table", model["table"])
        values = {aliases.get(k, k): v for k, v in values.items()}

        options = cls()
        if values.get("keyspace") is not None:
            options.keyspace = KeyspaceOptions.from_mapping(values["keyspace"])
        for entity in ("table", "type"):
            if entity in values:
                section = _normalized(values[entity], entity, {"ensure_exists"})
                setattr(options, entity, EnsureExists.from_mapping(section.get("ensure_exists")))
        if "logger" in values:
            options.logger = LoggerOptions.from_mapping(values["logger"])
        if "metadata" in values:
            if values["metadata"] not in METADATA_LAYOUTS:
                raise InvalidArgument(
                    f"metadata should be one of {list(METADATA_LAYOUTS)}, got {values['metadata']!r}"
                )
            options.metadata = values["metadata"]
        return options


def load_options(path: str | Path) -> Options:
    """Load options from a TOML file."""
    path = Path(path)
    with path.open("rb") as f:
        try:
            raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as err:
            raise InvalidArgument(f"{path}: {err}") from err
    logger.debug("Loaded options from %s", path)
    return Options.from_mapping(raw)


def configure_logging(options: LoggerOptions) -> None:
    """Apply logger options to the ``dakota`` loggers."""
    logging.getLogger("dakota").setLevel(options.level)
    # Statements are logged at DEBUG
    logging.getLogger("dakota.queries").setLevel(
        logging.DEBUG if options.queries else logging.WARNING
    )

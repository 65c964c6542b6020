"""Keyspace replication strategies."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from dakota.errors import InvalidArgument

STRATEGY_PREFIX = "org.apache.cassandra.locator."

STRATEGIES = frozenset({
    "SimpleStrategy",
    "NetworkTopologyStrategy",
    "LocalStrategy",
    "EverywhereStrategy",
    "OldNetworkTopologyStrategy",
})


def strategy_name(strategy_class: str) -> str:
    """Strip the locator package from a fully-qualified strategy class."""
    if strategy_class.startswith(STRATEGY_PREFIX):
        return strategy_class[len(STRATEGY_PREFIX):]
    return strategy_class


def check_replication(replication: Any) -> dict[str, Any]:
    """Validate a replication mapping and return a copy of it.

    Raises:
        InvalidArgument: If it is not a mapping with a known ``class``.
    """
    if not isinstance(replication, Mapping):
        raise InvalidArgument("Replication should be a mapping")
    if "class" not in replication:
        raise InvalidArgument("Replication should name a strategy class")
    if strategy_name(str(replication["class"])) not in STRATEGIES:
        raise InvalidArgument(f"Unknown replication strategy '{replication['class']}'")
    return dict(replication)


def _literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


def replication_to_string(replication: Mapping[str, Any]) -> str:
    """Render a replication mapping as a CQL map literal."""
    items = ", ".join(f"{_literal(k)}: {_literal(v)}" for k, v in replication.items())
    return "{" + items + "}"


def _normalize(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def replication_differs(desired: Mapping[str, Any], strategy: str, options: Mapping[str, Any]) -> bool:
    """Compare a desired replication mapping with live metadata.

    The live side stores every option as a string, so both sides are
    normalized to strings before comparing. Options the live side carries
    but the desired mapping does not mention are ignored.
    """
    if strategy_name(str(desired["class"])) != strategy_name(strategy):
        return True
    for key, value in desired.items():
        if key == "class":
            continue
        if key not in options:
            return True
        if _normalize(options[key]) != _normalize(value):
            return True
    return False

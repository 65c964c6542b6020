"""Compiled statements and the clause pieces they are built from.

Every statement is assembled from a fixed sequence of clauses. Each clause
carries its own text and the parameters its placeholders bind, so the
parameter order always follows the text order.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

# Words that cannot be used as bare identifiers
RESERVED_KEYWORDS = frozenset({
    "add", "allow", "alter", "and", "apply", "asc", "authorize", "batch",
    "begin", "by", "columnfamily", "create", "delete", "desc", "describe",
    "drop", "entries", "execute", "from", "full", "grant", "if", "in",
    "index", "infinity", "insert", "into", "is", "keyspace", "limit",
    "materialized", "mbean", "mbeans", "modify", "nan", "norecursive", "not",
    "null", "of", "on", "or", "order", "primary", "rename", "replace",
    "revoke", "schema", "select", "set", "table", "to", "token", "truncate",
    "unlogged", "unset", "update", "use", "using", "view", "where", "with",
})

_UNQUOTED_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


@dataclass(frozen=True)
class Statement:
    """A compiled CQL statement and its bound parameters."""

    query: str
    params: list[Any] = field(default_factory=list)
    prepare: bool = True

    def __str__(self) -> str:
        return self.query


@dataclass
class Clause:
    """A fragment of statement text plus the parameters it binds."""

    text: str
    params: list[Any] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.text)


def concat(clauses: Iterable[Clause], prepare: bool = True) -> Statement:
    """Join non-empty clauses with single spaces into a statement."""
    texts: list[str] = []
    params: list[Any] = []
    for clause in clauses:
        if clause:
            texts.append(clause.text)
            params.extend(clause.params)
    return Statement(query=" ".join(texts), params=params, prepare=prepare)


def join(clauses: Iterable[Clause], separator: str) -> Clause:
    """Join clauses into one clause with the given separator."""
    texts: list[str] = []
    params: list[Any] = []
    for clause in clauses:
        if clause:
            texts.append(clause.text)
            params.extend(clause.params)
    return Clause(separator.join(texts), params)


def quote_identifier(name: str) -> str:
    """Quote an identifier unless it is safe to use bare.

    Bare identifiers are folded to lower case by the cluster, so mixed-case
    names and reserved words are double-quoted.
    """
    if _UNQUOTED_IDENTIFIER.match(name) and name not in RESERVED_KEYWORDS:
        return name
    return '"' + name.replace('"', '""') + '"'


def qualified_name(name: str, keyspace: str | None = None) -> str:
    """Return ``keyspace.name`` (quoted as needed), or just the name."""
    if keyspace:
        return f"{quote_identifier(keyspace)}.{quote_identifier(name)}"
    return quote_identifier(name)

"""Shared fixtures: an in-memory executor and a user model schema."""

from __future__ import annotations

from typing import Any, AsyncIterator, Callable

import pytest

from dakota.executor import Executor
from dakota.schema import Schema
from dakota.types import TypeRegistry

ADDRESS = {
    "street": "text",
    "city": "text",
    "zip": "int",
}

USER_COLUMNS = {
    # timestamps
    "ctime": "timestamp",
    "utime": "timestamp",
    # data
    "id": "uuid",
    "bio": "text",
    "email": "text",
    "loc": "text",
    "name": "text",
    "exclamation": {
        "type": "text",
        "set": lambda value: value + "!",
        "get": lambda value: value.upper() if value else value,
    },
    # types
    "desc": "ascii",
    "cnt": "bigint",
    "bits": "blob",
    "sub": "boolean",
    "wht": "decimal",
    "prc": "double",
    "qty": "float",
    "ip": "inet",
    "age": "int",
    "slug": "text",
    "sgn": "timestamp",
    "tid": "timeuuid",
    "aid": "uuid",
    "url": "varchar",
    "del": "varint",
    # collections
    "projs": "set<timeuuid>",
    "hash": "map<text,inet>",
    "thngs": {"type": "list<text>", "alias": "thing"},
    # user defined types
    "address": "frozen <address>",
    "addresses": "list<frozen <address>>",
    # tuples
    "tuples": "tuple<text, int, text>",
    "nestedTuple": "list<frozen <tuple<text, int, text>>>",
}


def user_definition(**extra: Any) -> dict[str, Any]:
    """The user model definition, with optional extra definition keys."""
    definition = {
        "columns": dict(USER_COLUMNS),
        "key": [["id", "name"], "loc"],
    }
    definition.update(extra)
    return definition


Responder = Callable[[str, list[Any]], list[dict[str, Any]]]


class FakeExecutor(Executor):
    """Records every statement and answers from a responder function.

    The responder receives ``(query, params)`` and returns rows, or raises
    to simulate a failing statement. Without one every statement returns
    no rows.
    """

    def __init__(self, responder: Responder | None = None) -> None:
        self.responder = responder
        self.calls: list[tuple[str, list[Any], bool]] = []

    @property
    def queries(self) -> list[str]:
        return [query for query, _, _ in self.calls]

    async def execute(self, query: str, params: list[Any], *, prepare: bool = True) -> list[dict[str, Any]]:
        self.calls.append((query, list(params), prepare))
        if self.responder is None:
            return []
        return self.responder(query, list(params))

    async def stream(self, query: str, params: list[Any], *, prepare: bool = True) -> AsyncIterator[dict[str, Any]]:
        for row in await self.execute(query, params, prepare=prepare):
            yield row


def probe_responder(probe_rows: list[dict[str, Any]]) -> Responder:
    """Answer SELECTs on system tables with ``probe_rows`` and everything else with nothing."""

    def respond(query: str, params: list[Any]) -> list[dict[str, Any]]:
        if query.startswith("SELECT") and "system" in query:
            return probe_rows
        return []

    return respond


@pytest.fixture
def registry() -> TypeRegistry:
    return TypeRegistry({"address": ADDRESS})


@pytest.fixture
def user_schema(registry: TypeRegistry) -> Schema:
    return Schema.from_definition(registry, user_definition())


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()

"""The statement executor interface.

Everything that talks to the cluster goes through an Executor. The core
never holds a driver session itself; an executor is passed in explicitly
and can be replaced by an in-memory one in tests.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

from dakota.statement import Statement

# Every statement is logged here before it is executed
query_logger = logging.getLogger("dakota.queries")

Row = dict[str, Any]


class Executor(ABC):
    """Runs CQL statements asynchronously."""

    @abstractmethod
    async def execute(self, query: str, params: list[Any], *, prepare: bool = True) -> list[Row]:
        """Execute a statement and return all of its rows."""

    @abstractmethod
    def stream(self, query: str, params: list[Any], *, prepare: bool = True) -> AsyncIterator[Row]:
        """Execute a statement and yield its rows lazily, page by page."""


def _log(statement: Statement) -> None:
    query_logger.debug(
        "%s -- params=%r prepare=%s", statement.query, statement.params, statement.prepare
    )


async def execute(executor: Executor, statement: Statement) -> list[Row]:
    """Log a compiled statement and execute it."""
    _log(statement)
    return await executor.execute(statement.query, statement.params, prepare=statement.prepare)


async def stream(executor: Executor, statement: Statement) -> AsyncIterator[Row]:
    """Log a compiled statement and stream its rows."""
    _log(statement)
    async for row in executor.stream(statement.query, statement.params, prepare=statement.prepare):
        yield row

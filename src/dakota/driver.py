"""Executor backed by a cassandra-driver Session.

The driver's ResponseFuture reports results on its own event thread. Each
page is handed back to the asyncio loop with ``call_soon_threadsafe``, so
coroutines can await rows without blocking the loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, AsyncIterator

from cassandra.query import PreparedStatement, SimpleStatement

from dakota.executor import Executor, Row

if TYPE_CHECKING:
    from cassandra.cluster import ResponseFuture, Session

logger = logging.getLogger(__name__)


class _PageBridge:
    """Delivers the pages of one ResponseFuture to an asyncio loop.

    Callbacks are registered once; the driver invokes them again for every
    page fetched with ``start_fetching_next_page``.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, response: ResponseFuture) -> None:
        self._loop = loop
        self._response = response
        self._waiter: asyncio.Future = loop.create_future()
        response.add_callbacks(self._on_page, self._on_error)

    def _on_page(self, rows: Any) -> None:
        self._loop.call_soon_threadsafe(self._settle, rows, None)

    def _on_error(self, exc: BaseException) -> None:
        self._loop.call_soon_threadsafe(self._settle, None, exc)

    def _settle(self, rows: Any, exc: BaseException | None) -> None:
        waiter = self._waiter
        if waiter.done():
            return
        if exc is not None:
            waiter.set_exception(exc)
        else:
            waiter.set_result(rows)

    async def pages(self) -> AsyncIterator[list[Any]]:
        while True:
            rows = await self._waiter
            yield list(rows or [])
            if not self._response.has_more_pages:
                return
            self._waiter = self._loop.create_future()
            self._response.start_fetching_next_page()


def _to_dict(row: Any) -> Row:
    if isinstance(row, dict):
        return row
    if hasattr(row, "_asdict"):
        return dict(row._asdict())
    raise TypeError(f"Cannot convert row of type {type(row).__name__} to a mapping")


class CassandraExecutor(Executor):
    """Runs statements on a cassandra-driver Session.

    Prepared statements are cached per query string. Statements without
    parameters may be sent unprepared; parameterized statements always use
    ``?`` placeholders and are therefore always prepared.
    """

    def __init__(self, session: Session, fetch_size: int | None = None) -> None:
        self.session = session
        self.fetch_size = fetch_size
        self._prepared: dict[str, PreparedStatement] = {}

    async def _statement(self, query: str, params: list[Any], prepare: bool) -> Any:
        if not prepare and not params:
            statement = SimpleStatement(query)
            if self.fetch_size is not None:
                statement.fetch_size = self.fetch_size
            return statement
        prepared = self._prepared.get(query)
        if prepared is None:
            loop = asyncio.get_running_loop()
            prepared = await loop.run_in_executor(None, self.session.prepare, query)
            self._prepared[query] = prepared
            logger.debug("Prepared %s", query)
        bound = prepared.bind(params)
        if self.fetch_size is not None:
            bound.fetch_size = self.fetch_size
        return bound

    async def _pages(
        self, query: str, params: list[Any], prepare: bool
    ) -> AsyncIterator[list[Any]]:
        statement = await self._statement(query, params, prepare)
        response = self.session.execute_async(statement)
        bridge = _PageBridge(asyncio.get_running_loop(), response)
        async for page in bridge.pages():
            yield page

    async def execute(self, query: str, params: list[Any], *, prepare: bool = True) -> list[Row]:
        rows: list[Row] = []
        async for page in self._pages(query, params, prepare):
            rows.extend(_to_dict(r) for r in page)
        return rows

    async def stream(
        self, query: str, params: list[Any], *, prepare: bool = True
    ) -> AsyncIterator[Row]:
        async for page in self._pages(query, params, prepare):
            for row in page:
                yield _to_dict(row)

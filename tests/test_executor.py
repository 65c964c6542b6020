"""Tests for statement execution and query logging."""

import asyncio
import logging

from dakota.executor import execute, stream
from dakota.statement import Statement

from conftest import FakeExecutor


class TestExecute:
    """Tests for the execute and stream helpers."""

    def test_execute_logs_statement(self, caplog):
        """Test every statement is logged at DEBUG before it runs."""
        executor = FakeExecutor(lambda query, params: [{"n": 1}])
        statement = Statement("SELECT n FROM t WHERE id = ?", [7])
        with caplog.at_level(logging.DEBUG, logger="dakota.queries"):
            rows = asyncio.run(execute(executor, statement))
        assert rows == [{"n": 1}]
        assert executor.calls == [("SELECT n FROM t WHERE id = ?", [7], True)]
        assert "SELECT n FROM t WHERE id = ? -- params=[7] prepare=True" in caplog.text

    def test_stream(self):
        """Test streaming passes the prepare flag through."""
        executor = FakeExecutor(lambda query, params: [{"n": 1}, {"n": 2}])

        async def collect():
            return [row async for row in stream(executor, Statement("SELECT n FROM t", prepare=False))]

        assert asyncio.run(collect()) == [{"n": 1}, {"n": 2}]
        assert executor.calls == [("SELECT n FROM t", [], False)]

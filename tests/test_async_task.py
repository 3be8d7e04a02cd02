import asyncio
from unittest.mock import MagicMock

import pytest

from schemaform.utils.async_task import AsyncTask


def test_callbacks_on_success():
    runner = AsyncTask()
    on_success, on_error, on_complete = MagicMock(), MagicMock(), MagicMock()

    async def work():
        return 42

    async def scenario():
        runner.run(work(), on_success, on_error, on_complete)
        await runner.wait_idle()

    asyncio.run(scenario())
    on_success.assert_called_once_with(42)
    on_error.assert_not_called()
    on_complete.assert_called_once()
    assert runner.pending == 0


def test_callbacks_on_error():
    runner = AsyncTask()
    on_error = MagicMock()

    async def work():
        raise ValueError("bad")

    async def scenario():
        runner.run(work(), on_error=on_error)
        await runner.wait_idle()

    asyncio.run(scenario())
    assert isinstance(on_error.call_args[0][0], ValueError)


def test_run_requires_running_loop():
    async def work():
        return 1

    coro = work()
    with pytest.raises(RuntimeError):
        AsyncTask().run(coro)
    coro.close()

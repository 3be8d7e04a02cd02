import asyncio
from typing import Any, Awaitable, Callable, Optional, Set


class AsyncTask:
    """
    Runs awaitables on the current event loop and reports back through
    callbacks, keeping track of what is still in flight.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def run(
            self,
            awaitable: Awaitable[Any],
            on_success: Optional[Callable[[Any], None]] = None,
            on_error: Optional[Callable[[Exception], None]] = None,
            on_complete: Optional[Callable[[], None]] = None,
    ) -> asyncio.Task:
        """
        Schedule an awaitable with callbacks for success, error and completion.

        Args:
            awaitable: The coroutine or future to run
            on_success: Receives the result when successful
            on_error: Receives the exception when it failed
            on_complete: Called regardless of success/failure

        Returns:
            The created asyncio.Task object

        Raises:
            RuntimeError: when no event loop is running.
        """
        loop = asyncio.get_running_loop()

        async def _wrapped():
            try:
                result = await awaitable
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if on_error is None:
                    raise
                on_error(e)
                return None
            else:
                if on_success is not None:
                    on_success(result)
                return result
            finally:
                if on_complete is not None:
                    on_complete()

        task = loop.create_task(_wrapped())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Waits until every task, including ones spawned meanwhile, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()

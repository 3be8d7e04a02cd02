import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, Iterable, Optional, Set, Tuple

from schemaform.form.context import EvalCtx
from schemaform.form.normalizer import NormalizedField
from schemaform.form.predicates import Diagnostics
from schemaform.form.validator import DEFAULT_MESSAGES
from schemaform.utils.async_task import AsyncTask

logger = logging.getLogger(__name__)

# Reads the current value of a field together with a fresh context.
Reader = Callable[[str], Tuple[Any, EvalCtx]]


class ValidationRunner:
    """
    Executes field rules and decides when they run.

    Triggers on a field that is already validating are not queued: the
    runner remembers that one came in and, once the running check settles,
    validates once more if the value moved in the meantime.
    """
    def __init__(self, diagnostics: Diagnostics, tasks: AsyncTask,
                 publish: Callable[[str, Optional[str]], None],
                 set_validating: Callable[[str, bool], None],
                 failed_message: str = DEFAULT_MESSAGES["failed"]):
        self.diagnostics = diagnostics
        self.tasks = tasks
        self.publish = publish
        self.set_validating = set_validating
        self.failed_message = failed_message
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._retrigger: Set[str] = set()

    def validate(self, field: NormalizedField, value: Any, ctx: EvalCtx) -> Any:
        """Returns an error message, None, or an awaitable of either."""
        if field.rule is None:
            return None
        try:
            return field.rule.check(value, ctx)
        except Exception as e:
            self.diagnostics.report(field.name, "rules", e)
            return self.failed_message

    async def _settle(self, field: NormalizedField, pending: Any) -> Optional[str]:
        try:
            return await pending
        except Exception as e:
            self.diagnostics.report(field.name, "rules", e)
            return self.failed_message

    def is_validating(self, name: str) -> bool:
        return name in self._in_flight

    def trigger(self, field: NormalizedField, read: Reader) -> Optional[asyncio.Task]:
        """
        Validates ``field`` with its current value and publishes the result.

        Returns the task driving an asynchronous check, or None when the
        result was published synchronously or the trigger was absorbed by
        a check already in flight.
        """
        name = field.name
        if name in self._in_flight:
            logger.debug(f"Validation of '{name}' in flight; coalescing trigger")
            self._retrigger.add(name)
            return None

        value, ctx = read(name)
        result = self.validate(field, value, ctx)
        if not inspect.isawaitable(result):
            self.publish(name, result)
            return None

        drive = self._drive(field, value, result, read)
        try:
            task = self.tasks.run(drive)
        except RuntimeError as e:
            drive.close()
            if inspect.iscoroutine(result):
                result.close()
            self.diagnostics.report(name, "rules", e)
            return None
        self._in_flight[name] = task
        self.set_validating(name, True)
        return task

    async def _drive(self, field: NormalizedField, value: Any, pending: Any, read: Reader) -> Optional[str]:
        name = field.name
        try:
            while True:
                message = await self._settle(field, pending)
                if name not in self._retrigger:
                    break
                self._retrigger.discard(name)
                current, ctx = read(name)
                if current == value:
                    break
                value = current
                pending = self.validate(field, value, ctx)
                if not inspect.isawaitable(pending):
                    message = pending
                    break
        finally:
            # A cancelled run must not clear the bookkeeping of its successor.
            if self._in_flight.get(name) is asyncio.current_task():
                del self._in_flight[name]
                self._retrigger.discard(name)
                self.set_validating(name, False)
        self.publish(name, message)
        return message

    async def run_all(self, items: Iterable[Tuple[NormalizedField, Any]], ctx: EvalCtx) -> Dict[str, Optional[str]]:
        """
        Runs every rule concurrently and collects each field's outcome.
        Nothing short-circuits: all failures are reported together.
        """
        names = []
        checks = []
        waiting = []
        for field, value in items:
            result = self.validate(field, value, ctx)
            names.append(field.name)
            if inspect.isawaitable(result):
                checks.append(self._settle(field, result))
                waiting.append(field.name)
            else:
                checks.append(_resolved(result))
        for name in waiting:
            self.set_validating(name, True)
        try:
            results = await asyncio.gather(*checks)
        finally:
            for name in waiting:
                # A blur-triggered run still owns the flag.
                if name not in self._in_flight:
                    self.set_validating(name, False)
        return dict(zip(names, results))

    def cancel(self) -> None:
        for task in list(self._in_flight.values()):
            task.cancel()
        self._in_flight.clear()
        self._retrigger.clear()


async def _resolved(value: Any) -> Any:
    return value

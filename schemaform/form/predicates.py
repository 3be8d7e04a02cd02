import inspect
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from schemaform.form.context import EvalCtx
from schemaform.form.normalizer import NormalizedField, NormalizedSchema

logger = logging.getLogger(__name__)

ASPECTS = ("visible", "disabled", "readonly")
ASPECT_DEFAULTS = {"visible": True, "disabled": False, "readonly": False}
_TRUTHY_STRINGS = ("true", "1", "yes")


@dataclass(frozen=True)
class Diagnostic:
    field: str
    aspect: str
    error: BaseException


class Diagnostics:
    """
    Channel for non-fatal evaluation errors: throwing predicates, rejected
    option loaders, throwing rules and transforms. Keeps the most recent records.
    """
    def __init__(self, on_diagnostic: Optional[Callable[[Diagnostic], None]] = None, limit: int = 200):
        self.on_diagnostic = on_diagnostic
        self._records = deque(maxlen=limit)

    def report(self, field: str, aspect: str, error: BaseException) -> Diagnostic:
        record = Diagnostic(field, aspect, error)
        self._records.append(record)
        logger.warning(f"{aspect} of field '{field}' failed: {error.__class__.__name__}: {error}")
        if self.on_diagnostic is not None:
            try:
                self.on_diagnostic(record)
            except Exception as e:
                logger.warning(f"on_diagnostic callback failed: {e}")
        return record

    def for_field(self, field: str) -> List[Diagnostic]:
        return [record for record in self._records if record.field == field]

    def clear(self) -> None:
        self._records.clear()

    def __iter__(self):
        return iter(list(self._records))

    def __len__(self) -> int:
        return len(self._records)


class PredicateError(TypeError):
    pass


def eval_boolish(value: Any, ctx: EvalCtx, default: bool) -> bool:
    """
    Evaluates a visible/disabled/readonly declaration: None falls back to
    ``default``, booleans and "true"/"1"/"yes" strings are taken as is, and
    callables are invoked with the context. Exceptions propagate.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY_STRINGS
    if callable(value):
        result = value(ctx)
        if inspect.isawaitable(result):
            if inspect.iscoroutine(result):
                result.close()
            raise PredicateError("predicates must be synchronous")
        return bool(result)
    return bool(value)


class PredicateEvaluator:
    """
    Computes the visible/disabled/readonly aspects of fields from a value
    snapshot, re-running only the fields reachable from a change through
    the reverse-dependency index.
    """
    def __init__(self, schema: NormalizedSchema, diagnostics: Diagnostics):
        self.schema = schema
        self.diagnostics = diagnostics

    def evaluate_field(self, field: NormalizedField, ctx: EvalCtx) -> Dict[str, bool]:
        aspects = {}
        for aspect in ASPECTS:
            try:
                aspects[aspect] = eval_boolish(getattr(field, aspect), ctx, ASPECT_DEFAULTS[aspect])
            except Exception as e:
                self.diagnostics.report(field.name, aspect, e)
                aspects[aspect] = False
        return aspects

    def evaluate(self, changed: Iterable[str], ctx: EvalCtx) -> Dict[str, Dict[str, bool]]:
        """Re-evaluates every field that depends, directly or not, on ``changed``."""
        affected = self.schema.affected_by(changed)
        if affected:
            logger.debug(f"Re-evaluating {affected}")
        return {name: self.evaluate_field(self.schema[name], ctx) for name in affected}

    def evaluate_all(self, ctx: EvalCtx) -> Dict[str, Dict[str, bool]]:
        return {field.name: self.evaluate_field(field, ctx) for field in self.schema}

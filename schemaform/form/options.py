import inspect
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from schemaform.constants import DEFAULT_OPTIONS_CACHE_TTL
from schemaform.form.context import PENDING, EvalCtx, Option, coerce_options
from schemaform.form.normalizer import NormalizedField
from schemaform.form.predicates import Diagnostics
from schemaform.storage import now_ms
from schemaform.utils.async_task import AsyncTask

logger = logging.getLogger(__name__)

OptionsResult = Union[List[Option], type(PENDING)]


class OptionsResolver:
    """
    Resolves a field's option list.

    Static lists are returned as is. Option functions are called with the
    evaluation context; when they return an awaitable the field goes
    PENDING and the result is published later through ``publish``, but
    only if no newer resolution for the same field started in the
    meantime. Each resolution bumps the field's generation token and a
    settling result carrying an older token is dropped.
    """
    def __init__(self, diagnostics: Diagnostics, tasks: AsyncTask,
                 publish: Callable[[str, List[Option]], None],
                 cache_ttl: int = DEFAULT_OPTIONS_CACHE_TTL, clock: Optional[Callable[[], int]] = None):
        self.diagnostics = diagnostics
        self.tasks = tasks
        self.publish = publish
        self.cache_ttl = cache_ttl
        self.clock = clock or now_ms
        self._generations: Dict[str, int] = {}
        self._cache: Dict[str, Tuple[int, List[Option]]] = {}

    def generation(self, name: str) -> int:
        return self._generations.get(name, 0)

    def _cache_key(self, field: NormalizedField, ctx: EvalCtx) -> Optional[str]:
        try:
            dep_values = [ctx.get(name) for name in field.depends_on]
            return f"{field.name}:{json.dumps(dep_values, sort_keys=True)}"
        except (TypeError, ValueError):
            return None

    def _cache_get(self, key: Optional[str]) -> Optional[List[Option]]:
        if key is None or self.cache_ttl <= 0:
            return None
        item = self._cache.get(key)
        if item is None:
            return None
        expires, options = item
        if expires <= self.clock():
            del self._cache[key]
            return None
        return options

    def _cache_set(self, key: Optional[str], options: List[Option]) -> None:
        if key is None or self.cache_ttl <= 0:
            return
        self._cache[key] = (self.clock() + self.cache_ttl, options)

    def clear_cache(self) -> None:
        self._cache.clear()

    def resolve(self, field: NormalizedField, ctx: EvalCtx) -> OptionsResult:
        source = field.options
        if source is None:
            return []
        if not callable(source):
            return coerce_options(source)

        name = field.name
        token = self._generations.get(name, 0) + 1
        self._generations[name] = token

        key = self._cache_key(field, ctx)
        cached = self._cache_get(key)
        if cached is not None:
            return cached

        try:
            result = source(ctx)
            if not inspect.isawaitable(result):
                options = coerce_options(result)
                self._cache_set(key, options)
                return options
        except Exception as e:
            self.diagnostics.report(name, "options", e)
            return []

        try:
            self.tasks.run(
                result,
                on_success=lambda value: self._settle(name, token, key, value),
                on_error=lambda error: self._reject(name, token, error),
            )
        except RuntimeError as e:
            if inspect.iscoroutine(result):
                result.close()
            self.diagnostics.report(name, "options", e)
            return []
        return PENDING

    def _is_current(self, name: str, token: int) -> bool:
        if self._generations.get(name) == token:
            return True
        logger.debug(f"Discarding stale options for '{name}' (generation {token})")
        return False

    def _settle(self, name: str, token: int, key: Optional[str], value: Any) -> None:
        if not self._is_current(name, token):
            return
        try:
            options = coerce_options(value)
        except Exception as e:
            self._reject(name, token, e)
            return
        self._cache_set(key, options)
        self.publish(name, options)

    def _reject(self, name: str, token: int, error: Exception) -> None:
        if not self._is_current(name, token):
            return
        self.diagnostics.report(name, "options", error)
        self.publish(name, [])

import asyncio
import logging
from copy import deepcopy
from dataclasses import dataclass, field as dataclass_field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from schemaform.constants import DEFAULT_OPTIONS_CACHE_TTL
from schemaform.core import Effect, batch_updates, create_effect, create_signal
from schemaform.exceptions import UnknownFieldError
from schemaform.form.context import PENDING, EvalCtx, FieldState, Option
from schemaform.form.normalizer import NormalizedField, NormalizedSchema, normalize
from schemaform.form.options import OptionsResolver
from schemaform.form.predicates import Diagnostic, Diagnostics, PredicateEvaluator
from schemaform.form.schema import Schema
from schemaform.form.validation import ValidationRunner
from schemaform.form.validator import DEFAULT_MESSAGES
from schemaform.storage import PersistenceManager, StorageBackend
from schemaform.utils.async_task import AsyncTask
from schemaform.widgets import WidgetRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmitResult:
    valid: bool
    values: Dict[str, Any] = dataclass_field(default_factory=dict)
    errors: Dict[str, str] = dataclass_field(default_factory=dict)


class FieldAccessProxy:
    """
    Proxy for attribute-style field access.
    Enables usage like: form.F.email.value or form.F.email.set_value("a@b.c")
    """
    def __init__(self, form: 'Form', name: Optional[str] = None):
        self._form = form
        self._name = name

    def __getattr__(self, name: str) -> 'FieldAccessProxy':
        if self._name is not None:
            raise AttributeError(f"Field '{self._name}' has no attribute '{name}'")
        if name not in self._form.schema:
            raise AttributeError(f"Field '{name}' not found")
        return FieldAccessProxy(self._form, name)

    def __getitem__(self, name: str) -> 'FieldAccessProxy':
        return FieldAccessProxy(self._form, self._form._require(name).name)

    @property
    def value(self) -> Any:
        return self._form.get_value(self._name)

    def set_value(self, value: Any) -> None:
        self._form.set_value(self._name, value)

    @property
    def state(self) -> FieldState:
        return self._form.field_state(self._name)

    @property
    def error(self) -> Optional[str]:
        return self.state.error

    @property
    def visible(self) -> bool:
        return self.state.visible

    @property
    def props(self) -> Dict[str, Any]:
        return self._form.field_props(self._name)

    def blur(self) -> Optional[asyncio.Task]:
        return self._form.handle_blur(self._name)


class Form:
    """
    The form state store.

    Owns the field values and the derived per-field state, and is their only
    writer. A value change re-evaluates the predicates of every field that
    depends on it, re-resolves dynamic options of its direct dependents and
    schedules a persistence write. Rules run on blur and on submit only.
    """
    def __init__(self, schema: NormalizedSchema, storage: Optional[StorageBackend] = None, *,
                 initial_values: Optional[Mapping[str, Any]] = None,
                 options_cache_ttl: int = DEFAULT_OPTIONS_CACHE_TTL,
                 submit_transform: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None,
                 messages: Optional[Mapping[str, str]] = None,
                 context: Optional[Mapping[str, Any]] = None,
                 clock: Optional[Callable[[], int]] = None,
                 on_diagnostic: Optional[Callable[[Diagnostic], None]] = None):
        self.schema = schema
        self.context = dict(context or {})
        self.submit_transform = submit_transform
        self.diagnostics = Diagnostics(on_diagnostic)
        self.tasks = AsyncTask()
        self.predicates = PredicateEvaluator(schema, self.diagnostics)
        self.options = OptionsResolver(self.diagnostics, self.tasks, self._publish_options,
                                       cache_ttl=options_cache_ttl, clock=clock)
        failed_message = {**DEFAULT_MESSAGES, **(messages or {})}["failed"]
        self.validation = ValidationRunner(self.diagnostics, self.tasks, self.set_field_error,
                                           self._set_validating, failed_message)
        self.persistence: Optional[PersistenceManager] = None
        if schema.persist is not None:
            if storage is None:
                logger.warning(f"Schema persists under '{schema.persist.key}' but no storage was given; "
                               f"persistence is disabled")
            else:
                self.persistence = PersistenceManager(schema.persist, storage, clock=clock)
        self._effects: List[Effect] = []
        self._disposed = False

        provided = dict(initial_values or {})
        for name in provided:
            self._require(name)
        defaults = {f.name: self._default_for(f) for f in schema}
        defaults.update(self._apply_input(provided, defaults))
        self.defaults = defaults
        # Persisted values were taken from form_data and are stored as-is.
        self.restored = self._restore()

        values = {**deepcopy(self.defaults), **self.restored}
        self.form_data, self._set_form_data = create_signal(values)
        self.field_states, self._set_field_states = create_signal(self._build_states(values))

    @property
    def F(self) -> FieldAccessProxy:
        """
        Returns a FieldAccessProxy for cleaner field access syntax.
        Usage: form.F.email.value
        """
        return FieldAccessProxy(self)

    def _require(self, name: str) -> NormalizedField:
        try:
            return self.schema[name]
        except KeyError:
            raise UnknownFieldError(name) from None

    def _default_for(self, field: NormalizedField) -> Any:
        if field.has_default:
            return deepcopy(field.default_value)
        return self.schema.registry.empty_value(field.component)

    def _restore(self) -> Dict[str, Any]:
        if self.persistence is None:
            return {}
        snapshot = self.persistence.load()
        ignored = [name for name in snapshot if name not in self.schema]
        if ignored:
            logger.debug(f"Ignoring restored values for unknown fields: {ignored}")
        return {name: value for name, value in snapshot.items() if name in self.schema}

    def _apply_input(self, values: Mapping[str, Any], base: Mapping[str, Any]) -> Dict[str, Any]:
        """Runs each field's input transform over externally supplied values."""
        ctx = EvalCtx({**base, **values}, self.context)
        result = {}
        for name, value in values.items():
            transform = self.schema[name].transform_input
            result[name] = self._transform(name, transform, value, ctx)
        return result

    def _transform(self, name: str, transform: Optional[Callable[[Any, Any], Any]], value: Any, ctx: EvalCtx) -> Any:
        """Applies a field transform; when it raises, the value is kept unchanged."""
        if transform is None:
            return value
        try:
            return transform(value, ctx)
        except Exception as e:
            self.diagnostics.report(name, "transform", e)
            return value

    def _build_states(self, values: Mapping[str, Any]) -> Dict[str, FieldState]:
        ctx = EvalCtx(values, self.context)
        aspects = self.predicates.evaluate_all(ctx)
        return {
            field.name: FieldState(options=self.options.resolve(field, ctx), **aspects[field.name])
            for field in self.schema
        }

    # Reading

    def eval_ctx(self) -> EvalCtx:
        return EvalCtx(self.form_data.peek(), self.context)

    def get_value(self, name: str) -> Any:
        self._require(name)
        return self.form_data()[name]

    def field_state(self, name: str) -> FieldState:
        self._require(name)
        return self.field_states()[name]

    def snapshot(self) -> Dict[str, Any]:
        """Returns a detached copy of the current values."""
        return deepcopy(self.form_data.peek())

    def is_required(self, name: str) -> bool:
        return self._require(name).required

    @property
    def errors(self) -> Dict[str, str]:
        return {name: state.error for name, state in self.field_states().items() if state.error}

    def is_valid(self) -> bool:
        """True when no field currently carries an error."""
        return not self.errors

    # Mutation

    def set_value(self, name: str, value: Any) -> None:
        self._require(name)
        current = self.form_data.peek()
        if name in current and current[name] == value:
            return
        self._commit({**current, name: value}, [name])

    def set_values(self, values: Mapping[str, Any]) -> None:
        """
        Applies several external values at once, running each field's input
        transform. Dependents are re-evaluated once and a single persistence
        write is scheduled.
        """
        for name in values:
            self._require(name)
        current = self.form_data.peek()
        incoming = self._apply_input(values, current)
        changed = [name for name, value in incoming.items() if name not in current or current[name] != value]
        if not changed:
            return
        self._commit({**current, **incoming}, changed)

    def _commit(self, new_values: Dict[str, Any], changed: List[str]) -> None:
        ctx = EvalCtx(new_values, self.context)
        aspects = self.predicates.evaluate(changed, ctx)

        refetch = sorted({
            dependent
            for name in changed
            for dependent in self.schema.dependents.get(name, ())
            if self.schema[dependent].has_dynamic_options
        })
        options = {name: self.options.resolve(self.schema[name], ctx) for name in refetch}

        states = dict(self.field_states.peek())
        for name, changes in aspects.items():
            states[name] = states[name].evolve(**changes)
        for name, resolved in options.items():
            states[name] = states[name].evolve(options=resolved)

        batch_updates(lambda: [
            self._set_form_data(new_values),
            self._set_field_states(states),
        ])
        self._schedule_persist()

    def _update_state(self, name: str, **changes: Any) -> None:
        states = self.field_states.peek()
        updated = states[name].evolve(**changes)
        if updated != states[name]:
            self._set_field_states({**states, name: updated})

    def set_field_error(self, name: str, message: Optional[str]) -> None:
        """Publishes a validation outcome. Other fields are not re-evaluated."""
        self._require(name)
        self._update_state(name, error=message or None)

    def _set_validating(self, name: str, validating: bool) -> None:
        if self._disposed:
            return
        self._update_state(name, validating=validating)

    def _publish_options(self, name: str, options: List[Option]) -> None:
        if self._disposed:
            return
        self._update_state(name, options=options)

    def reset(self, to_defaults: bool = False) -> None:
        """
        Restores the initial values and clears every error.

        Args:
            to_defaults: Skip the snapshot restored from storage and go back to
                         the schema defaults only.
        """
        values = deepcopy(self.defaults)
        if not to_defaults:
            values.update(deepcopy(self.restored))
        self._replace_all(values)

    def clear(self) -> None:
        """Sets every field to its widget's empty value and clears every error."""
        registry = self.schema.registry
        self._replace_all({field.name: registry.empty_value(field.component) for field in self.schema})

    def _replace_all(self, values: Dict[str, Any]) -> None:
        self.validation.cancel()
        states = self._build_states(values)
        batch_updates(lambda: [
            self._set_form_data(values),
            self._set_field_states(states),
        ])
        self._schedule_persist()

    def _schedule_persist(self) -> None:
        if self.persistence is not None:
            self.persistence.schedule(self.form_data.peek())

    # Validation

    def _read(self, name: str) -> Tuple[Any, EvalCtx]:
        return self.form_data.peek()[name], self.eval_ctx()

    def handle_blur(self, name: str) -> Optional[asyncio.Task]:
        """
        Validates a field after it loses focus. Hidden fields are skipped.
        Returns the task of an asynchronous check, if one was started.
        """
        field = self._require(name)
        if not self.field_states.peek()[name].visible:
            return None
        return self.validation.trigger(field, self._read)

    async def validate_field(self, name: str) -> Optional[str]:
        """Validates one field now and publishes the outcome."""
        field = self._require(name)
        if not self.field_states.peek()[name].visible:
            self.set_field_error(name, None)
            return None
        value, ctx = self._read(name)
        result = await self.validation.run_all([(field, value)], ctx)
        self.set_field_error(name, result[name])
        return result[name]

    async def validate(self) -> Dict[str, str]:
        """
        Validates every visible field concurrently and publishes all outcomes.
        Hidden fields lose any previous error.

        Returns:
            Mapping of field name to error message, failing fields only.
        """
        values = self.form_data.peek()
        states = self.field_states.peek()
        visible = [field for field in self.schema if states[field.name].visible]
        results = await self.validation.run_all([(field, values[field.name]) for field in visible],
                                                EvalCtx(values, self.context))

        def publish():
            for field in self.schema:
                self.set_field_error(field.name, results.get(field.name))
        batch_updates(publish)
        return {name: message for name, message in results.items() if message}

    def output_values(self) -> Dict[str, Any]:
        """
        Values as submitted: hidden fields are left out unless they keep
        their value, and output transforms are applied.
        """
        values = self.form_data.peek()
        states = self.field_states.peek()
        ctx = EvalCtx(values, self.context)
        output = {}
        for field in self.schema:
            if not states[field.name].visible and not field.hide_value:
                continue
            value = deepcopy(values[field.name])
            output[field.name] = self._transform(field.name, field.transform_output, value, ctx)
        return output

    async def submit(self) -> SubmitResult:
        errors = await self.validate()
        values = self.output_values()
        if self.submit_transform is not None:
            values = self.submit_transform(values)
        if errors:
            logger.debug(f"Submit blocked by invalid fields: {sorted(errors)}")
        return SubmitResult(valid=not errors, values=values, errors=errors)

    # Rendering

    def field_props(self, name: str) -> Dict[str, Any]:
        """Builds the props a renderer needs for one field."""
        field = self._require(name)
        state = self.field_states()[name]
        return {
            **field.props,
            "name": field.name,
            "label": field.label,
            "value": self.form_data()[name],
            "visible": state.visible,
            "disabled": state.disabled,
            "readonly": state.readonly,
            "required": field.required,
            "options": [] if state.options is PENDING else list(state.options),
            "loading": state.loading,
            "error": state.error if state.visible else None,
            "validating": state.validating,
            "layout": dict(field.layout),
        }

    def render(self, name: str) -> Any:
        field = self._require(name)
        return self.schema.registry.get(field.component).render(self.field_props(name))

    # Lifecycle

    def watch(self, fn: Callable[[], Any]) -> Effect:
        """
        Runs ``fn`` now and again whenever a value or field state it read
        changes. The effect is disposed together with the form.
        """
        effect = create_effect(fn)
        self._effects.append(effect)
        return effect

    async def wait_idle(self) -> None:
        """Waits for in-flight option loaders and validations to settle."""
        await self.tasks.wait_idle()

    def dispose(self) -> None:
        """
        Stops all background work and writes any pending snapshot. Results
        arriving afterwards are dropped.
        """
        if self._disposed:
            return
        self._disposed = True
        self.validation.cancel()
        self.tasks.cancel_all()
        if self.persistence is not None:
            self.persistence.flush()
        for effect in self._effects:
            effect.dispose()
        self._effects.clear()


def create_form(schema: Union[Schema, NormalizedSchema, Mapping[str, Any]],
                storage: Optional[StorageBackend] = None, *,
                initial_values: Optional[Mapping[str, Any]] = None,
                registry: Optional[WidgetRegistry] = None,
                options_cache_ttl: int = DEFAULT_OPTIONS_CACHE_TTL,
                submit_transform: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None,
                messages: Optional[Mapping[str, str]] = None,
                context: Optional[Mapping[str, Any]] = None,
                clock: Optional[Callable[[], int]] = None,
                on_diagnostic: Optional[Callable[[Diagnostic], None]] = None) -> Form:
    """
    Factory function to normalize a schema and build a Form for it.

    Args:
        schema: A Schema, its dict form, or an already normalized schema.
        storage: Backend for persisted snapshots, used when the schema persists.
        initial_values: Values taking precedence over schema defaults.
        registry: Widget registry; the built-in one when omitted.
        options_cache_ttl: Lifetime in ms of cached dynamic options; 0 disables caching.
        submit_transform: Post-processes the submitted values.
        messages: Overrides for the built-in rule messages.
        context: Extra read-only context exposed to evaluation functions as ``ctx.extra``.
        clock: Epoch-milliseconds time source.
        on_diagnostic: Receives every non-fatal evaluation error.

    Raises:
        ConfigurationError: when the schema is invalid.
    """
    if not isinstance(schema, NormalizedSchema):
        schema = normalize(schema, registry=registry, messages=messages)
    return Form(
        schema,
        storage,
        initial_values=initial_values,
        options_cache_ttl=options_cache_ttl,
        submit_transform=submit_transform,
        messages=messages,
        context=context,
        clock=clock,
        on_diagnostic=on_diagnostic,
    )

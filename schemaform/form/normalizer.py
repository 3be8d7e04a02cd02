"""
Schema normalization.

Checks a Schema for structural errors and flattens it into an indexed
field table. Everything that can be wrong with a schema is reported here,
so a form built from a NormalizedSchema never meets a configuration error
at runtime.
"""
import logging
from collections import deque
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set

from schemaform.constants import DEFAULT_PERSIST_TTL, merge_layout_config
from schemaform.exceptions import (
    CyclicDependencyError,
    DuplicateFieldError,
    InvalidSchemaError,
    UnknownDependencyError,
    UnknownWidgetError,
)
from schemaform.form.schema import Schema
from schemaform.form.validator import Rule, compile_rules, is_required
from schemaform.storage import PersistConfig
from schemaform.widgets import WidgetRegistry, default_registry

logger = logging.getLogger(__name__)


class NormalizedField:
    __slots__ = ("name", "label", "component", "default_value", "has_default", "depends_on",
                 "visible", "disabled", "readonly", "options", "rule", "layout", "props",
                 "transform_input", "transform_output", "hide_value")

    def __init__(self, **attrs: Any):
        for key in self.__slots__:
            setattr(self, key, attrs.get(key))

    @property
    def has_dynamic_options(self) -> bool:
        return callable(self.options)

    @property
    def required(self) -> bool:
        return is_required(self.rule)

    def __repr__(self):
        return f"NormalizedField({self.name!r}, {self.component!r})"


class NormalizedSchema:
    def __init__(self, fields: Dict[str, NormalizedField], dependents: Dict[str, FrozenSet[str]],
                 layout: Dict[str, Any], persist: Optional[PersistConfig], registry: WidgetRegistry):
        self.fields = fields
        self.dependents = dependents
        self.layout = layout
        self.persist = persist
        self.registry = registry

    @property
    def field_names(self) -> List[str]:
        return list(self.fields)

    def __contains__(self, name: str) -> bool:
        return name in self.fields

    def __getitem__(self, name: str) -> NormalizedField:
        return self.fields[name]

    def __iter__(self):
        return iter(self.fields.values())

    def affected_by(self, names: Iterable[str]) -> List[str]:
        """
        Breadth-first closure over the reverse-dependency index: every field
        that depends, directly or transitively, on one of ``names``. The
        changed fields themselves are not included.
        """
        start = list(names)
        visited: Set[str] = set(start)
        queue = deque(start)
        affected: List[str] = []
        while queue:
            current = queue.popleft()
            for dependent in sorted(self.dependents.get(current, ())):
                if dependent in visited:
                    continue
                visited.add(dependent)
                affected.append(dependent)
                queue.append(dependent)
        return affected


def _find_cycle(graph: Mapping[str, List[str]]) -> Optional[List[str]]:
    """
    Depth-first search with an explicit recursion stack. Returns the first
    cycle found as a path that starts and ends on the same node.
    """
    done: Set[str] = set()
    for root in graph:
        if root in done:
            continue
        path: List[str] = [root]
        on_stack: Set[str] = {root}
        iterators = [iter(graph[root])]
        while iterators:
            node = next(iterators[-1], None)
            if node is None:
                iterators.pop()
                finished = path.pop()
                on_stack.discard(finished)
                done.add(finished)
                continue
            if node in on_stack:
                return path[path.index(node):] + [node]
            if node in done:
                continue
            path.append(node)
            on_stack.add(node)
            iterators.append(iter(graph[node]))
    return None


def _normalize_persist(schema: Schema) -> Optional[PersistConfig]:
    persist = schema.persist
    if persist is None or persist is False:
        return None
    if persist is True:
        if not schema.name:
            raise InvalidSchemaError("persist=True requires the schema to have a name")
        return PersistConfig(key=schema.name)
    if isinstance(persist, PersistConfig):
        return persist
    if isinstance(persist, Mapping):
        key = persist.get("key")
        if not isinstance(key, str) or not key:
            raise InvalidSchemaError("persist config requires a non-empty 'key'")
        ttl = persist.get("ttl")
        return PersistConfig(
            key=key,
            ttl=DEFAULT_PERSIST_TTL if ttl is None else ttl,
            on_error=persist.get("onError") or persist.get("on_error"),
        )
    raise InvalidSchemaError(f"Unsupported persist setting: {persist!r}")


def normalize(schema: Schema, registry: Optional[WidgetRegistry] = None,
              messages: Optional[Mapping[str, str]] = None) -> NormalizedSchema:
    """
    Validates and flattens a schema.

    Args:
        schema: A Schema, or its JSON-compatible dict form.
        registry: Widget registry used to check component tags.
        messages: Overrides for the built-in rule messages.

    Raises:
        DuplicateFieldError, UnknownDependencyError, CyclicDependencyError,
        UnknownWidgetError, UnknownRuleError, InvalidRuleError,
        InvalidSchemaError.
    """
    if isinstance(schema, Mapping):
        schema = Schema.from_dict(schema)
    registry = registry if registry is not None else default_registry()

    seen: Set[str] = set()
    for column in schema.columns:
        if column.name in seen:
            raise DuplicateFieldError(column.name)
        seen.add(column.name)

    graph: Dict[str, List[str]] = {}
    dependents: Dict[str, Set[str]] = {column.name: set() for column in schema.columns}
    for column in schema.columns:
        for dependency in column.depends_on_names:
            if dependency not in seen:
                raise UnknownDependencyError(column.name, dependency)
            dependents[dependency].add(column.name)
        graph[column.name] = list(column.depends_on_names)

    cycle = _find_cycle(graph)
    if cycle:
        raise CyclicDependencyError(cycle)

    fields: Dict[str, NormalizedField] = {}
    for column in schema.columns:
        if not column.component_tag:
            raise InvalidSchemaError(f"Field '{column.name}' has no component")
        if column.component_tag not in registry:
            raise UnknownWidgetError(column.name, column.component_tag)
        rule: Optional[Rule] = compile_rules(column.rules_attr, messages, column.name)
        fields[column.name] = NormalizedField(
            name=column.name,
            label=column.label_text if column.label_text is not None else column.name,
            component=column.component_tag,
            default_value=column.default_value_attr if column.has_default else None,
            has_default=column.has_default,
            depends_on=tuple(column.depends_on_names),
            visible=column.visible_attr,
            disabled=column.disabled_attr,
            readonly=column.readonly_attr,
            options=column.options_attr,
            rule=rule,
            layout=merge_layout_config(schema.layout, column.layout_attr),
            props=dict(column.props_attr),
            transform_input=column.transform_input,
            transform_output=column.transform_output,
            hide_value=column.hide_value_flag,
        )

    logger.debug(f"Normalized schema with {len(fields)} fields")
    return NormalizedSchema(
        fields=fields,
        dependents={name: frozenset(names) for name, names in dependents.items()},
        layout=merge_layout_config(schema.layout),
        persist=_normalize_persist(schema),
        registry=registry,
    )

from copy import deepcopy
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, List, Mapping, Optional, Union


class _Pending:
    """Marker for options whose asynchronous resolution has not settled yet."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "PENDING"

    def __bool__(self):
        return False


PENDING = _Pending()


@dataclass(frozen=True)
class Option:
    label: str
    value: Any
    disabled: bool = False

    @classmethod
    def coerce(cls, item: Any) -> 'Option':
        """Accepts an Option, a ``{label, value, disabled?}`` dict or a bare value."""
        if isinstance(item, Option):
            return item
        if isinstance(item, Mapping):
            value = item.get("value")
            label = item.get("label", value)
            return cls(label=str(label), value=value, disabled=bool(item.get("disabled", False)))
        return cls(label=str(item), value=item)


def coerce_options(items: Any) -> List[Option]:
    if items is None:
        return []
    return [Option.coerce(item) for item in items]


class EvalCtx:
    """
    Read-only snapshot handed to predicates, option loaders and rules.

    ``values`` is a deep copy of the form values at the moment the
    context was built, so mutating a nested list or dict never reaches the
    store. ``extra`` carries host context such as the locale.
    """
    __slots__ = ("_values", "_extra")

    def __init__(self, values: Mapping[str, Any], extra: Optional[Mapping[str, Any]] = None):
        self._values = MappingProxyType(deepcopy(dict(values)))
        self._extra = MappingProxyType(dict(extra or {}))

    @property
    def values(self) -> Mapping[str, Any]:
        return self._values

    @property
    def extra(self) -> Mapping[str, Any]:
        return self._extra

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __repr__(self):
        return f"EvalCtx(values={dict(self._values)!r})"


@dataclass(frozen=True)
class FieldState:
    """Derived state of a single field. Rebuilt on change, never edited in place."""
    visible: bool = True
    disabled: bool = False
    readonly: bool = False
    options: Union[List[Option], _Pending] = field(default_factory=list)
    error: Optional[str] = None
    validating: bool = False

    @property
    def loading(self) -> bool:
        return self.options is PENDING

    def evolve(self, **changes) -> 'FieldState':
        return replace(self, **changes)

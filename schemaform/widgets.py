"""
Widget registry.

A field's ``component`` is an opaque tag. The registry maps each tag to a
``Widget`` so that an unknown tag is reported when the schema is normalized
rather than when something tries to render it. Rendering itself belongs to
the host toolkit: register a widget whose ``render`` builds the real control.
"""
import copy
from typing import Any, Dict, Iterator, Optional, Protocol, runtime_checkable


@runtime_checkable
class Widget(Protocol):
    empty_value: Any

    def render(self, props: Dict[str, Any]) -> Any:
        ...


class PropsWidget:
    """Default widget: renders to its props, tagged with the component name."""

    def __init__(self, tag: str, empty_value: Any = None):
        self.tag = tag
        self.empty_value = empty_value

    def render(self, props: Dict[str, Any]) -> Dict[str, Any]:
        return {"component": self.tag, **props}

    def __repr__(self):
        return f"PropsWidget({self.tag!r})"


class WidgetRegistry:
    def __init__(self, widgets: Optional[Dict[str, Widget]] = None):
        self._widgets: Dict[str, Widget] = dict(widgets or {})

    def register(self, tag: str, widget: Widget) -> 'WidgetRegistry':
        if not isinstance(widget, Widget):
            raise TypeError(f"Widget for '{tag}' must define render(props) and empty_value")
        self._widgets[tag] = widget
        return self

    def unregister(self, tag: str) -> None:
        self._widgets.pop(tag, None)

    def get(self, tag: str) -> Widget:
        return self._widgets[tag]

    def empty_value(self, tag: str) -> Any:
        """Returns a fresh copy of the empty value for a widget kind."""
        return copy.deepcopy(self._widgets[tag].empty_value)

    def copy(self) -> 'WidgetRegistry':
        return WidgetRegistry(self._widgets)

    def __contains__(self, tag: str) -> bool:
        return tag in self._widgets

    def __iter__(self) -> Iterator[str]:
        return iter(self._widgets)

    def __len__(self) -> int:
        return len(self._widgets)


_EMPTY_VALUES = {
    # text inputs
    "InputText": "",
    "Textarea": "",
    "Password": "",
    "InputMask": "",
    "InputGroup": "",
    "ColorPicker": "",
    # numeric
    "InputNumber": None,
    "Slider": None,
    "Rating": 0,
    # single choice
    "Select": None,
    "CascadeSelect": None,
    "TreeSelect": None,
    "AutoComplete": None,
    "RadioButton": None,
    "RadioButtonGroup": None,
    "SelectButton": None,
    # multiple choice
    "MultiSelect": [],
    "Listbox": [],
    # toggles
    "Checkbox": False,
    "ToggleSwitch": False,
    "ToggleButton": False,
    "DatePicker": None,
}


def default_registry() -> WidgetRegistry:
    """A registry holding every built-in component tag."""
    registry = WidgetRegistry()
    for tag, empty in _EMPTY_VALUES.items():
        registry.register(tag, PropsWidget(tag, empty))
    return registry

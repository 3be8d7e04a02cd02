from typing import Dict, Any, Callable, Optional, List, Union, Mapping

from schemaform.exceptions import InvalidSchemaError

_UNSET = object()  # Sentinel object to differentiate unset default value from None default value

Boolish = Union[bool, str, Callable[[Any], bool]]


class Field:
    """
    Represents a single field declaration in a form schema.
    """
    def __init__(self, name: str):
        self.name = name
        self.component_tag: Optional[str] = None
        self.label_text: Optional[str] = None
        self.default_value_attr: Any = _UNSET  # Use sentinel
        self.depends_on_names: List[str] = []
        self.visible_attr: Optional[Boolish] = None
        self.disabled_attr: Optional[Boolish] = None
        self.readonly_attr: Optional[Boolish] = None
        self.options_attr: Any = None
        self.rules_attr: Any = None
        self.layout_attr: Dict[str, Any] = {}
        self.props_attr: Dict[str, Any] = {}
        self.transform_input: Optional[Callable[[Any, Any], Any]] = None
        self.transform_output: Optional[Callable[[Any, Any], Any]] = None
        self.hide_value_flag: bool = False

    def widget(self, component: str) -> 'Field':
        """Sets the widget kind tag resolved by the renderer."""
        self.component_tag = component
        return self

    def label(self, text: str) -> 'Field':
        self.label_text = text
        return self

    def default_value(self, value: Any) -> 'Field':
        """
        Sets a default initial value for this field. Without one the field
        starts at its widget's empty value.
        """
        self.default_value_attr = value
        return self

    @property
    def has_default(self) -> bool:
        """Checks if a default value was explicitly set (even if it's None)."""
        return self.default_value_attr is not _UNSET

    def depends_on(self, *names: str) -> 'Field':
        """Declares the fields whose value changes re-evaluate this field."""
        for name in names:
            if not isinstance(name, str):
                raise InvalidSchemaError(f"Field '{self.name}' depends on {name!r}, which is not a field name")
            if name not in self.depends_on_names:
                self.depends_on_names.append(name)
        return self

    def visible(self, predicate: Boolish) -> 'Field':
        self.visible_attr = predicate
        return self

    def disabled(self, predicate: Boolish) -> 'Field':
        self.disabled_attr = predicate
        return self

    def readonly(self, predicate: Boolish) -> 'Field':
        self.readonly_attr = predicate
        return self

    def options(self, source: Any) -> 'Field':
        """
        Sets the selectable options: a static list, or a function of the
        evaluation context returning a list or an awaitable of one.
        """
        self.options_attr = source
        return self

    def rules(self, *rules: Any) -> 'Field':
        """
        Adds validation rules: a rule string such as ``"required|min:5"``,
        an object with ``validate(value)``, or a ``(value, ctx)`` function.
        Calling it again appends, and the rules run in declaration order.
        """
        current = self.rules_attr
        collected = [] if current is None else (list(current) if isinstance(current, list) else [current])
        collected.extend(rules)
        self.rules_attr = collected[0] if len(collected) == 1 else collected
        return self

    def layout(self, **layout: Any) -> 'Field':
        self.layout_attr.update(layout)
        return self

    def props(self, **props: Any) -> 'Field':
        """Extra props passed through untouched to the widget."""
        self.props_attr.update(props)
        return self

    def transform(self, input: Callable[[Any, Any], Any] = None, output: Callable[[Any, Any], Any] = None) -> 'Field':
        if input is not None:
            self.transform_input = input
        if output is not None:
            self.transform_output = output
        return self

    def hide_value(self, keep: bool = True) -> 'Field':
        """Keeps the value in submitted output even while the field is hidden."""
        self.hide_value_flag = keep
        return self

    def __repr__(self):
        return f"Field({self.name!r}, {self.component_tag!r})"


class Schema:
    """
    Ordered field declarations plus form-level layout and persistence settings.
    """
    def __init__(self, name: Optional[str] = None, layout: Optional[Dict[str, Any]] = None,
                 persist: Any = None):
        self.name = name
        self.layout: Dict[str, Any] = dict(layout or {})
        self.persist = persist
        self.columns: List[Field] = []

    def field(self, name: str, component: Optional[str] = None) -> Field:
        """Adds a field to the schema."""
        field = Field(name)
        if component is not None:
            field.widget(component)
        self.columns.append(field)
        return field

    @property
    def field_names(self) -> List[str]:
        return [field.name for field in self.columns]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'Schema':
        """
        Builds a schema from the JSON-compatible shape::

            {"layout": {...}, "persist": {...} | bool,
             "columns": [{"field", "label", "component", "defaultValue",
                          "dependsOn", "visible", "disabled", "readonly",
                          "options", "rules", "layout", "props",
                          "transform", "hideValue"}, ...]}
        """
        if not isinstance(data, Mapping):
            raise InvalidSchemaError(f"Schema must be a mapping, got {type(data).__name__}")
        columns = data.get("columns")
        if not isinstance(columns, (list, tuple)):
            raise InvalidSchemaError("Schema 'columns' must be a list of field definitions")

        schema = cls(name=data.get("name"), layout=data.get("layout"), persist=data.get("persist"))
        for index, column in enumerate(columns):
            if not isinstance(column, Mapping):
                raise InvalidSchemaError(f"Column {index} must be a mapping")
            name = column.get("field")
            if not isinstance(name, str) or not name:
                raise InvalidSchemaError(f"Column {index} is missing a 'field' name")
            component = column.get("component")
            if not isinstance(component, str) or not component:
                raise InvalidSchemaError(f"Field '{name}' is missing a 'component'")

            field = schema.field(name, component)
            if "label" in column:
                field.label(column["label"])
            if "defaultValue" in column:
                field.default_value(column["defaultValue"])
            depends_on = column.get("dependsOn") or []
            if not isinstance(depends_on, (list, tuple)) or not all(isinstance(dep, str) for dep in depends_on):
                raise InvalidSchemaError(f"Field '{name}' has 'dependsOn' that is not a list of field names")
            field.depends_on(*depends_on)
            field.visible_attr = column.get("visible")
            field.disabled_attr = column.get("disabled")
            field.readonly_attr = column.get("readonly")
            field.options_attr = column.get("options")
            field.rules_attr = column.get("rules")
            field.layout(**(column.get("layout") or {}))
            field.props(**(column.get("props") or {}))
            transform = column.get("transform") or {}
            field.transform(input=transform.get("input"), output=transform.get("output"))
            field.hide_value(bool(column.get("hideValue", False)))
        return schema

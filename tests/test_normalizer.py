import pytest

from schemaform.exceptions import (
    CyclicDependencyError,
    DuplicateFieldError,
    InvalidRuleError,
    InvalidSchemaError,
    UnknownDependencyError,
    UnknownRuleError,
    UnknownWidgetError,
)
from schemaform.form.normalizer import normalize
from schemaform.form.schema import Schema
from schemaform.storage import PersistConfig
from schemaform.widgets import PropsWidget, default_registry


def chain_schema():
    schema = Schema()
    schema.field("country", "Select")
    schema.field("region", "Select").depends_on("country")
    schema.field("city", "Select").depends_on("region")
    schema.field("notes", "Textarea")
    return schema


def test_reverse_dependency_index():
    normalized = normalize(chain_schema())

    assert normalized.dependents["country"] == frozenset({"region"})
    assert normalized.dependents["region"] == frozenset({"city"})
    assert normalized.dependents["city"] == frozenset()
    assert normalized.field_names == ["country", "region", "city", "notes"]


def test_affected_by_is_transitive_and_excludes_start():
    normalized = normalize(chain_schema())

    assert normalized.affected_by(["country"]) == ["region", "city"]
    assert normalized.affected_by(["notes"]) == []


def test_duplicate_field_names_rejected():
    schema = Schema()
    schema.field("email", "InputText")
    schema.field("email", "InputText")

    with pytest.raises(DuplicateFieldError) as excinfo:
        normalize(schema)
    assert excinfo.value.field_name == "email"


def test_cycle_detected():
    schema = Schema()
    schema.field("a", "InputText").depends_on("c")
    schema.field("b", "InputText").depends_on("a")
    schema.field("c", "InputText").depends_on("b")

    with pytest.raises(CyclicDependencyError) as excinfo:
        normalize(schema)
    cycle = excinfo.value.cycle
    assert cycle[0] == cycle[-1]
    assert set(cycle) == {"a", "b", "c"}


def test_self_dependency_is_a_cycle():
    schema = Schema()
    schema.field("a", "InputText").depends_on("a")

    with pytest.raises(CyclicDependencyError):
        normalize(schema)


def test_long_acyclic_chain_normalizes():
    schema = Schema()
    schema.field("f0", "InputText")
    for i in range(1, 2000):
        schema.field(f"f{i}", "InputText").depends_on(f"f{i - 1}")

    normalized = normalize(schema)
    assert len(normalized.affected_by(["f0"])) == 1999


def test_diamond_is_not_a_cycle():
    schema = Schema()
    schema.field("top", "InputText")
    schema.field("left", "InputText").depends_on("top")
    schema.field("right", "InputText").depends_on("top")
    schema.field("bottom", "InputText").depends_on("left", "right")

    normalized = normalize(schema)
    assert normalized.affected_by(["top"]) == ["left", "right", "bottom"]


def test_unknown_dependency_rejected():
    schema = Schema()
    schema.field("a", "InputText").depends_on("missing")

    with pytest.raises(UnknownDependencyError):
        normalize(schema)


def test_unknown_widget_rejected():
    schema = Schema()
    schema.field("a", "FancySpinner")

    with pytest.raises(UnknownWidgetError):
        normalize(schema)


def test_custom_widget_can_be_registered():
    registry = default_registry().register("FancySpinner", PropsWidget("FancySpinner", 0))
    schema = Schema()
    schema.field("a", "FancySpinner")

    normalized = normalize(schema, registry=registry)
    assert normalized["a"].component == "FancySpinner"


def test_unknown_rule_token_rejected_at_normalization():
    schema = Schema()
    schema.field("a", "InputText").rules("required|shiny")

    with pytest.raises(UnknownRuleError) as excinfo:
        normalize(schema)
    assert excinfo.value.token == "shiny"
    assert excinfo.value.field_name == "a"


def test_unsupported_rule_shape_rejected():
    schema = Schema()
    schema.field("a", "InputText").rules(42)

    with pytest.raises(InvalidRuleError):
        normalize(schema)


def test_from_dict_schema():
    normalized = normalize({
        "name": "signup",
        "layout": {"cols": 2},
        "persist": {"key": "signup", "ttl": 1000},
        "columns": [
            {"field": "email", "label": "Email", "component": "InputText", "rules": "required|email",
             "layout": {"span": 20}},
            {"field": "plan", "component": "Select", "defaultValue": "free",
             "options": ["free", "pro"], "dependsOn": ["email"]},
        ],
    })

    email = normalized["email"]
    assert email.label == "Email"
    assert email.required
    assert email.layout["cols"] == 2
    assert email.layout["span"] == 12
    assert normalized["plan"].default_value == "free"
    assert normalized["plan"].label == "plan"
    assert normalized.persist == PersistConfig(key="signup", ttl=1000)


def test_from_dict_requires_columns():
    with pytest.raises(InvalidSchemaError):
        normalize({"layout": {}})


def test_persist_true_requires_schema_name():
    schema = Schema(persist=True)
    schema.field("a", "InputText")
    with pytest.raises(InvalidSchemaError):
        normalize(schema)

    named = Schema(name="profile", persist=True)
    named.field("a", "InputText")
    assert normalize(named).persist.storage_key == "schemaform:profile"


def test_string_depends_on_rejected():
    with pytest.raises(InvalidSchemaError):
        normalize({"columns": [
            {"field": "role", "component": "Select"},
            {"field": "adminCode", "component": "Password", "dependsOn": "role"},
        ]})


def test_non_numeric_span_rejected():
    schema = Schema()
    schema.field("a", "InputText").layout(span="wide")

    with pytest.raises(InvalidSchemaError):
        normalize(schema)

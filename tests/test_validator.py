import asyncio
from typing import Annotated

import pytest
from pydantic import Field as PydanticField

from schemaform.exceptions import UnknownRuleError, ValidationError
from schemaform.form.context import EvalCtx
from schemaform.form.validator import (
    CustomRule,
    ExternalRule,
    PydanticRule,
    RuleChain,
    StringRule,
    Validator,
    compile_rules,
    is_required,
    parse_rule_string,
)

CTX = EvalCtx({})


def run(result):
    if asyncio.iscoroutine(result):
        return asyncio.run(result)
    return result


def test_required_min_rule_string():
    rule = StringRule("required|min:5")

    assert rule.check("ab", CTX) == "Must be at least 5 characters long."
    assert rule.check("abcdef", CTX) is None
    assert rule.check("", CTX) == "This field is required."


def test_required_treats_blank_and_empty_collections_as_missing():
    assert Validator.required(None)
    assert Validator.required("   ")
    assert Validator.required([])
    assert Validator.required({})
    assert Validator.required(0) is None
    assert Validator.required(False) is None


def test_min_and_max_apply_to_numbers():
    rule = StringRule("min:3|max:10")

    assert rule.check(2, CTX) == "Must be at least 3."
    assert rule.check(11, CTX) == "Must be at most 10."
    assert rule.check(7, CTX) is None


def test_length_tokens_apply_to_lists():
    rule = StringRule("minLength:2|maxLength:3")

    assert rule.check(["a"], CTX) == "Must have a length of at least 2."
    assert rule.check(["a", "b", "c", "d"], CTX) == "Must have a length of at most 3."
    assert rule.check("abc", CTX) is None


def test_format_tokens():
    assert StringRule("email").check("not-an-email", CTX) == "Must be a valid email address."
    assert StringRule("email").check("a@b.io", CTX) is None
    assert StringRule("url").check("example", CTX) == "Must be a valid URL."
    assert StringRule("url").check("https://example.com/x", CTX) is None
    assert StringRule("integer").check("4.5", CTX) == "Must be an integer."
    assert StringRule("integer").check(12, CTX) is None


def test_format_tokens_skip_empty_values():
    rule = StringRule("email|url|integer|pattern:^x")
    assert rule.check("", CTX) is None
    assert rule.check(None, CTX) is None


def test_pattern_with_flags():
    rule = StringRule("pattern:/^abc$/i")

    assert rule.check("ABC", CTX) is None
    assert rule.check("abd", CTX) == "Invalid format."


def test_custom_messages_override_defaults():
    rule = StringRule("required|min:5", messages={"minChars": "Too short ({n})"})

    assert rule.check("ab", CTX) == "Too short (5)"
    assert rule.check(None, CTX) == "This field is required."


@pytest.mark.parametrize("rule_str", ["bogus", "min:abc", "pattern:", "pattern:/(/"])
def test_malformed_rule_strings(rule_str):
    with pytest.raises(UnknownRuleError):
        StringRule(rule_str)


def test_parse_rule_string():
    parsed = parse_rule_string("required | min:5 | pattern:^a+$")

    assert [rule.name for rule in parsed] == ["required", "min", "pattern"]
    assert parsed[1].arg == 5


class Upper:
    def validate(self, value):
        if value != value.upper():
            raise ValidationError("Must be upper case.")
        return value


class AsyncUpper:
    async def validate(self, value):
        await asyncio.sleep(0)
        if value != value.upper():
            raise ValidationError("Must be upper case.")
        return value


def test_external_validator():
    rule = compile_rules(Upper())

    assert isinstance(rule, ExternalRule)
    assert rule.check("abc", CTX) == "Must be upper case."
    assert rule.check("ABC", CTX) is None


def test_external_validator_async_path():
    rule = compile_rules(AsyncUpper())

    assert run(rule.check("abc", CTX)) == "Must be upper case."
    assert run(rule.check("ABC", CTX)) is None


def test_pydantic_rule():
    rule = compile_rules(PydanticRule(Annotated[str, PydanticField(min_length=3)]))

    message = rule.check("ab", CTX)
    assert message and "3" in message
    assert rule.check("abc", CTX) is None


def test_custom_rule_results():
    rule = compile_rules(lambda value, ctx: True if value == ctx.get("expected") else "Mismatch")
    ctx = EvalCtx({"expected": "x"})

    assert isinstance(rule, CustomRule)
    assert rule.check("x", ctx) is None
    assert rule.check("y", ctx) == "Mismatch"


def test_custom_rule_non_string_falsy_result_fails():
    rule = compile_rules(lambda value, ctx: False)
    assert rule.check("x", CTX) == "Validation failed."


def test_custom_rule_errors_propagate_to_the_runner():
    def broken(value, ctx):
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        compile_rules(broken).check("x", CTX)


def test_custom_async_rule():
    async def no_error(value, ctx):
        await asyncio.sleep(0.01)
        return "Contains a forbidden word" if "error" in value else True

    rule = compile_rules(no_error)

    assert run(rule.check("err" + "or", CTX)) == "Contains a forbidden word"
    assert run(rule.check("ok", CTX)) is None


def test_rule_list_reports_first_failure_in_order():
    async def never_ok(value, ctx):
        return "async failure"

    rule = compile_rules(["required", never_ok, "min:100"])

    assert isinstance(rule, RuleChain)
    assert rule.check("", CTX) == "This field is required."
    assert run(rule.check("abc", CTX)) == "async failure"


def test_is_required():
    assert is_required(compile_rules("required|email"))
    assert is_required(compile_rules([Upper(), "required"]))
    assert not is_required(compile_rules("email"))
    assert not is_required(compile_rules(lambda value, ctx: True))
    assert not is_required(None)

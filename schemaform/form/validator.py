import inspect
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union, Dict, List, Mapping
from urllib.parse import urlparse

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from schemaform.exceptions import InvalidRuleError, UnknownRuleError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_MESSAGES: Dict[str, str] = {
    "required": "This field is required.",
    "minChars": "Must be at least {n} characters long.",
    "maxChars": "Must be at most {n} characters long.",
    "minValue": "Must be at least {n}.",
    "maxValue": "Must be at most {n}.",
    "minLength": "Must have a length of at least {n}.",
    "maxLength": "Must have a length of at most {n}.",
    "email": "Must be a valid email address.",
    "url": "Must be a valid URL.",
    "pattern": "Invalid format.",
    "integer": "Must be an integer.",
    "failed": "Validation failed.",
}

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_REGEX_LITERAL = re.compile(r"^/(.*)/([a-z]*)$", re.S)
_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}

Checker = Callable[[Any], Optional[str]]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_blank(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


class Validator:
    """
    Built-in checkers behind the rule string tokens. Each returns an error
    message, or None when the value passes.
    """

    @staticmethod
    def required(value: Any, error_message: str = DEFAULT_MESSAGES["required"]) -> Optional[str]:
        if value is None:
            return error_message
        if isinstance(value, str) and not value.strip():
            return error_message
        if isinstance(value, (list, dict, tuple, set)) and not value:
            return error_message
        return None

    @staticmethod
    def min(n: Union[int, float], chars_message: str, value_message: str) -> Checker:
        """Minimum string length, or minimum numeric value."""
        def validate(value: Any) -> Optional[str]:
            if isinstance(value, str) and len(value) < n:
                return chars_message
            if _is_number(value) and value < n:
                return value_message
            return None
        return validate

    @staticmethod
    def max(n: Union[int, float], chars_message: str, value_message: str) -> Checker:
        def validate(value: Any) -> Optional[str]:
            if isinstance(value, str) and len(value) > n:
                return chars_message
            if _is_number(value) and value > n:
                return value_message
            return None
        return validate

    @staticmethod
    def min_length(n: int, error_message: str) -> Checker:
        def validate(value: Any) -> Optional[str]:
            if isinstance(value, (str, list, tuple)) and len(value) < n:
                return error_message
            return None
        return validate

    @staticmethod
    def max_length(n: int, error_message: str) -> Checker:
        def validate(value: Any) -> Optional[str]:
            if isinstance(value, (str, list, tuple)) and len(value) > n:
                return error_message
            return None
        return validate

    @staticmethod
    def email(error_message: str) -> Checker:
        def validate(value: Any) -> Optional[str]:
            # Empty values pass; 'required' handles mandatory fields.
            if _is_blank(value):
                return None
            if not _EMAIL_PATTERN.match(str(value)):
                return error_message
            return None
        return validate

    @staticmethod
    def url(error_message: str) -> Checker:
        def validate(value: Any) -> Optional[str]:
            if _is_blank(value):
                return None
            try:
                parsed = urlparse(str(value))
            except ValueError:
                return error_message
            if not parsed.scheme or not (parsed.netloc or parsed.path):
                return error_message
            return None
        return validate

    @staticmethod
    def regex(compiled_pattern: re.Pattern, error_message: str) -> Checker:
        def validate(value: Any) -> Optional[str]:
            if _is_blank(value):
                return None
            if not compiled_pattern.search(str(value)):
                return error_message
            return None
        return validate

    @staticmethod
    def integer(error_message: str) -> Checker:
        def validate(value: Any) -> Optional[str]:
            if _is_blank(value) or value is False:
                return None
            try:
                number = float(value)
            except (TypeError, ValueError):
                return error_message
            if not number.is_integer():
                return error_message
            return None
        return validate


@dataclass(frozen=True)
class ParsedRule:
    name: str
    arg: Optional[float] = None
    raw_arg: Optional[str] = None


_BARE_TOKENS = ("required", "email", "url", "integer")
_NUMERIC_TOKENS = ("min", "max", "minLength", "maxLength")


def parse_rule_string(rule_str: str, field_name: Optional[str] = None) -> List[ParsedRule]:
    """
    Parses a pipe-separated rule string such as ``"required|min:5|email"``.

    Raises:
        UnknownRuleError: for an unknown token or a malformed argument.
    """
    parsed: List[ParsedRule] = []
    for part in rule_str.split("|"):
        part = part.strip()
        if not part:
            continue
        if part in _BARE_TOKENS:
            parsed.append(ParsedRule(part))
            continue
        name, sep, raw = part.partition(":")
        if not sep:
            raise UnknownRuleError(part, field_name=field_name)
        if name in _NUMERIC_TOKENS:
            try:
                number = float(raw)
            except ValueError:
                raise UnknownRuleError(part, "argument must be a number", field_name) from None
            parsed.append(ParsedRule(name, arg=int(number) if number.is_integer() else number, raw_arg=raw))
        elif name == "pattern":
            if not raw:
                raise UnknownRuleError(part, "pattern is empty", field_name)
            parsed.append(ParsedRule(name, raw_arg=raw))
        else:
            raise UnknownRuleError(part, field_name=field_name)
    return parsed


def compile_pattern(raw: str) -> re.Pattern:
    """Compiles ``/body/flags`` or a bare regular expression."""
    match = _REGEX_LITERAL.match(raw)
    if not match:
        return re.compile(raw)
    flags = 0
    for flag in match.group(2):
        if flag not in _REGEX_FLAGS:
            raise re.error(f"unsupported flag '{flag}'")
        flags |= _REGEX_FLAGS[flag]
    return re.compile(match.group(1), flags)


class Rule:
    """Common contract: ``check(value, ctx)`` returns a message, None, or an awaitable of either."""

    def check(self, value: Any, ctx: Any) -> Any:
        raise NotImplementedError


class StringRule(Rule):
    def __init__(self, rule_str: str, messages: Mapping[str, str] = None, field_name: Optional[str] = None):
        self.rule_str = rule_str
        self.parsed = parse_rule_string(rule_str, field_name)
        self.checkers: List[Checker] = [self._build(rule, {**DEFAULT_MESSAGES, **(messages or {})}, field_name)
                                        for rule in self.parsed]

    @staticmethod
    def _build(rule: ParsedRule, messages: Mapping[str, str], field_name: Optional[str]) -> Checker:
        n = rule.arg
        if rule.name == "required":
            return lambda value: Validator.required(value, messages["required"])
        if rule.name == "min":
            return Validator.min(n, messages["minChars"].format(n=n), messages["minValue"].format(n=n))
        if rule.name == "max":
            return Validator.max(n, messages["maxChars"].format(n=n), messages["maxValue"].format(n=n))
        if rule.name == "minLength":
            return Validator.min_length(n, messages["minLength"].format(n=n))
        if rule.name == "maxLength":
            return Validator.max_length(n, messages["maxLength"].format(n=n))
        if rule.name == "email":
            return Validator.email(messages["email"])
        if rule.name == "url":
            return Validator.url(messages["url"])
        if rule.name == "integer":
            return Validator.integer(messages["integer"])
        try:
            compiled = compile_pattern(rule.raw_arg)
        except re.error as e:
            raise UnknownRuleError(f"pattern:{rule.raw_arg}", f"invalid pattern ({e})", field_name) from None
        return Validator.regex(compiled, messages["pattern"])

    @property
    def is_required(self) -> bool:
        return any(rule.name == "required" for rule in self.parsed)

    def check(self, value: Any, ctx: Any) -> Optional[str]:
        for checker in self.checkers:
            error_message = checker(value)
            if error_message:
                return error_message
        return None

    def __repr__(self):
        return f"StringRule({self.rule_str!r})"


class ExternalRule(Rule):
    """
    Adapts an object exposing ``validate(value)`` that returns the value or
    raises. ``validate`` may also return an awaitable.
    """
    def __init__(self, validator: Any, messages: Mapping[str, str] = None):
        self.validator = validator
        self.failed_message = {**DEFAULT_MESSAGES, **(messages or {})}["failed"]

    def _message(self, error: Exception) -> str:
        if isinstance(error, ValidationError):
            return error.message or self.failed_message
        return str(error) or self.failed_message

    def check(self, value: Any, ctx: Any) -> Any:
        try:
            result = self.validator.validate(value)
        except Exception as e:
            return self._message(e)
        if inspect.isawaitable(result):
            return self._await(result)
        return None

    async def _await(self, pending) -> Optional[str]:
        try:
            await pending
        except Exception as e:
            return self._message(e)
        return None


class CustomRule(Rule):
    """
    Adapts ``fn(value, ctx)`` returning ``True``, an error message, or an
    awaitable of either. Exceptions raised by ``fn`` propagate to the caller.
    """
    def __init__(self, fn: Callable[[Any, Any], Any], messages: Mapping[str, str] = None):
        self.fn = fn
        self.failed_message = {**DEFAULT_MESSAGES, **(messages or {})}["failed"]

    def _normalize(self, result: Any) -> Optional[str]:
        if result is True:
            return None
        if isinstance(result, str):
            return result
        return self.failed_message

    def check(self, value: Any, ctx: Any) -> Any:
        result = self.fn(value, ctx)
        if inspect.isawaitable(result):
            return self._await(result)
        return self._normalize(result)

    async def _await(self, pending) -> Optional[str]:
        return self._normalize(await pending)


class RuleChain(Rule):
    """Runs rules in order and reports the first failure."""
    def __init__(self, rules: List[Rule]):
        self.rules = rules

    def check(self, value: Any, ctx: Any) -> Any:
        for index, rule in enumerate(self.rules):
            result = rule.check(value, ctx)
            if inspect.isawaitable(result):
                return self._continue(result, index + 1, value, ctx)
            if result:
                return result
        return None

    async def _continue(self, pending, start: int, value: Any, ctx: Any) -> Optional[str]:
        result = await pending
        if result:
            return result
        for rule in self.rules[start:]:
            result = rule.check(value, ctx)
            if inspect.isawaitable(result):
                result = await result
            if result:
                return result
        return None


class PydanticRule:
    """
    External validator backed by pydantic: any type pydantic can validate
    (a model, ``Annotated[str, Field(min_length=3)]``, ...) becomes a rule.
    """
    def __init__(self, type_: Any):
        self.adapter = TypeAdapter(type_)

    def validate(self, value: Any) -> Any:
        try:
            return self.adapter.validate_python(value)
        except PydanticValidationError as e:
            errors = e.errors()
            message = errors[0]["msg"] if errors else str(e)
            raise ValidationError(message) from None


def compile_rules(rules: Any, messages: Mapping[str, str] = None, field_name: Optional[str] = None) -> Optional[Rule]:
    """
    Turns a field's ``rules`` declaration into a single Rule.

    Raises:
        UnknownRuleError: a rule string contains an unknown token.
        InvalidRuleError: the declaration has an unsupported shape.
    """
    if rules is None or rules == "" or rules == []:
        return None
    if isinstance(rules, Rule):
        return rules
    if isinstance(rules, str):
        return StringRule(rules, messages, field_name)
    if isinstance(rules, (list, tuple)):
        compiled = [compile_rules(rule, messages, field_name) for rule in rules]
        return RuleChain([rule for rule in compiled if rule is not None])
    validate = getattr(rules, "validate", None)
    if callable(validate):
        return ExternalRule(rules, messages)
    if callable(rules):
        return CustomRule(rules, messages)
    raise InvalidRuleError(f"Unsupported rules on field '{field_name}': {rules!r}")


def is_required(rule: Optional[Rule]) -> bool:
    """True when a rule string (alone or inside a list) includes 'required'."""
    if isinstance(rule, StringRule):
        return rule.is_required
    if isinstance(rule, RuleChain):
        return any(is_required(inner) for inner in rule.rules)
    return False

import logging
from typing import List, Optional

logger = logging.getLogger(__name__)


def global_error_handler(error: Exception, description: str = None):
    logger.error(
        f"{description or 'Unhandled error'}: {error.__class__.__name__}: {error}",
        exc_info=(type(error), error, error.__traceback__),
    )


class SchemaFormError(Exception):
    """Base class for every error raised by schemaform."""


class ConfigurationError(SchemaFormError):
    """
    The schema cannot be turned into a working form.

    Raised only while a schema is normalized; a form instance is never
    created from a schema that fails here.
    """


class InvalidSchemaError(ConfigurationError):
    pass


class DuplicateFieldError(ConfigurationError):
    def __init__(self, field_name: str):
        self.field_name = field_name
        super().__init__(f"Duplicate field name '{field_name}'.")


class UnknownDependencyError(ConfigurationError):
    def __init__(self, field_name: str, dependency: str):
        self.field_name = field_name
        self.dependency = dependency
        super().__init__(f"Field '{field_name}' depends on unknown field '{dependency}'.")


class CyclicDependencyError(ConfigurationError):
    def __init__(self, cycle: List[str]):
        self.cycle = list(cycle)
        super().__init__(f"Cyclic dependency: {' -> '.join(self.cycle)}")


class UnknownWidgetError(ConfigurationError):
    def __init__(self, field_name: str, component: str):
        self.field_name = field_name
        self.component = component
        super().__init__(f"Field '{field_name}' uses unregistered component '{component}'.")


class UnknownRuleError(ConfigurationError):
    def __init__(self, token: str, reason: str = "unknown rule", field_name: Optional[str] = None):
        self.token = token
        self.field_name = field_name
        where = f" on field '{field_name}'" if field_name else ""
        super().__init__(f"Rule token '{token}'{where}: {reason}.")


class InvalidRuleError(ConfigurationError):
    pass


class ValidationError(SchemaFormError):
    """
    Raised by external validators when a value is rejected. The message is
    shown to the user as the field's error.
    """

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class StorageError(SchemaFormError):
    pass


class UnknownFieldError(SchemaFormError, KeyError):
    def __init__(self, field_name: str):
        self.field_name = field_name
        super().__init__(field_name)

    def __str__(self):
        return f"Unknown field '{self.field_name}'."

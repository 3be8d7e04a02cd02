from .core import Signal, create_signal, create_effect, batch_updates, untrack, set_global_error_handler
from .exceptions import (
    SchemaFormError,
    ConfigurationError,
    InvalidSchemaError,
    DuplicateFieldError,
    CyclicDependencyError,
    UnknownDependencyError,
    UnknownRuleError,
    InvalidRuleError,
    UnknownWidgetError,
    ValidationError,
    StorageError,
    UnknownFieldError,
)
from .storage import MemoryStorage, PersistConfig, PersistenceManager
from .widgets import PropsWidget, Widget, WidgetRegistry, default_registry
from .form import (
    PENDING,
    EvalCtx,
    Field,
    FieldState,
    Form,
    Option,
    PydanticRule,
    Schema,
    SubmitResult,
    create_form,
    normalize,
)

__version__ = "0.1.0"

get_version = lambda: __version__

__all__ = [
    'Signal',
    'create_signal',
    'create_effect',
    'batch_updates',
    'untrack',
    'set_global_error_handler',
    'SchemaFormError',
    'ConfigurationError',
    'InvalidSchemaError',
    'DuplicateFieldError',
    'CyclicDependencyError',
    'UnknownDependencyError',
    'UnknownRuleError',
    'InvalidRuleError',
    'UnknownWidgetError',
    'ValidationError',
    'StorageError',
    'UnknownFieldError',
    'MemoryStorage',
    'PersistConfig',
    'PersistenceManager',
    'PropsWidget',
    'Widget',
    'WidgetRegistry',
    'default_registry',
    'PENDING',
    'EvalCtx',
    'Field',
    'FieldState',
    'Form',
    'Option',
    'PydanticRule',
    'Schema',
    'SubmitResult',
    'create_form',
    'normalize',
]

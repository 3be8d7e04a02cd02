from .context import PENDING, EvalCtx, FieldState, Option
from .schema import Field, Schema
from .validator import PydanticRule, Validator
from .normalizer import NormalizedSchema, normalize
from .predicates import Diagnostic, Diagnostics
from .form import Form, SubmitResult, create_form

__all__ = [
    'PENDING',
    'EvalCtx',
    'FieldState',
    'Option',
    'Field',
    'Schema',
    'PydanticRule',
    'Validator',
    'NormalizedSchema',
    'normalize',
    'Diagnostic',
    'Diagnostics',
    'Form',
    'SubmitResult',
    'create_form',
]

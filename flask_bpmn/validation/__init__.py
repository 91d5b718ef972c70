from .process_validator import (
    ProcessValidator,
    ValidationErrorDetail,
    ValidationResult,
    ValidationWarningDetail,
)
from .type_registry import TypeRegistry

__all__ = [
    'ProcessValidator',
    'TypeRegistry',
    'ValidationErrorDetail',
    'ValidationResult',
    'ValidationWarningDetail',
]

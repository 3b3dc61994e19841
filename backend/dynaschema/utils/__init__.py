"""
유틸리티 모듈
"""
from .errors import (
    ErrorCategory,
    SchemaEngineError,
    UserFriendlyError,
    classify_error,
    format_error_response,
)

__all__ = [
    "ErrorCategory",
    "SchemaEngineError",
    "UserFriendlyError",
    "classify_error",
    "format_error_response",
]

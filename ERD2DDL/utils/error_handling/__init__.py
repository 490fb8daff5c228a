"""Containment of plugin failures during parsing and code generation."""

from .handlers import (
    handle_stage_error,
    ErrorContext,
    create_error_response,
)

__all__ = [
    "handle_stage_error",
    "ErrorContext",
    "create_error_response",
]

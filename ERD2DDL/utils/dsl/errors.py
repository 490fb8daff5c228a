"""Centralized error taxonomy for the ERD compiler.

This module provides Pydantic-based error details and the exception classes
raised or collected by each compilation stage:
- Lexical errors (tokenization)
- Syntax errors (parsing)
- Declaration/reference errors (model building)
- Semantic errors (validation)

Every exception carries an ``error_type`` (its taxonomy name) and a stable
machine-readable ``code`` so it can be turned into a diagnostic.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


# Taxonomy labels used on diagnostics that are not raised as exceptions
VALIDATION_WARNING = "ValidationWarning"
LINT_WARNING = "LintWarning"


class LexicalErrorDetail(BaseModel):
    """Lexical analysis error (tokenization phase)."""

    message: str = Field(description="Error message")
    line: Optional[int] = Field(None, description="Line number where error occurred (1-indexed)")
    column: Optional[int] = Field(None, description="Column number where error occurred (1-indexed)")
    invalid_char: Optional[str] = Field(None, description="Character that caused the error")
    context: Optional[str] = Field(None, description="Context snippet showing error location")

    def format_message(self) -> str:
        """Format a comprehensive lexical error message."""
        parts = [f"Lexical error: {self.message}"]

        if self.line is not None and self.column is not None:
            parts.append(f"Location: line {self.line}, column {self.column}")

        if self.invalid_char:
            parts.append(f"Offending character: {self.invalid_char!r}")

        if self.context:
            parts.append(f"Context:\n{self.context}")

        suggestions = self._get_suggestions()
        if suggestions:
            parts.append("Suggestions:")
            parts.extend(f"  - {s}" for s in suggestions)

        return "\n".join(parts)

    def _get_suggestions(self) -> List[str]:
        suggestions = []
        if self.invalid_char in ("'", '"'):
            suggestions.append("String literals must be closed on the same line")
        elif self.invalid_char in ("(", "[", "{"):
            suggestions.append(f"Check for a missing closing bracket for {self.invalid_char!r}")
        elif self.invalid_char in (")", "]", "}"):
            suggestions.append(f"Check for a missing opening bracket for {self.invalid_char!r}")
        return suggestions


class SyntaxErrorDetail(BaseModel):
    """Syntax analysis error (parsing phase)."""

    message: str = Field(description="Error message")
    line: Optional[int] = Field(None, description="Line number where error occurred (1-indexed)")
    column: Optional[int] = Field(None, description="Column number where error occurred (1-indexed)")
    found: Optional[str] = Field(None, description="Token that was found")
    expected: Optional[List[str]] = Field(None, description="List of expected tokens")
    context: Optional[str] = Field(None, description="Context snippet showing error location")

    def format_message(self) -> str:
        """Format a comprehensive syntax error message."""
        parts = [f"Syntax error: {self.message}"]

        if self.line is not None and self.column is not None:
            parts.append(f"Location: line {self.line}, column {self.column}")

        if self.found is not None:
            parts.append(f"Found: {self.found!r}")

        if self.expected:
            if len(self.expected) == 1:
                parts.append(f"Expected: {self.expected[0]}")
            elif len(self.expected) <= 5:
                parts.append(f"Expected one of: {', '.join(self.expected)}")
            else:
                parts.append(
                    f"Expected one of: {', '.join(self.expected[:5])} (and {len(self.expected) - 5} more)"
                )

        if self.context:
            parts.append(f"Context:\n{self.context}")

        return "\n".join(parts)


def build_context_snippet(source: str, line: Optional[int], column: Optional[int]) -> Optional[str]:
    """Render the offending source line with a caret under the error column."""
    if not source or line is None or column is None:
        return None
    lines = source.splitlines()
    if line < 1 or line > len(lines):
        return None
    line_text = lines[line - 1]
    start = max(0, column - 30)
    end = min(len(line_text), column + 30)
    pointer = " " * (column - 1 - start) + "^"
    return f"  {line_text[start:end]}\n  {pointer}"


# ============================================================================
# Exceptions
# ============================================================================

class ERDCompileError(Exception):
    """Base class for every error the ERD compiler reports."""

    error_type = "ERDCompileError"
    code = "compile-error"

    def __init__(
        self,
        message: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
        entity: Optional[str] = None,
        field: Optional[str] = None,
        statement: Optional[str] = None,
        code: Optional[str] = None,
    ):
        self.message = message
        self.line = line
        self.column = column
        self.entity = entity
        self.field = field
        self.statement = statement
        if code is not None:
            self.code = code
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class LexError(ERDCompileError):
    """Malformed token: unterminated string or unbalanced bracket."""

    error_type = "LexError"
    code = "lex-error"

    def __init__(
        self,
        message: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
        invalid_char: Optional[str] = None,
        context: Optional[str] = None,
    ):
        self.invalid_char = invalid_char
        self.context = context
        self._detail = LexicalErrorDetail(
            message=message,
            line=line,
            column=column,
            invalid_char=invalid_char,
            context=context,
        )
        super().__init__(message, line=line, column=column)

    @property
    def detail(self) -> LexicalErrorDetail:
        return self._detail

    def __str__(self) -> str:
        return self._detail.format_message()


class ParseError(ERDCompileError):
    """Structurally invalid statement."""

    error_type = "ParseError"
    code = "parse-error"

    def __init__(
        self,
        message: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
        expected: Optional[List[str]] = None,
        found: Optional[str] = None,
        context: Optional[str] = None,
        entity: Optional[str] = None,
        statement: Optional[str] = None,
        code: Optional[str] = None,
    ):
        self.expected = list(expected or [])
        self.found = found
        self.context = context
        self._detail = SyntaxErrorDetail(
            message=message,
            line=line,
            column=column,
            found=found,
            expected=self.expected or None,
            context=context,
        )
        super().__init__(message, line=line, column=column, entity=entity, statement=statement, code=code)

    @property
    def detail(self) -> SyntaxErrorDetail:
        return self._detail

    def __str__(self) -> str:
        return self._detail.format_message()


class DuplicateDeclarationError(ERDCompileError):
    """An entity or enum name declared more than once."""

    error_type = "DuplicateDeclarationError"
    code = "duplicate-declaration"

    def __init__(
        self,
        name: str,
        kind: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
        first_line: Optional[int] = None,
    ):
        self.name = name
        self.kind = kind
        self.first_line = first_line
        where = f" (first declared on line {first_line})" if first_line is not None else ""
        message = f"{kind.capitalize()} '{name}' is declared more than once{where}"
        entity = name if kind == "entity" else None
        statement = None if kind == "entity" else f"enum {name}"
        super().__init__(message, line=line, column=column, entity=entity, statement=statement)


class UnresolvedReferenceError(ERDCompileError):
    """A field references an entity or type that is not declared."""

    error_type = "UnresolvedReferenceError"

    def __init__(
        self,
        entity: str,
        field: str,
        referenced_name: str,
        reference_kind: str = "foreign_key",
        line: Optional[int] = None,
        column: Optional[int] = None,
    ):
        self.referenced_name = referenced_name
        self.reference_kind = reference_kind
        if reference_kind == "foreign_key":
            code = "fk-unresolved"
            message = (
                f"Foreign key field '{entity}.{field}' references '{referenced_name}', "
                f"which is not a declared entity"
            )
        else:
            code = "enum-unresolved"
            message = (
                f"Field '{entity}.{field}' has type '{referenced_name}', which is neither a "
                f"SQL type, a declared enum nor a declared entity"
            )
        super().__init__(message, line=line, column=column, entity=entity, field=field, code=code)


class ValidationError(ERDCompileError):
    """Semantic rule violation found by the validator."""

    error_type = "ValidationError"
    code = "validation-error"


class CompilationFailedError(ERDCompileError):
    """Raised on demand when a compilation result carries errors."""

    error_type = "CompilationFailedError"
    code = "compilation-failed"

    def __init__(self, message: str, diagnostics: Optional[list] = None):
        self.diagnostics = list(diagnostics or [])
        super().__init__(message)

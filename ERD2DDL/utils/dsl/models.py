"""Pydantic models for the ERD compilation pipeline.

This module defines structured data models for the result of each stage of
the compiler:
- Lexer: TokenizationResult
- Parser: ParseResult
- Validator / Linter: Diagnostic, ValidationResult
- Full Pipeline: CompilationResult

Diagnostics are the single reporting channel shared by every stage; they
carry severity, a stable machine-readable code, the taxonomy name of the
error, the offending entity/field/statement and the source position.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ConfigDict

from ERD2DDL.ir.models.schema import SchemaModel
from .errors import CompilationFailedError, ERDCompileError


# ============================================================================
# Enums for Status and Error Types
# ============================================================================

class CompilationStage(str, Enum):
    """Stages of the ERD compilation pipeline."""
    LEXICAL = "lexical"
    SYNTAX = "syntax"
    MODEL = "model"
    SEMANTIC = "semantic"
    CODEGEN = "codegen"
    LINT = "lint"
    COMPLETE = "complete"


class ErrorSeverity(str, Enum):
    """Severity levels for diagnostics."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


# ============================================================================
# Diagnostics
# ============================================================================

class Diagnostic(BaseModel):
    """A single compiler diagnostic."""

    severity: ErrorSeverity = Field(description="Severity of the diagnostic")
    code: str = Field(description="Stable machine-readable code (e.g. 'fk-unresolved')")
    error_type: str = Field(description="Taxonomy name (e.g. 'UnresolvedReferenceError')")
    message: str = Field(description="Human readable message")
    stage: CompilationStage = Field(description="Stage that produced the diagnostic")
    entity: Optional[str] = Field(None, description="Offending entity, if any")
    field: Optional[str] = Field(None, description="Offending field, if any")
    statement: Optional[str] = Field(None, description="Offending top-level statement, if any")
    line: Optional[int] = Field(None, description="Source line (1-indexed)")
    column: Optional[int] = Field(None, description="Source column (1-indexed)")

    model_config = ConfigDict(frozen=True)

    @property
    def is_error(self) -> bool:
        return self.severity == ErrorSeverity.ERROR

    @property
    def location(self) -> str:
        if self.entity and self.field:
            return f"{self.entity}.{self.field}"
        return self.entity or self.statement or ""

    def format_message(self) -> str:
        """Format as ``line:col severity[code] location: message``."""
        position = ""
        if self.line is not None:
            position = f"{self.line}:{self.column or 1} "
        where = f" {self.location}:" if self.location else ""
        return f"{position}{self.severity.value}[{self.code}]{where} {self.message}"

    @classmethod
    def from_exception(
        cls,
        error: ERDCompileError,
        stage: CompilationStage,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
    ) -> Diagnostic:
        """Create a Diagnostic from a compiler exception."""
        return cls(
            severity=severity,
            code=error.code,
            error_type=error.error_type,
            message=error.message,
            stage=stage,
            entity=error.entity,
            field=error.field,
            statement=error.statement,
            line=error.line,
            column=error.column,
        )

    @classmethod
    def from_error_response(
        cls,
        response: Dict[str, Any],
        code: str,
        stage: CompilationStage,
    ) -> Diagnostic:
        """Create a Diagnostic from an error-handling response dictionary."""
        error = response.get("error", {})
        return cls(
            severity=ErrorSeverity.ERROR,
            code=code,
            error_type=str(error.get("type", "ERDCompileError")),
            message=str(error.get("message", "")),
            stage=stage,
            entity=error.get("entity_name"),
            field=error.get("field_name"),
            statement=error.get("statement"),
            line=error.get("line"),
            column=error.get("column"),
        )


def count_errors(diagnostics: List[Diagnostic]) -> int:
    return sum(1 for d in diagnostics if d.severity == ErrorSeverity.ERROR)


def count_warnings(diagnostics: List[Diagnostic]) -> int:
    return sum(1 for d in diagnostics if d.severity == ErrorSeverity.WARNING)


# ============================================================================
# Lexer Models
# ============================================================================

TokenCategoryName = Literal[
    "keyword", "identifier", "entity", "field", "literal",
    "expression", "punctuation", "newline", "unknown",
]


class ERDTokenModel(BaseModel):
    """Pydantic model for an ERD token."""

    type: str = Field(description="Token type (e.g., 'ENTITY', 'FIELD', 'PK', 'LPAREN')")
    value: str = Field(description="Token value (the actual text)")
    category: TokenCategoryName = Field(description="Semantic category of the token")
    line: Optional[int] = Field(None, description="Line number where token appears (1-indexed)")
    column: Optional[int] = Field(None, description="Column number where token appears (1-indexed)")

    model_config = ConfigDict(frozen=True)


class TokenizationResult(BaseModel):
    """Result of lexical analysis (tokenization) phase."""

    success: bool = Field(description="Whether tokenization succeeded")
    tokens: List[ERDTokenModel] = Field(default_factory=list, description="List of tokens produced")
    token_count: int = Field(0, description="Total number of tokens")
    error: Optional[str] = Field(None, description="Error message if tokenization failed")
    error_line: Optional[int] = Field(None, description="Line number where error occurred")
    error_column: Optional[int] = Field(None, description="Column number where error occurred")
    timestamp: datetime = Field(default_factory=datetime.now, description="When tokenization was performed")

    @classmethod
    def from_tokens(cls, tokens: List[Any], errors: Optional[List[Any]] = None) -> TokenizationResult:
        """Create TokenizationResult from a list of ERDToken objects.

        ``errors`` are LexErrors recovered from while lexing; the first one is
        reported and the result is marked unsuccessful.
        """
        token_models = [
            ERDTokenModel(
                type=token.type,
                value=token.value,
                category=token.category,
                line=token.line,
                column=token.column,
            )
            for token in tokens
        ]
        if errors:
            first = errors[0]
            return cls(
                success=False,
                tokens=token_models,
                token_count=len(token_models),
                error=first.message,
                error_line=first.line,
                error_column=first.column,
            )
        return cls(success=True, tokens=token_models, token_count=len(token_models))

    @classmethod
    def from_error(cls, error: str, line: Optional[int] = None, column: Optional[int] = None) -> TokenizationResult:
        """Create TokenizationResult from an error."""
        return cls(success=False, error=error, error_line=line, error_column=column)


# ============================================================================
# Parser Models
# ============================================================================

class ParseErrorDetail(BaseModel):
    """Detailed information about a parse error."""

    message: str = Field(description="Error message")
    line: Optional[int] = Field(None, description="Line number where error occurred")
    column: Optional[int] = Field(None, description="Column number where error occurred")
    found: Optional[str] = Field(None, description="Token that was found")
    expected: Optional[List[str]] = Field(None, description="List of expected tokens")


class ParseResult(BaseModel):
    """Result of syntax analysis (parsing) phase."""

    success: bool = Field(description="Whether parsing finished without errors")
    statement_count: int = Field(0, description="Number of top-level statements recovered")
    entity_count: int = Field(0, description="Number of entity blocks recovered")
    errors: List[ParseErrorDetail] = Field(default_factory=list, description="All collected parse errors")
    timestamp: datetime = Field(default_factory=datetime.now, description="When parsing was performed")

    @classmethod
    def from_document(cls, document: Any) -> ParseResult:
        """Create ParseResult from a parsed Document."""
        errors = [
            ParseErrorDetail(
                message=e.message,
                line=e.line,
                column=e.column,
                found=e.found,
                expected=e.expected or None,
            )
            for e in document.errors
        ]
        return cls(
            success=not errors,
            statement_count=len(document.statements),
            entity_count=len(document.entities),
            errors=errors,
        )


# ============================================================================
# Validator Models
# ============================================================================

class ValidationResult(BaseModel):
    """Result of the validator battery."""

    success: bool = Field(description="True when no error-severity diagnostic was produced")
    diagnostics: List[Diagnostic] = Field(default_factory=list, description="All diagnostics, in check order")
    error_count: int = Field(0, description="Number of error-severity diagnostics")
    warning_count: int = Field(0, description="Number of warning-severity diagnostics")
    timestamp: datetime = Field(default_factory=datetime.now, description="When validation was performed")

    @classmethod
    def from_diagnostics(cls, diagnostics: List[Diagnostic]) -> ValidationResult:
        errors = count_errors(diagnostics)
        return cls(
            success=errors == 0,
            diagnostics=list(diagnostics),
            error_count=errors,
            warning_count=count_warnings(diagnostics),
        )

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == ErrorSeverity.ERROR]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == ErrorSeverity.WARNING]


# ============================================================================
# Pipeline Model
# ============================================================================

class CompilationResult(BaseModel):
    """Complete result of compiling one ERD document.

    ``generation_allowed`` and ``validation_passed`` are independent: DDL is
    generated from the best-effort model even when validation failed, and
    only a lexical failure prevents generation.
    """

    tokenization: TokenizationResult = Field(description="Lexer result")
    parsing: Optional[ParseResult] = Field(None, description="Parser result (None if lexing failed)")
    model: Optional[SchemaModel] = Field(None, description="Best-effort semantic model")
    diagnostics: List[Diagnostic] = Field(default_factory=list, description="Lex/parse/model/validation/codegen diagnostics")
    lint_diagnostics: List[Diagnostic] = Field(default_factory=list, description="Advisory lint diagnostics")
    ddl_statements: List[str] = Field(default_factory=list, description="Generated DDL statements in emission order")
    ddl: Optional[str] = Field(None, description="Generated DDL artifact text")
    generation_allowed: bool = Field(description="Whether code generation ran")
    validation_passed: bool = Field(description="Whether no error-severity diagnostic was produced")
    stage_failed: Optional[CompilationStage] = Field(None, description="First stage that reported an error")
    timestamp: datetime = Field(default_factory=datetime.now, description="When compilation was performed")

    @property
    def overall_success(self) -> bool:
        return self.generation_allowed and self.validation_passed

    @property
    def error_count(self) -> int:
        return count_errors(self.diagnostics)

    @property
    def warning_count(self) -> int:
        return count_warnings(self.diagnostics)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == ErrorSeverity.ERROR]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == ErrorSeverity.WARNING]

    def get_summary(self) -> str:
        """Get a human-readable summary of the compilation result."""
        lines = []
        if self.overall_success:
            lines.append("Compilation succeeded")
        else:
            stage = self.stage_failed.value if self.stage_failed else "unknown"
            lines.append(f"Compilation failed (first failing stage: {stage})")
        lines.append(f"  Errors: {self.error_count}, warnings: {self.warning_count}")
        if self.lint_diagnostics:
            lines.append(f"  Lint warnings: {len(self.lint_diagnostics)}")
        if self.generation_allowed:
            lines.append(f"  Statements generated: {len(self.ddl_statements)}")
        for diagnostic in self.diagnostics + self.lint_diagnostics:
            lines.append(f"  {diagnostic.format_message()}")
        return "\n".join(lines)

    def raise_for_errors(self) -> None:
        """Raise CompilationFailedError when the run failed."""
        if self.overall_success:
            return
        errors = self.errors
        first = errors[0].format_message() if errors else "generation was not allowed"
        raise CompilationFailedError(
            f"Compilation failed with {len(errors)} error(s); first: {first}",
            diagnostics=errors,
        )

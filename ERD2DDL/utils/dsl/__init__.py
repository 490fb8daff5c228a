"""ERD domain-specific language: lexer, parser, model builder and validator.

This package provides:
- Lark grammars for ``.erd`` documents: terminals for the lexer, statements for the parser
- A lexer (tokenization) - produces line/column tagged tokens
- A parser (Lark LALR plus a Transformer) - works ONLY on tokens from the lexer
- A model builder - two-pass name resolution into the semantic model
- A validator (deterministic) - the semantic check battery
- A plugin registry for extra top-level statements
- Pydantic models for structured intermediate results
- The complete compilation pipeline

Architecture:
- Lexer: tokenize_erd() - converts ERD text -> tokens
- Parser: parse_tokens() - converts tokens -> Document (PRIMARY function)
- Builder: build_schema_model() - converts Document -> SchemaModel
- Validator: validate_schema() - SchemaModel -> ValidationResult
- Pipeline: compile_erd() - runs every stage, including code generation
"""

from .lexer import tokenize_erd, ERDToken, ERDTokenStream
from .parser import parse_tokens, parse_erd
from .builder import build_schema_model, derive_relationships, SchemaBuilder
from .validator import validate_schema, VALIDATION_CHECKS
from .registry import PluginRegistry, StatementPlugin
from .models import (
    ERDTokenModel,
    TokenizationResult,
    ParseResult,
    ParseErrorDetail,
    ValidationResult,
    CompilationResult,
    CompilationStage,
    ErrorSeverity,
    Diagnostic,
)
from .pipeline import compile_erd
from .errors import (
    ERDCompileError,
    LexError,
    ParseError,
    DuplicateDeclarationError,
    UnresolvedReferenceError,
    ValidationError,
    CompilationFailedError,
)

__all__ = [
    # Lexer
    "tokenize_erd",
    "ERDToken",
    "ERDTokenStream",
    # Parser
    "parse_tokens",
    "parse_erd",
    # Builder
    "build_schema_model",
    "derive_relationships",
    "SchemaBuilder",
    # Validator
    "validate_schema",
    "VALIDATION_CHECKS",
    # Extension point
    "PluginRegistry",
    "StatementPlugin",
    # Pydantic models
    "ERDTokenModel",
    "TokenizationResult",
    "ParseResult",
    "ParseErrorDetail",
    "ValidationResult",
    "CompilationResult",
    "CompilationStage",
    "ErrorSeverity",
    "Diagnostic",
    # Pipeline function
    "compile_erd",
    # Error classes
    "ERDCompileError",
    "LexError",
    "ParseError",
    "DuplicateDeclarationError",
    "UnresolvedReferenceError",
    "ValidationError",
    "CompilationFailedError",
]

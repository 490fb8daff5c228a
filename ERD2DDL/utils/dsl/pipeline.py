"""ERD compilation pipeline that runs every stage with Pydantic results.

Stages:
1. Tokenize the document (lexer)
2. Parse tokens into statement nodes, recovering at statement boundaries
3. Build the semantic model (two-pass name resolution)
4. Validate the model (all checks, never fail-fast)
5. Generate DDL from the best-effort model
6. Optionally lint the model

A malformed line is reported and skipped; only a bracket left open at the end
of input prevents code generation. Every other error is reported alongside
best-effort DDL.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from ERD2DDL.ir.models.sidecar import SidecarOverlay
from ERD2DDL.utils.logging import ensure_logging, get_logger
from .builder import build_schema_model
from .errors import LexError
from .lexer import ERDTokenStream
from .models import (
    CompilationResult,
    CompilationStage,
    Diagnostic,
    ParseResult,
    TokenizationResult,
)
from .parser import parse_tokens
from .registry import PluginRegistry
from .validator import validate_schema

logger = get_logger(__name__)


def compile_erd(
    source: str,
    sidecar: Optional[Union[SidecarOverlay, Dict[str, Any]]] = None,
    registry: Optional[PluginRegistry] = None,
    options: Optional[Any] = None,
    lint: bool = False,
) -> CompilationResult:
    """Run the complete ERD -> DDL pipeline and return structured results.

    Args:
        source: The ERD document text
        sidecar: Optional overlay (SidecarOverlay or the already-parsed mapping)
        registry: Optional plugin registry for extra top-level statements
        options: Optional CodegenOptions; defaults to the ``codegen`` config section
        lint: Whether to run the linter and fill ``lint_diagnostics``

    Returns:
        CompilationResult with the results of every stage that ran

    Example:
        >>> result = compile_erd(":Organization\\n UUID $.id PK\\n")
        >>> result.overall_success
        True
        >>> print(result.ddl)
    """
    # codegen and lint import this package, so they are resolved at call time
    from ERD2DDL.ddl.compiler import CodegenOptions, compile_ddl
    from ERD2DDL.utils.validation.linter import lint_schema

    ensure_logging()
    logger.info(f"Compiling ERD document ({len(source)} characters)")

    # Stage 1: Tokenization (a malformed line is reported and skipped)
    stream = ERDTokenStream(source, recover=True)
    try:
        tokens = stream.to_list()
    except LexError as e:
        diagnostics = [
            Diagnostic.from_exception(err, stage=CompilationStage.LEXICAL) for err in stream.errors + [e]
        ]
        logger.error(f"Compilation stopped: {diagnostics[-1].format_message()}")
        return CompilationResult(
            tokenization=TokenizationResult.from_error(e.message, e.line, e.column),
            diagnostics=diagnostics,
            generation_allowed=False,
            validation_passed=False,
            stage_failed=CompilationStage.LEXICAL,
        )
    tokenization = TokenizationResult.from_tokens(tokens, stream.errors)
    diagnostics: List[Diagnostic] = [
        Diagnostic.from_exception(e, stage=CompilationStage.LEXICAL) for e in stream.errors
    ]

    # Stage 2: Parsing (statement-level recovery, errors collected on the document)
    document = parse_tokens(tokens, source, registry=registry)
    parsing = ParseResult.from_document(document)
    diagnostics.extend(Diagnostic.from_exception(e, stage=CompilationStage.SYNTAX) for e in document.errors)
    diagnostics.extend(document.plugin_diagnostics)

    # Stages 3-4: Model building and validation
    model = build_schema_model(document)
    validation = validate_schema(model)
    diagnostics.extend(validation.diagnostics)

    # Stage 5: Code generation against the best-effort model
    overlay = sidecar if isinstance(sidecar, SidecarOverlay) else SidecarOverlay.from_mapping(sidecar)
    output = compile_ddl(
        model,
        options=options or CodegenOptions.from_config(),
        sidecar=overlay,
        registry=registry,
    )
    diagnostics.extend(output.diagnostics)

    # Stage 6: Lint (advisory only)
    lint_diagnostics = lint_schema(model) if lint else []

    errors = [d for d in diagnostics if d.is_error]
    result = CompilationResult(
        tokenization=tokenization,
        parsing=parsing,
        model=model,
        diagnostics=diagnostics,
        lint_diagnostics=lint_diagnostics,
        ddl_statements=output.ddl_statements,
        ddl=output.sql,
        generation_allowed=True,
        validation_passed=not errors,
        stage_failed=errors[0].stage if errors else None,
    )
    if errors:
        logger.warning(f"Compilation finished with {len(errors)} error(s); DDL generated from best-effort model")
    else:
        logger.info(f"Compilation succeeded: {len(output.ddl_statements)} statements")
    return result

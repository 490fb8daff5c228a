"""Semantic validator for the ERD schema model.

Runs a fixed battery of checks over the model and accumulates every
diagnostic; no check short-circuits another. Error-severity diagnostics mark
the run as failed, warnings are advisory.

Checks, in order:
0. duplicate declarations recorded by the builder
1. primary key presence (warning) / uniqueness (error)
2. foreign key target resolution and composite-target arity
3. composite key field lists exist and are non-empty
4. enum / type reference resolution
5. duplicate constraint kinds per field, duplicate field names
6. CHECK expression parenthesis balance
7. DEFAULT literal / type-class compatibility (warning)
8. feature column references, unsupported set/map fields, enum variants
"""

from __future__ import annotations

from typing import Callable, List, Optional

from ERD2DDL.ir.models.schema import (
    ConstraintKind,
    Entity,
    EntityField,
    SchemaModel,
    Sigil,
)
from ERD2DDL.utils.logging import get_logger
from .errors import (
    DuplicateDeclarationError,
    UnresolvedReferenceError,
    ValidationError,
    VALIDATION_WARNING,
)
from .models import CompilationStage, Diagnostic, ErrorSeverity, ValidationResult
from .type_catalog import is_map_type, literal_compatible

logger = get_logger(__name__)


_FIELD_CONSTRAINT_KINDS = (
    ConstraintKind.PRIMARY_KEY,
    ConstraintKind.UNIQUE,
    ConstraintKind.NOT_NULL,
    ConstraintKind.DEFAULT,
    ConstraintKind.FOREIGN_KEY,
    ConstraintKind.CHECK,
)


def is_balanced(text: str) -> bool:
    """Parenthesis balance outside quoted strings and quoted identifiers."""
    depth = 0
    quote = None
    for ch in text:
        if quote is not None:
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0 and quote is None


def _error(
    code: str,
    message: str,
    entity: Optional[str] = None,
    field: Optional[str] = None,
    statement: Optional[str] = None,
    line: Optional[int] = None,
    column: Optional[int] = None,
) -> Diagnostic:
    return Diagnostic.from_exception(
        ValidationError(message, line=line, column=column, entity=entity, field=field, statement=statement, code=code),
        stage=CompilationStage.SEMANTIC,
    )


def _warning(
    code: str,
    message: str,
    entity: Optional[str] = None,
    field: Optional[str] = None,
    line: Optional[int] = None,
    column: Optional[int] = None,
) -> Diagnostic:
    return Diagnostic(
        severity=ErrorSeverity.WARNING,
        code=code,
        error_type=VALIDATION_WARNING,
        message=message,
        stage=CompilationStage.SEMANTIC,
        entity=entity,
        field=field,
        line=line,
        column=column,
    )


# ============================================================================
# Checks
# ============================================================================

def check_duplicate_declarations(model: SchemaModel) -> List[Diagnostic]:
    return [
        Diagnostic.from_exception(
            DuplicateDeclarationError(d.name, d.kind, line=d.line, column=d.column, first_line=d.first_line),
            stage=CompilationStage.MODEL,
        )
        for d in model.duplicates
    ]


def check_primary_keys(model: SchemaModel) -> List[Diagnostic]:
    diagnostics = []
    for entity in model.entities:
        composite = entity.composite_key()
        composite_columns = set(composite.columns) if composite is not None else set()
        inline = [
            f for f in entity.fields
            if f.has(ConstraintKind.PRIMARY_KEY) and f.name not in composite_columns
        ]
        constructs = len(inline) + (1 if composite is not None else 0)
        if constructs == 0:
            diagnostics.append(_warning(
                "pk-missing",
                f"Entity '{entity.name}' declares no primary key",
                entity=entity.name, line=entity.line, column=entity.column,
            ))
        elif constructs > 1:
            names = [f.name for f in inline] + (["PK(" + ", ".join(composite.columns) + ")"] if composite else [])
            diagnostics.append(_error(
                "pk-multiple",
                f"Entity '{entity.name}' declares more than one primary key: {', '.join(names)}",
                entity=entity.name, line=entity.line, column=entity.column,
            ))
    return diagnostics


def check_foreign_keys(model: SchemaModel) -> List[Diagnostic]:
    diagnostics = []
    for ref in model.unresolved:
        if ref.kind != "foreign_key":
            continue
        diagnostics.append(Diagnostic.from_exception(
            UnresolvedReferenceError(
                ref.entity, ref.field, ref.referenced_name, "foreign_key", line=ref.line, column=ref.column
            ),
            stage=CompilationStage.SEMANTIC,
        ))

    for entity in model.entities:
        for f in entity.foreign_key_fields():
            fk = f.first(ConstraintKind.FOREIGN_KEY)
            target = model.get_entity(fk.target)
            if target is None or fk.target_columns:
                continue
            composite = target.composite_key()
            if composite is not None and len(composite.columns) > 1:
                diagnostics.append(_error(
                    "fk-composite-arity",
                    f"Field '{entity.name}.{f.name}' references '{target.name}', whose primary key is "
                    f"composite ({', '.join(composite.columns)}); a single column cannot match it, "
                    f"so no FOREIGN KEY is emitted",
                    entity=entity.name, field=f.name, line=fk.line, column=fk.column,
                ))
            elif target.get_field(model.referenced_columns(fk)[0]) is None:
                diagnostics.append(_warning(
                    "fk-target-key-missing",
                    f"Field '{entity.name}.{f.name}' references '{target.name}', which has no primary key "
                    f"and no '{model.referenced_columns(fk)[0]}' column",
                    entity=entity.name, field=f.name, line=fk.line, column=fk.column,
                ))
    return diagnostics


def check_composite_keys(model: SchemaModel) -> List[Diagnostic]:
    diagnostics = []
    for entity in model.entities:
        field_names = set(entity.field_names())
        for constraint in entity.constraints:
            if constraint.kind not in (ConstraintKind.COMPOSITE_PRIMARY_KEY, ConstraintKind.UNIQUE):
                continue
            label = "PK" if constraint.kind == ConstraintKind.COMPOSITE_PRIMARY_KEY else "UNIQUE"
            if not constraint.columns:
                diagnostics.append(_error(
                    "composite-key-empty",
                    f"{label}(...) on entity '{entity.name}' lists no fields",
                    entity=entity.name, line=constraint.line, column=constraint.column,
                ))
                continue
            for column in constraint.columns:
                if column not in field_names:
                    diagnostics.append(_error(
                        "composite-key-unknown-field",
                        f"{label}(...) on entity '{entity.name}' references unknown field '{column}'",
                        entity=entity.name, field=column, line=constraint.line, column=constraint.column,
                    ))
                elif not entity.get_field(column).is_column:
                    diagnostics.append(_error(
                        "composite-key-list-field",
                        f"{label}(...) on entity '{entity.name}' references list field '{column}', which has no column",
                        entity=entity.name, field=column, line=constraint.line, column=constraint.column,
                    ))
    return diagnostics


def check_type_references(model: SchemaModel) -> List[Diagnostic]:
    return [
        Diagnostic.from_exception(
            UnresolvedReferenceError(ref.entity, ref.field, ref.referenced_name, "type", line=ref.line, column=ref.column),
            stage=CompilationStage.SEMANTIC,
        )
        for ref in model.unresolved
        if ref.kind == "type"
    ]


def check_duplicates(model: SchemaModel) -> List[Diagnostic]:
    diagnostics = []
    for entity in model.entities:
        seen = set()
        for f in entity.fields:
            if f.name in seen:
                diagnostics.append(_error(
                    "field-duplicate",
                    f"Field '{f.name}' is declared more than once in entity '{entity.name}'",
                    entity=entity.name, field=f.name, line=f.line, column=f.column,
                ))
            seen.add(f.name)

            for kind in _FIELD_CONSTRAINT_KINDS:
                repeated = f.constraints_of(kind)
                if len(repeated) > 1:
                    diagnostics.append(_error(
                        "constraint-duplicate",
                        f"Constraint {kind.value} appears {len(repeated)} times on field '{entity.name}.{f.name}'",
                        entity=entity.name, field=f.name, line=repeated[1].line, column=repeated[1].column,
                    ))
    for enum in model.enums:
        seen = set()
        for variant in enum.variants:
            if variant in seen:
                diagnostics.append(_error(
                    "enum-variant-duplicate",
                    f"Enum '{enum.name}' lists variant '{variant}' more than once",
                    statement=f"enum {enum.name}", line=enum.line, column=enum.column,
                ))
            seen.add(variant)
    return diagnostics


def check_check_expressions(model: SchemaModel) -> List[Diagnostic]:
    diagnostics = []
    for entity in model.entities:
        checks = [(None, c) for c in entity.entity_constraints(ConstraintKind.CHECK)]
        checks += [(f.name, c) for f in entity.fields for c in f.constraints_of(ConstraintKind.CHECK)]
        for field_name, constraint in checks:
            expression = constraint.expression or ""
            if not expression.strip():
                diagnostics.append(_error(
                    "check-empty", f"CHECK on '{entity.name}' has an empty expression",
                    entity=entity.name, field=field_name, line=constraint.line, column=constraint.column,
                ))
            elif not is_balanced(expression):
                diagnostics.append(_error(
                    "check-unbalanced", f"CHECK expression '{expression}' has unbalanced parentheses",
                    entity=entity.name, field=field_name, line=constraint.line, column=constraint.column,
                ))
    return diagnostics


def _default_matches(model: SchemaModel, f: EntityField, kind: str, value) -> Optional[str]:
    """Return a mismatch description, or None when the default fits the field."""
    if kind == "list":
        if f.sigil == Sigil.SET:
            return None
        return "a list literal only fits a set (%) field"
    if f.enum_name is not None:
        enum = model.get_enum(f.enum_name)
        if kind in ("call", "identifier", "null"):
            return None
        if kind != "string":
            return f"enum '{f.enum_name}' expects one of its variants as a string"
        if enum is not None and str(value) not in enum.variants:
            return f"'{value}' is not a variant of enum '{f.enum_name}'"
        return None
    if f.entity_type is not None:
        return None
    if not literal_compatible(f.type.name, kind):
        return f"a {kind} literal does not fit type {f.type.render()}"
    return None


def check_defaults(model: SchemaModel) -> List[Diagnostic]:
    diagnostics = []
    for entity in model.entities:
        for f in entity.fields:
            for constraint in f.constraints_of(ConstraintKind.DEFAULT):
                literal = constraint.literal
                mismatch = _default_matches(model, f, literal.kind, literal.value)
                if mismatch:
                    diagnostics.append(_warning(
                        "default-type-mismatch",
                        f"DEFAULT {literal.text} on '{entity.name}.{f.name}': {mismatch}",
                        entity=entity.name, field=f.name, line=constraint.line, column=constraint.column,
                    ))
    return diagnostics


def _feature_columns(entity: Entity):
    if entity.partition is not None and not entity.partition.clause:
        yield "PARTITION", entity.partition.columns
    if entity.ttl is not None:
        yield "TTL", [entity.ttl.column]
    if entity.fts is not None:
        yield "FTS", entity.fts.columns
    if entity.soft_delete is not None:
        yield "SOFT_DELETE", [entity.soft_delete]


def check_features(model: SchemaModel) -> List[Diagnostic]:
    diagnostics = []
    for entity in model.entities:
        for feature, columns in _feature_columns(entity):
            if not columns:
                diagnostics.append(_error(
                    "feature-no-fields", f"{feature} on entity '{entity.name}' lists no fields",
                    entity=entity.name, line=entity.line, column=entity.column,
                ))
            for column in columns:
                f = entity.get_field(column)
                if f is None or not f.is_column:
                    diagnostics.append(_error(
                        "feature-unknown-field",
                        f"{feature} on entity '{entity.name}' references unknown field '{column}'",
                        entity=entity.name, field=column, line=entity.line, column=entity.column,
                    ))
        for f in entity.fields:
            if f.sigil == Sigil.SET and is_map_type(f.type.name):
                diagnostics.append(_error(
                    "set-map-unsupported",
                    f"Field '{entity.name}.{f.name}' uses map semantics ({f.type.name}); "
                    f"only set-of-scalar fields are supported",
                    entity=entity.name, field=f.name, line=f.line, column=f.column,
                ))
            if f.sigil == Sigil.LIST and f.constraints:
                diagnostics.append(_warning(
                    "list-field-constraint",
                    f"List field '{entity.name}.{f.name}' generates no column; its constraints are ignored",
                    entity=entity.name, field=f.name, line=f.line, column=f.column,
                ))
    return diagnostics


VALIDATION_CHECKS: List[Callable[[SchemaModel], List[Diagnostic]]] = [
    check_duplicate_declarations,
    check_primary_keys,
    check_foreign_keys,
    check_composite_keys,
    check_type_references,
    check_duplicates,
    check_check_expressions,
    check_defaults,
    check_features,
]


def validate_schema(model: SchemaModel) -> ValidationResult:
    """Run every validation check and collect all diagnostics."""
    diagnostics: List[Diagnostic] = []
    for check in VALIDATION_CHECKS:
        found = check(model)
        if found:
            logger.debug(f"{check.__name__}: {len(found)} diagnostics")
        diagnostics.extend(found)

    result = ValidationResult.from_diagnostics(diagnostics)
    logger.info(f"Validation finished: {result.error_count} errors, {result.warning_count} warnings")
    return result

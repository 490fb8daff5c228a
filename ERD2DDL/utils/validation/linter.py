"""Schema linter: advisory structural warnings over the semantic model.

Read-only and independent of validation; every finding is a warning with
error type ``LintWarning``. Individual rules can be switched off by code,
either per call or through the ``lint.disabled`` list in config.yaml.
"""

from __future__ import annotations

from typing import Callable, Iterable, List, Optional, Set, Tuple

from ERD2DDL.config.loader import get_config
from ERD2DDL.ir.models.schema import ConstraintKind, Entity, EntityField, SchemaModel, Sigil
from ERD2DDL.utils.dsl.errors import LINT_WARNING
from ERD2DDL.utils.dsl.models import CompilationStage, Diagnostic, ErrorSeverity
from ERD2DDL.utils.logging import get_logger

logger = get_logger(__name__)

AUDIT_TIMESTAMP_COLUMNS = ("created_at", "updated_at")


def _lint(
    code: str,
    message: str,
    entity: Optional[str] = None,
    field: Optional[str] = None,
    statement: Optional[str] = None,
    line: Optional[int] = None,
    column: Optional[int] = None,
) -> Diagnostic:
    return Diagnostic(
        severity=ErrorSeverity.WARNING,
        code=code,
        error_type=LINT_WARNING,
        message=message,
        stage=CompilationStage.LINT,
        entity=entity,
        field=field,
        statement=statement,
        line=line,
        column=column,
    )


# ============================================================================
# Rules
# ============================================================================

def lint_redundant_primary_keys(model: SchemaModel) -> List[Diagnostic]:
    """A field marked PK inline and also listed in a PK(...) line."""
    diagnostics = []
    for entity in model.entities:
        declared = set(entity.declared_key_columns)
        for f in entity.fields:
            inline = [c for c in f.constraints_of(ConstraintKind.PRIMARY_KEY) if c.origin == "field"]
            if inline and f.name in declared:
                diagnostics.append(_lint(
                    "redundant-pk",
                    f"Field '{entity.name}.{f.name}' is marked PK and also listed in PK(...)",
                    entity=entity.name, field=f.name, line=f.line, column=f.column,
                ))
    return diagnostics


def _indexed_leading_columns(model: SchemaModel, entity: Entity) -> Set[str]:
    leading: Set[str] = set()
    for statement in model.statements_of("INDEX"):
        if statement.target == entity.name and statement.columns:
            leading.add(statement.columns[0])
    composite = entity.composite_key()
    if composite is not None and composite.columns:
        leading.add(composite.columns[0])
    for unique in entity.entity_constraints(ConstraintKind.UNIQUE):
        if unique.columns:
            leading.add(unique.columns[0])
    return leading


def lint_foreign_key_indexes(model: SchemaModel) -> List[Diagnostic]:
    """FK columns not covered by any index."""
    diagnostics = []
    for entity in model.entities:
        leading = _indexed_leading_columns(model, entity)
        for f in entity.column_fields():
            if not f.is_foreign_key or f.name in leading:
                continue
            if f.has(ConstraintKind.PRIMARY_KEY) or f.has(ConstraintKind.UNIQUE):
                continue
            diagnostics.append(_lint(
                "fk-missing-index",
                f"Foreign key column '{entity.name}.{f.name}' has no index; consider "
                f"INDEX idx_{entity.name.lower()}_{f.name} ON {entity.name} ({f.name})",
                entity=entity.name, field=f.name, line=f.line, column=f.column,
            ))
    return diagnostics


def lint_orphan_entities(model: SchemaModel) -> List[Diagnostic]:
    """Entities that take part in no relationship."""
    return [
        _lint(
            "orphan-entity",
            f"Entity '{entity.name}' has no relationships to other entities",
            entity=entity.name, line=entity.line, column=entity.column,
        )
        for entity in model.entities
        if not model.relationships_of(entity.name)
    ]


def lint_unused_enums(model: SchemaModel) -> List[Diagnostic]:
    used = {f.enum_name for entity in model.entities for f in entity.fields if f.enum_name}
    return [
        _lint(
            "unused-enum",
            f"Enum '{enum.name}' is not used by any field",
            statement=f"enum {enum.name}", line=enum.line, column=enum.column,
        )
        for enum in model.enums
        if enum.name not in used
    ]


def _entity_reference_without_fk(f: EntityField) -> bool:
    return f.sigil != Sigil.LIST and f.entity_type is not None and not f.is_foreign_key


def lint_entity_references(model: SchemaModel) -> List[Diagnostic]:
    """Scalar or set fields typed with an entity but carrying no FK."""
    diagnostics = []
    for entity in model.entities:
        for f in entity.fields:
            if _entity_reference_without_fk(f):
                diagnostics.append(_lint(
                    "entity-ref-without-fk",
                    f"Field '{entity.name}.{f.name}' is typed with entity '{f.entity_type}' but has no FK",
                    entity=entity.name, field=f.name, line=f.line, column=f.column,
                ))
    return diagnostics


def lint_audit_columns(model: SchemaModel) -> List[Diagnostic]:
    diagnostics = []
    for entity in model.entities:
        if not entity.auditable:
            continue
        missing = [c for c in AUDIT_TIMESTAMP_COLUMNS if entity.get_field(c) is None]
        if missing:
            diagnostics.append(_lint(
                "auditable-missing-timestamps",
                f"AUDITABLE entity '{entity.name}' lacks column(s): {', '.join(missing)}",
                entity=entity.name, line=entity.line, column=entity.column,
            ))
    return diagnostics


LINT_RULES: List[Tuple[str, Callable[[SchemaModel], List[Diagnostic]]]] = [
    ("redundant-pk", lint_redundant_primary_keys),
    ("fk-missing-index", lint_foreign_key_indexes),
    ("orphan-entity", lint_orphan_entities),
    ("unused-enum", lint_unused_enums),
    ("entity-ref-without-fk", lint_entity_references),
    ("auditable-missing-timestamps", lint_audit_columns),
]


def lint_schema(model: SchemaModel, disabled: Optional[Iterable[str]] = None) -> List[Diagnostic]:
    """Run every enabled lint rule and return the warnings in rule order.

    Args:
        model: Semantic model (best-effort models are accepted)
        disabled: Rule codes to skip; defaults to ``lint.disabled`` from config

    Returns:
        List of LintWarning diagnostics
    """
    if disabled is None:
        disabled = get_config("lint").get("disabled") or []
    skipped = set(disabled)

    diagnostics: List[Diagnostic] = []
    for code, rule in LINT_RULES:
        if code in skipped:
            logger.debug(f"Lint rule '{code}' disabled")
            continue
        diagnostics.extend(rule(model))

    logger.info(f"Lint produced {len(diagnostics)} warning(s)")
    return diagnostics

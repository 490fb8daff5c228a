"""Schema linting utilities for ERD2DDL."""

from .linter import (
    lint_schema,
    lint_redundant_primary_keys,
    lint_foreign_key_indexes,
    lint_orphan_entities,
    lint_unused_enums,
    lint_entity_references,
    lint_audit_columns,
    LINT_RULES,
)

__all__ = [
    "lint_schema",
    "lint_redundant_primary_keys",
    "lint_foreign_key_indexes",
    "lint_orphan_entities",
    "lint_unused_enums",
    "lint_entity_references",
    "lint_audit_columns",
    "LINT_RULES",
]

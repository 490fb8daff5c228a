"""Semantic model and sidecar overlay models."""

from .schema import (
    Sigil,
    SIGIL_CHARS,
    LiteralValue,
    TypeRef,
    ConstraintKind,
    Constraint,
    EntityField,
    PartitionSpec,
    TTLSpec,
    FTSSpec,
    PolicySpec,
    RLSSpec,
    Entity,
    EnumType,
    RelationshipKind,
    Relationship,
    TopLevelStatement,
    UnresolvedReference,
    DuplicateDeclaration,
    SchemaModel,
    escape_sql_string,
)
from .sidecar import SidecarMigrations, SidecarEntityOverlay, SidecarOverlay

__all__ = [
    "Sigil",
    "SIGIL_CHARS",
    "LiteralValue",
    "TypeRef",
    "ConstraintKind",
    "Constraint",
    "EntityField",
    "PartitionSpec",
    "TTLSpec",
    "FTSSpec",
    "PolicySpec",
    "RLSSpec",
    "Entity",
    "EnumType",
    "RelationshipKind",
    "Relationship",
    "TopLevelStatement",
    "UnresolvedReference",
    "DuplicateDeclaration",
    "SchemaModel",
    "escape_sql_string",
    "SidecarMigrations",
    "SidecarEntityOverlay",
    "SidecarOverlay",
]

"""Semantic schema model built from an ERD document.

The model is an arena keyed by name: entities, enums and statements are held
in declaration-ordered lists and cross references (foreign key targets,
enum types, join entities) store names, never object references. Every model
is frozen once the builder has produced it.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ConfigDict


class Sigil(str, Enum):
    """Cardinality sigil of a field."""
    SCALAR = "scalar"
    LIST = "list"
    SET = "set"


SIGIL_CHARS: Dict[str, Sigil] = {"$": Sigil.SCALAR, "@": Sigil.LIST, "%": Sigil.SET}


def escape_sql_string(value: str) -> str:
    """Escape string value for SQL."""
    return value.replace("'", "''")


# ============================================================================
# Literals and types
# ============================================================================

class LiteralValue(BaseModel):
    """A DSL literal (DEFAULT value, constraint argument, list item)."""

    kind: Literal["number", "string", "boolean", "null", "identifier", "call", "list"]
    text: str = Field(description="Literal as written in the source")
    value: Any = Field(None, description="Python value of the literal")
    items: List[LiteralValue] = Field(default_factory=list, description="Items of a list literal")

    model_config = ConfigDict(frozen=True)

    def to_sql(self) -> str:
        """Render the literal as a SQL expression."""
        if self.kind == "string":
            return f"'{escape_sql_string(str(self.value))}'"
        if self.kind == "boolean":
            return "TRUE" if self.value else "FALSE"
        if self.kind == "null":
            return "NULL"
        if self.kind == "list":
            return "ARRAY[" + ", ".join(item.to_sql() for item in self.items) + "]"
        return self.text

    def as_name(self) -> str:
        """Literal used where a name is expected (FK target, column)."""
        if self.kind == "string":
            return str(self.value)
        return self.text


class TypeRef(BaseModel):
    """Declared field type: a name plus optional literal arguments."""

    name: str
    args: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    def render(self) -> str:
        if not self.args:
            return self.name
        return f"{self.name}({', '.join(self.args)})"


# ============================================================================
# Constraints and fields
# ============================================================================

class ConstraintKind(str, Enum):
    PRIMARY_KEY = "primary_key"
    COMPOSITE_PRIMARY_KEY = "composite_primary_key"
    UNIQUE = "unique"
    NOT_NULL = "not_null"
    DEFAULT = "default"
    FOREIGN_KEY = "foreign_key"
    CHECK = "check"


class Constraint(BaseModel):
    """A field-level or entity-level constraint."""

    kind: ConstraintKind
    columns: List[str] = Field(default_factory=list, description="Columns of entity-level constraints")
    literal: Optional[LiteralValue] = Field(None, description="DEFAULT value")
    expression: Optional[str] = Field(None, description="CHECK expression text")
    target: Optional[str] = Field(None, description="Resolved FK target entity name")
    target_columns: List[str] = Field(default_factory=list, description="Explicit FK referenced columns")
    on_delete: Optional[str] = None
    on_update: Optional[str] = None
    origin: Literal["field", "entity"] = Field("field", description="Where the constraint was declared")
    line: Optional[int] = None
    column: Optional[int] = None

    model_config = ConfigDict(frozen=True)


class EntityField(BaseModel):
    """A field of an entity."""

    name: str
    sigil: Sigil
    type: TypeRef
    constraints: List[Constraint] = Field(default_factory=list)
    entity_type: Optional[str] = Field(None, description="Entity named by the declared type")
    enum_name: Optional[str] = Field(None, description="Enum named by the declared type")
    references: Optional[str] = Field(None, description="Resolved FK target entity name")
    line: Optional[int] = None
    column: Optional[int] = None

    model_config = ConfigDict(frozen=True)

    def has(self, kind: ConstraintKind) -> bool:
        return any(c.kind == kind for c in self.constraints)

    def constraints_of(self, kind: ConstraintKind) -> List[Constraint]:
        return [c for c in self.constraints if c.kind == kind]

    def first(self, kind: ConstraintKind) -> Optional[Constraint]:
        for c in self.constraints:
            if c.kind == kind:
                return c
        return None

    @property
    def is_column(self) -> bool:
        """List-sigil fields are inverse relations and have no column."""
        return self.sigil != Sigil.LIST

    @property
    def is_foreign_key(self) -> bool:
        return self.has(ConstraintKind.FOREIGN_KEY)


# ============================================================================
# Extended features
# ============================================================================

class PartitionSpec(BaseModel):
    method: str = "RANGE"
    columns: List[str] = Field(default_factory=list)
    clause: Optional[str] = Field(None, description="Verbatim partition clause overriding method/columns")

    model_config = ConfigDict(frozen=True)

    def render(self, quote=lambda name: name) -> str:
        if self.clause:
            return self.clause
        return f"{self.method} ({', '.join(quote(c) for c in self.columns)})"


class TTLSpec(BaseModel):
    column: str
    interval: str

    model_config = ConfigDict(frozen=True)


class FTSSpec(BaseModel):
    columns: List[str] = Field(default_factory=list)
    method: str = "GIN"

    model_config = ConfigDict(frozen=True)


class PolicySpec(BaseModel):
    name: str
    command: Optional[str] = None
    role: Optional[str] = None
    using: Optional[str] = None
    with_check: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class RLSSpec(BaseModel):
    enabled: bool = False
    policies: List[PolicySpec] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


# ============================================================================
# Entities, enums, relationships, statements
# ============================================================================

class Entity(BaseModel):
    """A declared schema unit lowering to one table."""

    name: str
    fields: List[EntityField] = Field(default_factory=list)
    constraints: List[Constraint] = Field(default_factory=list, description="Entity-level constraints")
    declared_key_columns: List[str] = Field(
        default_factory=list, description="Merged columns of every PK(...) line, before promotion"
    )
    partition: Optional[PartitionSpec] = None
    ttl: Optional[TTLSpec] = None
    fts: Optional[FTSSpec] = None
    rls: Optional[RLSSpec] = None
    auditable: bool = False
    soft_delete: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None

    model_config = ConfigDict(frozen=True)

    def get_field(self, name: str) -> Optional[EntityField]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    def column_fields(self) -> List[EntityField]:
        return [f for f in self.fields if f.is_column]

    def composite_key(self) -> Optional[Constraint]:
        for c in self.constraints:
            if c.kind == ConstraintKind.COMPOSITE_PRIMARY_KEY:
                return c
        return None

    def entity_constraints(self, kind: ConstraintKind) -> List[Constraint]:
        return [c for c in self.constraints if c.kind == kind]

    def primary_key_columns(self) -> List[str]:
        composite = self.composite_key()
        if composite is not None:
            return list(composite.columns)
        return [f.name for f in self.fields if f.has(ConstraintKind.PRIMARY_KEY)]

    def foreign_key_fields(self) -> List[EntityField]:
        return [f for f in self.fields if f.is_foreign_key]


class EnumType(BaseModel):
    name: str
    variants: List[str] = Field(default_factory=list)
    line: Optional[int] = None
    column: Optional[int] = None

    model_config = ConfigDict(frozen=True)


class RelationshipKind(str, Enum):
    MANY_TO_ONE = "many_to_one"
    ONE_TO_ONE = "one_to_one"
    ONE_TO_MANY = "one_to_many"
    MANY_TO_MANY = "many_to_many"


class Relationship(BaseModel):
    """Relationship derived from foreign keys and list fields."""

    kind: RelationshipKind
    source: str
    target: str
    field: Optional[str] = None
    join_entity: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    def involves(self, entity_name: str) -> bool:
        return entity_name in (self.source, self.target, self.join_entity)


class TopLevelStatement(BaseModel):
    """Pass-through (INDEX, MATERIALIZED VIEW, TRIGGER, EXTENSION) or plugin statement."""

    keyword: str
    name: Optional[str] = None
    target: Optional[str] = None
    columns: List[str] = Field(default_factory=list)
    body: str = Field(description="Statement text as written, without the trailing semicolon")
    payload: Any = Field(None, description="Value returned by a plugin's parse hook")
    plugin: bool = False
    line: Optional[int] = None
    column: Optional[int] = None

    model_config = ConfigDict(frozen=True)


class UnresolvedReference(BaseModel):
    entity: str
    field: str
    referenced_name: str
    kind: Literal["foreign_key", "type"]
    line: Optional[int] = None
    column: Optional[int] = None

    model_config = ConfigDict(frozen=True)


class DuplicateDeclaration(BaseModel):
    name: str
    kind: Literal["entity", "enum"]
    line: Optional[int] = None
    column: Optional[int] = None
    first_line: Optional[int] = None

    model_config = ConfigDict(frozen=True)


class SchemaModel(BaseModel):
    """The complete semantic model of one ERD document."""

    entities: List[Entity] = Field(default_factory=list)
    enums: List[EnumType] = Field(default_factory=list)
    relationships: List[Relationship] = Field(default_factory=list)
    statements: List[TopLevelStatement] = Field(default_factory=list)
    unresolved: List[UnresolvedReference] = Field(default_factory=list)
    duplicates: List[DuplicateDeclaration] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    def get_entity(self, name: Optional[str]) -> Optional[Entity]:
        if name is None:
            return None
        for entity in self.entities:
            if entity.name == name:
                return entity
        return None

    def get_enum(self, name: Optional[str]) -> Optional[EnumType]:
        if name is None:
            return None
        for enum in self.enums:
            if enum.name == name:
                return enum
        return None

    @property
    def entity_names(self) -> List[str]:
        return [e.name for e in self.entities]

    @property
    def enum_names(self) -> List[str]:
        return [e.name for e in self.enums]

    def statements_of(self, keyword: str) -> List[TopLevelStatement]:
        return [s for s in self.statements if s.keyword == keyword]

    def referenced_columns(self, fk: Constraint, default_column: str = "id") -> List[str]:
        """Columns an FK constraint points at in its target entity."""
        if fk.target_columns:
            return list(fk.target_columns)
        target = self.get_entity(fk.target)
        if target is not None:
            key = target.primary_key_columns()
            if key:
                return key
        return [default_column]

    def column_type(self, field: EntityField, default_column: str = "id") -> str:
        """SQL type of the column backing a field, before sigil decoration.

        Entity-typed fields take the type of the referenced key column.
        """
        if field.entity_type is None:
            return field.type.render()
        target = self.get_entity(field.entity_type)
        fk = field.first(ConstraintKind.FOREIGN_KEY)
        if fk is not None and fk.target == field.entity_type:
            columns = self.referenced_columns(fk, default_column)
        else:
            columns = target.primary_key_columns() if target is not None else []
        referenced = target.get_field(columns[0]) if target is not None and columns else None
        if referenced is not None and referenced.entity_type is None:
            return referenced.type.render()
        return "BIGINT"

    def relationships_of(self, entity_name: str) -> List[Relationship]:
        return [r for r in self.relationships if r.involves(entity_name)]

    def join_entities(self) -> List[str]:
        seen: List[str] = []
        for r in self.relationships:
            if r.kind == RelationshipKind.MANY_TO_MANY and r.join_entity and r.join_entity not in seen:
                seen.append(r.join_entity)
        return seen

"""DDL compilation: lower the semantic model to ordered PostgreSQL DDL.

Deterministic transformation; the output depends only on declaration order.
Artifact layout:
1. header comment
2. CREATE EXTENSION
3. CREATE TYPE ... AS ENUM
4. per entity, in declaration order: CREATE TABLE, then the entity's feature
   stubs (set-element notes, TTL, FTS index, RLS + policies, AUDITABLE
   triggers, SOFT_DELETE view), then sidecar ``migrations.post`` text
5. ALTER TABLE ... ADD CONSTRAINT ... FOREIGN KEY (forward references are legal)
6. INDEX / MATERIALIZED VIEW / TRIGGER / plugin statements, bodies verbatim

Within CREATE TABLE, column definitions follow field order and carry
PRIMARY KEY, UNIQUE, NOT NULL, DEFAULT, CHECK in that order; table
constraints follow: composite PRIMARY KEY, multi-column UNIQUE, CHECK.
List-sigil (@) fields produce no column.

The compiler performs no file I/O.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ERD2DDL.config.loader import get_config
from ERD2DDL.ir.models.schema import (
    ConstraintKind,
    Entity,
    EntityField,
    PartitionSpec,
    RLSSpec,
    SchemaModel,
    Sigil,
    TopLevelStatement,
    escape_sql_string,
)
from ERD2DDL.ir.models.sidecar import SidecarEntityOverlay, SidecarOverlay
from ERD2DDL.utils.dsl.models import CompilationStage, Diagnostic, ErrorSeverity
from ERD2DDL.utils.dsl.registry import PluginRegistry
from ERD2DDL.utils.dsl.type_catalog import is_json_type
from ERD2DDL.utils.error_handling import ErrorContext, handle_stage_error
from ERD2DDL.utils.logging import get_logger

logger = get_logger(__name__)


DEFAULT_HEADER = "-- Generated by ERD2DDL. Do not edit by hand."

# PostgreSQL reserved key words; identifiers matching one are quoted
SQL_RESERVED_WORDS = frozenset({
    "ALL", "ANALYSE", "ANALYZE", "AND", "ANY", "ARRAY", "AS", "ASC", "ASYMMETRIC", "BOTH",
    "CASE", "CAST", "CHECK", "COLLATE", "COLUMN", "CONSTRAINT", "CREATE", "CURRENT_CATALOG",
    "CURRENT_DATE", "CURRENT_ROLE", "CURRENT_TIME", "CURRENT_TIMESTAMP", "CURRENT_USER",
    "DEFAULT", "DEFERRABLE", "DESC", "DISTINCT", "DO", "ELSE", "END", "EXCEPT", "FALSE",
    "FETCH", "FOR", "FOREIGN", "FROM", "GRANT", "GROUP", "HAVING", "IN", "INITIALLY",
    "INTERSECT", "INTO", "LATERAL", "LEADING", "LIMIT", "LOCALTIME", "LOCALTIMESTAMP",
    "NOT", "NULL", "OFFSET", "ON", "ONLY", "OR", "ORDER", "PLACING", "PRIMARY",
    "REFERENCES", "RETURNING", "SELECT", "SESSION_USER", "SOME", "SYMMETRIC", "TABLE",
    "THEN", "TO", "TRAILING", "TRUE", "UNION", "UNIQUE", "USER", "USING", "VARIADIC",
    "WHEN", "WHERE", "WINDOW", "WITH",
})

_SIMPLE_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_IF_NOT_EXISTS_TARGETS = re.compile(r"^(INDEX|MATERIALIZED\s+VIEW|EXTENSION)\s+")


def quote_identifier(name: str) -> str:
    """Quote an identifier only when needed.

    ``.`` separates schema-qualified parts, each quoted independently; any
    other non-identifier character (``/`` included) quotes the whole name.
    """
    if not name:
        return '""'
    if "." in name and "/" not in name:
        return ".".join(quote_identifier(part) for part in name.split("."))
    if _SIMPLE_IDENTIFIER.match(name) and name.upper() not in SQL_RESERVED_WORDS:
        return name
    return '"' + name.replace('"', '""') + '"'


def object_slug(name: str) -> str:
    """Lower-case identifier fragment used to derive constraint/index names."""
    return re.sub(r"[^A-Za-z0-9]+", "_", name).strip("_").lower()


def _terminate(statement: str) -> str:
    text = statement.rstrip()
    if text.startswith("--") or text.endswith(";"):
        return text
    return text + ";"


class CodegenOptions(BaseModel):
    """Code generation options (``codegen`` section of config.yaml)."""

    if_not_exists: bool = False
    header: Optional[str] = DEFAULT_HEADER
    fts_language: str = "english"
    soft_delete_view_suffix: str = "_active"
    audit_created_function: str = "set_created_at"
    audit_updated_function: str = "set_updated_at"
    default_reference_column: str = "id"

    model_config = ConfigDict(frozen=True, extra="ignore")

    @classmethod
    def from_config(cls, path: Optional[Path] = None) -> CodegenOptions:
        return cls(**get_config("codegen", path))


class DDLCompilationOutput(BaseModel):
    """Output structure for DDL compilation."""

    ddl_statements: List[str] = Field(description="DDL statements and stub comments in emission order")
    sql: str = Field(description="Complete DDL artifact text")
    diagnostics: List[Diagnostic] = Field(default_factory=list, description="Code generation diagnostics")

    model_config = ConfigDict(extra="forbid")


class DDLCompiler:
    """Lowers one SchemaModel to DDL text."""

    def __init__(
        self,
        model: SchemaModel,
        options: Optional[CodegenOptions] = None,
        sidecar: Optional[SidecarOverlay] = None,
        registry: Optional[PluginRegistry] = None,
    ):
        self.model = model
        self.options = options or CodegenOptions()
        self.sidecar = sidecar or SidecarOverlay()
        self.registry = registry or PluginRegistry()
        self.diagnostics: List[Diagnostic] = []

    @property
    def _ine(self) -> str:
        return "IF NOT EXISTS " if self.options.if_not_exists else ""

    def _guard(self, statement: str) -> str:
        """Make a statement with no IF NOT EXISTS form safe to re-apply.

        Re-creating a type, constraint, policy or trigger raises
        ``duplicate_object``; the block swallows exactly that condition.
        """
        if not self.options.if_not_exists:
            return statement
        body = statement.rstrip().rstrip(";")
        return f"DO $$ BEGIN {body}; EXCEPTION WHEN duplicate_object THEN NULL; END $$;"

    def compile(self) -> DDLCompilationOutput:
        logger.info(f"Starting DDL compilation for {len(self.model.entities)} entities")
        self._check_sidecar()

        sections: List[List[str]] = [self._extensions(), self._enum_types()]
        sections.extend(self._entity_block(entity) for entity in self.model.entities)
        sections.append(self._foreign_keys())
        sections.append(self._top_level_statements())
        sections = [section for section in sections if section]

        statements = [statement for section in sections for statement in section]
        parts = []
        if self.options.header:
            parts.append(self.options.header)
        parts.extend("\n".join(section) for section in sections)
        sql = "\n\n".join(parts) + "\n"

        logger.info(f"Generated {len(statements)} DDL statements")
        for statement in statements:
            logger.debug(f"DDL: {statement}")
        return DDLCompilationOutput(ddl_statements=statements, sql=sql, diagnostics=self.diagnostics)

    def _check_sidecar(self) -> None:
        for name in self.sidecar.unknown_entities(self.model.entity_names):
            logger.warning(f"Sidecar overlay names unknown entity '{name}'")
            self.diagnostics.append(Diagnostic(
                severity=ErrorSeverity.WARNING,
                code="sidecar-unknown-entity",
                error_type="ValidationWarning",
                message=f"Sidecar overlay names entity '{name}', which is not declared",
                stage=CompilationStage.CODEGEN,
                entity=name,
            ))

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def _extensions(self) -> List[str]:
        return [self._pass_through(s) for s in self.model.statements_of("EXTENSION")]

    def _enum_types(self) -> List[str]:
        statements = []
        for enum in self.model.enums:
            labels = ", ".join(f"'{escape_sql_string(v)}'" for v in enum.variants)
            statements.append(self._guard(f"CREATE TYPE {quote_identifier(enum.name)} AS ENUM ({labels});"))
        return statements

    def _entity_block(self, entity: Entity) -> List[str]:
        overlay = self.sidecar.for_entity(entity.name)
        statements = [self._create_table(entity, overlay)]
        statements.extend(self._set_element_stubs(entity))
        statements.extend(self._ttl_stub(entity))
        statements.extend(self._fts_index(entity))
        statements.extend(self._rls(entity, overlay))
        statements.extend(self._audit_triggers(entity))
        statements.extend(self._soft_delete_view(entity))
        if overlay is not None and overlay.post and overlay.post.strip():
            statements.append(overlay.post.strip())
        return statements

    def _foreign_keys(self) -> List[str]:
        statements = []
        for entity in self.model.entities:
            for f in entity.column_fields():
                fk = f.first(ConstraintKind.FOREIGN_KEY)
                if fk is None or fk.target is None:
                    continue
                referenced = self.model.referenced_columns(fk, self.options.default_reference_column)
                if len(referenced) != 1:
                    # one local column cannot reference a composite key
                    logger.warning(
                        f"Skipping foreign key {entity.name}.{f.name}: '{fk.target}' has a "
                        f"{len(referenced)}-column key"
                    )
                    continue
                name = f"fk_{object_slug(entity.name)}_{object_slug(f.name)}"
                statement = (
                    f"ALTER TABLE {quote_identifier(entity.name)} ADD CONSTRAINT {quote_identifier(name)} "
                    f"FOREIGN KEY ({quote_identifier(f.name)}) REFERENCES {quote_identifier(fk.target)} "
                    f"({', '.join(quote_identifier(c) for c in referenced)})"
                )
                if fk.on_delete:
                    statement += f" ON DELETE {fk.on_delete}"
                if fk.on_update:
                    statement += f" ON UPDATE {fk.on_update}"
                statements.append(self._guard(statement + ";"))
        return statements

    def _top_level_statements(self) -> List[str]:
        statements = []
        for statement in self.model.statements:
            if statement.keyword == "EXTENSION":
                continue
            if statement.plugin:
                statements.extend(self._emit_plugin(statement))
            else:
                statements.append(self._pass_through(statement))
        return statements

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    def _create_table(self, entity: Entity, overlay: Optional[SidecarEntityOverlay]) -> str:
        composite = entity.composite_key()
        if composite is not None and not composite.columns:
            composite = None
        definitions = [
            self._column_definition(f, inline_pk=composite is None)
            for f in entity.column_fields()
        ]
        if composite is not None:
            definitions.append(f"PRIMARY KEY ({', '.join(quote_identifier(c) for c in composite.columns)})")
        for unique in entity.entity_constraints(ConstraintKind.UNIQUE):
            if unique.columns:
                definitions.append(f"UNIQUE ({', '.join(quote_identifier(c) for c in unique.columns)})")
        for check in entity.entity_constraints(ConstraintKind.CHECK):
            definitions.append(f"CHECK ({check.expression})")

        partition = self._partition(entity, overlay)
        suffix = f" PARTITION BY {partition.render(quote_identifier)}" if partition is not None else ""
        return f"CREATE TABLE {self._ine}{quote_identifier(entity.name)} ({', '.join(definitions)}){suffix};"

    @staticmethod
    def _partition(entity: Entity, overlay: Optional[SidecarEntityOverlay]) -> Optional[PartitionSpec]:
        if overlay is not None and overlay.partitions is not None:
            return overlay.partitions
        return entity.partition

    def _column_type(self, f: EntityField) -> str:
        sql_type = self.model.column_type(f, self.options.default_reference_column)
        if f.enum_name is not None and not f.type.args:
            sql_type = quote_identifier(f.enum_name)
        if f.sigil == Sigil.SET and not is_json_type(f.type.name):
            sql_type += "[]"
        return sql_type

    def _column_definition(self, f: EntityField, inline_pk: bool) -> str:
        parts = [quote_identifier(f.name), self._column_type(f)]
        if inline_pk and f.has(ConstraintKind.PRIMARY_KEY):
            parts.append("PRIMARY KEY")
        if f.has(ConstraintKind.UNIQUE) and f.sigil != Sigil.SET:
            parts.append("UNIQUE")
        if f.has(ConstraintKind.NOT_NULL):
            parts.append("NOT NULL")
        default = f.first(ConstraintKind.DEFAULT)
        if default is not None:
            parts.append(f"DEFAULT {default.literal.to_sql()}")
        for check in f.constraints_of(ConstraintKind.CHECK):
            parts.append(f"CHECK ({check.expression})")
        return " ".join(parts)

    # ------------------------------------------------------------------
    # Feature stubs
    # ------------------------------------------------------------------

    def _set_element_stubs(self, entity: Entity) -> List[str]:
        statements = []
        for f in entity.column_fields():
            if f.sigil != Sigil.SET or not f.has(ConstraintKind.UNIQUE):
                continue
            column = f"{quote_identifier(entity.name)}.{quote_identifier(f.name)}"
            statements.append(f"-- UNIQUE elements of {column} are enforced by the application layer")
            statements.append(f"COMMENT ON COLUMN {column} IS 'set: elements are unique';")
        return statements

    def _ttl_stub(self, entity: Entity) -> List[str]:
        if entity.ttl is None:
            return []
        table = quote_identifier(entity.name)
        column = quote_identifier(entity.ttl.column)
        interval = entity.ttl.interval
        return [
            f"-- TTL: rows of {table} expire {interval} after {column}; schedule a purge job",
            f"COMMENT ON TABLE {table} IS '{escape_sql_string(f'ttl: {entity.ttl.column} + {interval}')}';",
        ]

    def _fts_index(self, entity: Entity) -> List[str]:
        if entity.fts is None or not entity.fts.columns:
            return []
        language = escape_sql_string(self.options.fts_language)
        document = " || ' ' || ".join(f"coalesce({quote_identifier(c)}, '')" for c in entity.fts.columns)
        name = quote_identifier(f"idx_{object_slug(entity.name)}_fts")
        return [
            f"CREATE INDEX {self._ine}{name} ON {quote_identifier(entity.name)} "
            f"USING {entity.fts.method.upper()} (to_tsvector('{language}', {document}));"
        ]

    def _rls(self, entity: Entity, overlay: Optional[SidecarEntityOverlay]) -> List[str]:
        rls: Optional[RLSSpec] = entity.rls
        if overlay is not None and overlay.rls is not None:
            rls = overlay.rls
        if rls is None:
            return []
        table = quote_identifier(entity.name)
        statements = []
        if rls.enabled:
            statements.append(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY;")
        for policy in rls.policies:
            statement = f"CREATE POLICY {quote_identifier(policy.name)} ON {table}"
            if policy.command:
                statement += f" FOR {policy.command}"
            if policy.role:
                statement += f" TO {policy.role}"
            if policy.using:
                statement += f" USING ({policy.using})"
            if policy.with_check:
                statement += f" WITH CHECK ({policy.with_check})"
            statements.append(self._guard(statement + ";"))
        return statements

    def _audit_triggers(self, entity: Entity) -> List[str]:
        if not entity.auditable:
            return []
        table = quote_identifier(entity.name)
        slug = object_slug(entity.name)
        return [
            self._guard(
                f"CREATE TRIGGER {quote_identifier(f'trg_{slug}_audit_created')} BEFORE INSERT ON {table} "
                f"FOR EACH ROW EXECUTE PROCEDURE {self.options.audit_created_function}();"
            ),
            self._guard(
                f"CREATE TRIGGER {quote_identifier(f'trg_{slug}_audit_updated')} BEFORE UPDATE ON {table} "
                f"FOR EACH ROW EXECUTE PROCEDURE {self.options.audit_updated_function}();"
            ),
        ]

    def _soft_delete_view(self, entity: Entity) -> List[str]:
        if entity.soft_delete is None:
            return []
        view = quote_identifier(entity.name + self.options.soft_delete_view_suffix)
        create = "CREATE OR REPLACE VIEW" if self.options.if_not_exists else "CREATE VIEW"
        return [
            f"{create} {view} AS SELECT * FROM {quote_identifier(entity.name)} "
            f"WHERE {quote_identifier(entity.soft_delete)} IS NULL;"
        ]

    # ------------------------------------------------------------------
    # Top-level statements
    # ------------------------------------------------------------------

    def _pass_through(self, statement: TopLevelStatement) -> str:
        body = statement.body.strip().rstrip(";").rstrip()
        if self.options.if_not_exists:
            body = _IF_NOT_EXISTS_TARGETS.sub(lambda m: m.group(0).rstrip() + " IF NOT EXISTS ", body, count=1)
        if statement.keyword == "TRIGGER":
            return self._guard(f"CREATE {body};")
        return f"CREATE {body};"

    def _emit_plugin(self, statement: TopLevelStatement) -> List[str]:
        plugin = self.registry.get(statement.keyword)
        if plugin is None:
            self.diagnostics.append(Diagnostic(
                severity=ErrorSeverity.ERROR,
                code="plugin-missing",
                error_type="ValidationError",
                message=f"No plugin registered for statement keyword '{statement.keyword}'",
                stage=CompilationStage.CODEGEN,
                statement=statement.keyword,
                line=statement.line,
                column=statement.column,
            ))
            return []
        try:
            emitted = plugin.emit(statement.payload, self.model)
        except Exception as e:
            context = ErrorContext(
                stage="codegen", statement=statement.keyword, line=statement.line, column=statement.column
            )
            response = handle_stage_error(e, context)
            self.diagnostics.append(
                Diagnostic.from_error_response(response, code="plugin-emit-failed", stage=CompilationStage.CODEGEN)
            )
            return []
        if isinstance(emitted, str):
            emitted = [emitted]
        return [_terminate(s) for s in emitted or [] if s and s.strip()]


def compile_ddl(
    model: SchemaModel,
    options: Optional[CodegenOptions] = None,
    sidecar: Optional[SidecarOverlay] = None,
    registry: Optional[PluginRegistry] = None,
) -> DDLCompilationOutput:
    """Generate the DDL artifact for a (possibly best-effort) model."""
    return DDLCompiler(model, options=options, sidecar=sidecar, registry=registry).compile()

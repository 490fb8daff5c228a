"""Model builder: resolves parsed statements into the semantic schema model.

Two passes, because foreign keys may reference entities declared later:
1. Register every entity and enum name (first declaration wins; repeats are
   recorded as duplicate declarations).
2. Build fields, constraints and feature attachments for each entity,
   resolving foreign key targets and enum types against the pass-1 tables.

Unresolved references never abort the build; they are recorded on the model
and reported by the validator so one bad field does not hide other errors.

FK target resolution order:
- explicit ``FK(Target)`` / ``FK(target=Target)`` argument (``Target.column``
  also names the referenced column);
- the field's declared type, when it names an entity;
- the field name minus its ``_id`` suffix, matched to an entity name
  case-insensitively with underscores ignored (``post_id`` -> ``Post``).
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from ERD2DDL.ir.models.schema import (
    Constraint,
    ConstraintKind,
    Entity,
    EntityField,
    EnumType,
    FTSSpec,
    LiteralValue,
    PartitionSpec,
    PolicySpec,
    Relationship,
    RelationshipKind,
    RLSSpec,
    SchemaModel,
    SIGIL_CHARS,
    Sigil,
    TopLevelStatement,
    TTLSpec,
    TypeRef,
    DuplicateDeclaration,
    UnresolvedReference,
)
from ERD2DDL.utils.logging import get_logger
from .ast_nodes import (
    ConstraintNode,
    DirectiveNode,
    Document,
    EntityBlock,
    EntityLine,
    EnumNode,
    FieldLine,
    LiteralNode,
    PassThroughStatement,
    PluginStatement,
)
from .type_catalog import is_builtin_type

logger = get_logger(__name__)


def to_literal_value(node: LiteralNode) -> LiteralValue:
    return LiteralValue(
        kind=node.kind,
        text=node.text,
        value=node.value,
        items=[to_literal_value(item) for item in node.items],
    )


def _literal_name(node: LiteralNode) -> str:
    if node.kind == "string":
        return str(node.value)
    return node.text


class SchemaBuilder:
    """Builds a SchemaModel from a parsed Document."""

    def __init__(self, document: Document):
        self.document = document
        self._entity_sites: Dict[str, EntityBlock] = {}
        self._enum_sites: Dict[str, EnumNode] = {}
        self._entity_blocks: List[EntityBlock] = []
        self._enum_nodes: List[EnumNode] = []
        self.duplicates: List[DuplicateDeclaration] = []
        self.unresolved: List[UnresolvedReference] = []

    def build(self) -> SchemaModel:
        self._register_declarations()
        entities = [self._build_entity(block) for block in self._entity_blocks]
        enums = [
            EnumType(name=node.name, variants=list(node.variants), line=node.line, column=node.column)
            for node in self._enum_nodes
        ]
        statements = [self._build_statement(s) for s in self.document.statements
                      if isinstance(s, (PassThroughStatement, PluginStatement))]
        relationships = derive_relationships(entities)

        logger.info(
            f"Built schema model: {len(entities)} entities, {len(enums)} enums, "
            f"{len(relationships)} relationships, {len(statements)} statements"
        )
        if self.unresolved:
            logger.debug(f"{len(self.unresolved)} unresolved references deferred to validation")

        return SchemaModel(
            entities=entities,
            enums=enums,
            relationships=relationships,
            statements=statements,
            unresolved=self.unresolved,
            duplicates=self.duplicates,
        )

    # ------------------------------------------------------------------
    # Pass 1
    # ------------------------------------------------------------------

    def _first_site(self, name: str):
        return self._entity_sites.get(name) or self._enum_sites.get(name)

    def _register_declarations(self) -> None:
        for statement in self.document.statements:
            if isinstance(statement, EntityBlock):
                kind, sites, ordered = "entity", self._entity_sites, self._entity_blocks
            elif isinstance(statement, EnumNode):
                kind, sites, ordered = "enum", self._enum_sites, self._enum_nodes
            else:
                continue
            first = self._first_site(statement.name)
            if first is not None:
                logger.warning(f"Duplicate declaration of {kind} '{statement.name}' on line {statement.line}")
                self.duplicates.append(DuplicateDeclaration(
                    name=statement.name,
                    kind=kind,
                    line=statement.line,
                    column=statement.column,
                    first_line=first.line,
                ))
                continue
            sites[statement.name] = statement
            ordered.append(statement)

    # ------------------------------------------------------------------
    # Pass 2
    # ------------------------------------------------------------------

    def _build_entity(self, block: EntityBlock) -> Entity:
        fields: List[EntityField] = []
        constraints: List[Constraint] = []
        key_columns: List[str] = []
        key_line: Optional[EntityLine] = None
        partition = ttl = fts = None
        rls_enabled = False
        policies: List[PolicySpec] = []
        auditable = False
        soft_delete = None

        for member in block.members:
            if isinstance(member, FieldLine):
                fields.append(self._build_field(block.name, member))
            elif isinstance(member, EntityLine):
                if member.kind == "PK":
                    key_line = key_line or member
                    key_columns.extend(c for c in member.columns if c not in key_columns)
                elif member.kind == "UNIQUE":
                    constraints.append(Constraint(
                        kind=ConstraintKind.UNIQUE, columns=list(member.columns), origin="entity",
                        line=member.line, column=member.column,
                    ))
                else:
                    constraints.append(Constraint(
                        kind=ConstraintKind.CHECK, expression=member.expression, origin="entity",
                        line=member.line, column=member.column,
                    ))
            elif isinstance(member, DirectiveNode):
                if member.kind == "PARTITION":
                    if partition is not None:
                        logger.warning(f"Entity '{block.name}' declares PARTITION more than once; last one wins")
                    partition = PartitionSpec(method=member.method or "RANGE", columns=list(member.columns))
                elif member.kind == "TTL":
                    ttl = TTLSpec(column=member.columns[0], interval=member.value or "")
                elif member.kind == "FTS":
                    fts = FTSSpec(columns=list(member.columns), method=member.method or "GIN")
                elif member.kind == "RLS":
                    rls_enabled = True
                elif member.kind == "POLICY":
                    policies.append(PolicySpec(
                        name=member.name, command=member.command, role=member.role,
                        using=member.using, with_check=member.with_check,
                    ))
                elif member.kind == "AUDITABLE":
                    auditable = True
                elif member.kind == "SOFT_DELETE":
                    soft_delete = member.columns[0]

        if key_line is not None:
            fields, composite = self._apply_key_line(fields, key_columns, key_line)
            if composite is not None:
                constraints.insert(0, composite)

        rls = RLSSpec(enabled=rls_enabled, policies=policies) if rls_enabled or policies else None
        return Entity(
            name=block.name,
            fields=fields,
            constraints=constraints,
            declared_key_columns=key_columns,
            partition=partition,
            ttl=ttl,
            fts=fts,
            rls=rls,
            auditable=auditable,
            soft_delete=soft_delete,
            line=block.line,
            column=block.column,
        )

    def _apply_key_line(
        self,
        fields: List[EntityField],
        key_columns: List[str],
        key_line: EntityLine,
    ) -> Tuple[List[EntityField], Optional[Constraint]]:
        """Merge PK(...) lines: one field is promoted to a simple key, otherwise composite."""
        if len(key_columns) == 1:
            name = key_columns[0]
            for i, f in enumerate(fields):
                if f.name != name:
                    continue
                if not f.has(ConstraintKind.PRIMARY_KEY):
                    promoted = Constraint(
                        kind=ConstraintKind.PRIMARY_KEY, origin="entity",
                        line=key_line.line, column=key_line.column,
                    )
                    fields[i] = f.model_copy(update={"constraints": [promoted] + list(f.constraints)})
                return fields, None
        composite = Constraint(
            kind=ConstraintKind.COMPOSITE_PRIMARY_KEY,
            columns=list(key_columns),
            origin="entity",
            line=key_line.line,
            column=key_line.column,
        )
        return fields, composite

    def _build_field(self, entity_name: str, line: FieldLine) -> EntityField:
        type_name = line.type.name
        type_ref = TypeRef(name=type_name, args=[arg.text for arg in line.type.args])
        entity_type = type_name if type_name in self._entity_sites else None
        enum_name = type_name if type_name in self._enum_sites else None

        constraints: List[Constraint] = []
        references: Optional[str] = None
        fk_seen = False
        for node in line.constraints:
            where = {"line": node.line, "column": node.column}
            if node.kind == "PK":
                constraints.append(Constraint(kind=ConstraintKind.PRIMARY_KEY, **where))
            elif node.kind == "UNIQUE":
                constraints.append(Constraint(kind=ConstraintKind.UNIQUE, columns=[line.name], **where))
            elif node.kind == "NOT_NULL":
                constraints.append(Constraint(kind=ConstraintKind.NOT_NULL, **where))
            elif node.kind == "DEFAULT":
                constraints.append(Constraint(
                    kind=ConstraintKind.DEFAULT, literal=to_literal_value(node.literal), **where
                ))
            elif node.kind == "CHECK":
                constraints.append(Constraint(kind=ConstraintKind.CHECK, expression=node.expression, **where))
            elif node.kind == "FK":
                fk = self._build_foreign_key(entity_name, line, node, report=not fk_seen)
                fk_seen = True
                if references is None:
                    references = fk.target
                constraints.append(fk)
            # NULL marks the column explicitly nullable and adds no constraint

        if not fk_seen and entity_type is None and enum_name is None and not self._is_known_type(type_name):
            self.unresolved.append(UnresolvedReference(
                entity=entity_name, field=line.name, referenced_name=type_name, kind="type",
                line=line.type.line or line.line, column=line.type.column or line.column,
            ))

        return EntityField(
            name=line.name,
            sigil=SIGIL_CHARS[line.sigil],
            type=type_ref,
            constraints=constraints,
            entity_type=entity_type,
            enum_name=enum_name,
            references=references,
            line=line.line,
            column=line.column,
        )

    @staticmethod
    def _is_known_type(type_name: str) -> bool:
        # Schema-qualified type names refer to types defined outside the document
        return is_builtin_type(type_name) or "." in type_name

    def _build_foreign_key(
        self,
        entity_name: str,
        line: FieldLine,
        node: ConstraintNode,
        report: bool = True,
    ) -> Constraint:
        positional = [arg.value for arg in node.args if arg.name is None]
        named = {arg.name.lower(): arg.value for arg in node.args if arg.name is not None}

        target_arg = named.get("target") or named.get("references") or (positional[0] if positional else None)
        column_arg = named.get("column") or (positional[1] if len(positional) > 1 else None)
        on_delete = named.get("on_delete")
        on_update = named.get("on_update")

        target: Optional[str] = None
        target_columns: List[str] = [_literal_name(column_arg)] if column_arg is not None else []
        if target_arg is not None:
            referenced = _literal_name(target_arg)
            if referenced in self._entity_sites:
                target = referenced
            elif "." in referenced:
                head, _, tail = referenced.rpartition(".")
                if head in self._entity_sites:
                    target = head
                    target_columns = target_columns or [tail]
        elif line.type.name in self._entity_sites:
            referenced = line.type.name
            target = referenced
        else:
            target = self._infer_target(line.name)
            referenced = line.name[:-3] if line.name.lower().endswith("_id") else line.type.name

        if target is None and report:
            self.unresolved.append(UnresolvedReference(
                entity=entity_name, field=line.name, referenced_name=referenced, kind="foreign_key",
                line=node.line, column=node.column,
            ))
        elif target is not None:
            logger.debug(f"Resolved FK {entity_name}.{line.name} -> {target}")

        return Constraint(
            kind=ConstraintKind.FOREIGN_KEY,
            target=target,
            target_columns=target_columns,
            on_delete=on_delete.text.upper() if on_delete is not None else None,
            on_update=on_update.text.upper() if on_update is not None else None,
            line=node.line,
            column=node.column,
        )

    def _infer_target(self, field_name: str) -> Optional[str]:
        if not field_name.lower().endswith("_id") or len(field_name) <= 3:
            return None
        stem = field_name[:-3].lower()
        for name in self._entity_sites:
            base = name.replace("/", ".").split(".")[-1].lower()
            if base == stem or base == stem.replace("_", ""):
                return name
        return None

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    @staticmethod
    def _build_statement(statement) -> TopLevelStatement:
        if isinstance(statement, PluginStatement):
            return TopLevelStatement(
                keyword=statement.keyword,
                body=statement.body,
                payload=statement.payload,
                plugin=True,
                line=statement.line,
                column=statement.column,
            )
        return TopLevelStatement(
            keyword=statement.keyword,
            name=statement.name,
            target=statement.target,
            columns=list(statement.columns),
            body=statement.body,
            line=statement.line,
            column=statement.column,
        )


def derive_relationships(entities: List[Entity]) -> List[Relationship]:
    """Derive relationship edges from FK constraints, list fields and join entities."""
    relationships: List[Relationship] = []
    for entity in entities:
        for f in entity.fields:
            fk = f.first(ConstraintKind.FOREIGN_KEY)
            if fk is not None and fk.target is not None:
                one_to_one = f.has(ConstraintKind.UNIQUE) or f.has(ConstraintKind.PRIMARY_KEY)
                relationships.append(Relationship(
                    kind=RelationshipKind.ONE_TO_ONE if one_to_one else RelationshipKind.MANY_TO_ONE,
                    source=entity.name,
                    target=fk.target,
                    field=f.name,
                ))
            elif fk is None and f.sigil == Sigil.LIST and f.entity_type is not None:
                relationships.append(Relationship(
                    kind=RelationshipKind.ONE_TO_MANY,
                    source=entity.name,
                    target=f.entity_type,
                    field=f.name,
                ))

        composite = entity.composite_key()
        if composite is None:
            continue
        targets: List[str] = []
        for column in composite.columns:
            f = entity.get_field(column)
            if f is not None and f.references is not None:
                targets.append(f.references)
        for i in range(len(targets)):
            for j in range(i + 1, len(targets)):
                relationships.append(Relationship(
                    kind=RelationshipKind.MANY_TO_MANY,
                    source=targets[i],
                    target=targets[j],
                    join_entity=entity.name,
                ))
    return relationships


def build_schema_model(document: Document) -> SchemaModel:
    """Build the semantic model for a parsed document."""
    return SchemaBuilder(document).build()

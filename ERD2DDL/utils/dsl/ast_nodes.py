"""Untyped syntax nodes produced by the ERD parser.

Nodes keep names as written and carry source positions; no cross reference
is resolved at this stage. Opaque bodies (CHECK expressions, view and trigger
bodies, plugin blocks) are kept as text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple, Union


@dataclass(frozen=True)
class LiteralNode:
    kind: str  # number | string | boolean | null | identifier | call | list
    text: str
    value: Any = None
    items: Tuple["LiteralNode", ...] = ()
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class ArgNode:
    value: LiteralNode
    name: Optional[str] = None


@dataclass(frozen=True)
class TypeNode:
    name: str
    args: Tuple[LiteralNode, ...] = ()
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class ConstraintNode:
    kind: str  # PK | UNIQUE | NOT_NULL | NULL | DEFAULT | FK | CHECK
    args: Tuple[ArgNode, ...] = ()
    literal: Optional[LiteralNode] = None
    expression: Optional[str] = None
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class FieldLine:
    sigil: str
    name: str
    type: TypeNode
    constraints: Tuple[ConstraintNode, ...] = ()
    has_keyword: bool = False
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class EntityLine:
    """Entity-scoped PK(...), UNIQUE(...) or CHECK(...) line."""
    kind: str
    columns: Tuple[str, ...] = ()
    expression: Optional[str] = None
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class DirectiveNode:
    """Extended-feature line: PARTITION, TTL, FTS, RLS, POLICY, AUDITABLE, SOFT_DELETE."""
    kind: str
    columns: Tuple[str, ...] = ()
    name: Optional[str] = None
    method: Optional[str] = None
    value: Optional[str] = None
    command: Optional[str] = None
    role: Optional[str] = None
    using: Optional[str] = None
    with_check: Optional[str] = None
    line: int = 0
    column: int = 0


EntityMember = Union[FieldLine, EntityLine, DirectiveNode]


@dataclass(frozen=True)
class EntityBlock:
    name: str
    members: Tuple[EntityMember, ...] = ()
    line: int = 0
    column: int = 0

    @property
    def fields(self) -> List[FieldLine]:
        return [m for m in self.members if isinstance(m, FieldLine)]


@dataclass(frozen=True)
class EnumNode:
    name: str
    variants: Tuple[str, ...] = ()
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class PassThroughStatement:
    """INDEX, MATERIALIZED VIEW, TRIGGER or EXTENSION with its body as written."""
    keyword: str
    body: str
    name: Optional[str] = None
    target: Optional[str] = None
    columns: Tuple[str, ...] = ()
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class PluginStatement:
    keyword: str
    body: str
    payload: Any = None
    line: int = 0
    column: int = 0


Statement = Union[EntityBlock, EnumNode, PassThroughStatement, PluginStatement]


@dataclass(frozen=True)
class Document:
    statements: Tuple[Statement, ...] = ()
    errors: Tuple[Any, ...] = field(default_factory=tuple)
    plugin_diagnostics: Tuple[Any, ...] = field(default_factory=tuple)

    @property
    def entities(self) -> List[EntityBlock]:
        return [s for s in self.statements if isinstance(s, EntityBlock)]

    @property
    def enums(self) -> List[EnumNode]:
        return [s for s in self.statements if isinstance(s, EnumNode)]

"""SQL base type catalog: the single source of truth for type names and classes.

Each built-in type maps to a type class used by DEFAULT/type compatibility
checks and by set-sigil column rendering.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

NUMERIC = "numeric"
TEXT = "text"
BOOLEAN = "boolean"
TEMPORAL = "temporal"
UUID = "uuid"
JSON = "json"
BINARY = "binary"
NETWORK = "network"
MAP = "map"
GEOMETRIC = "geometric"


@dataclass(frozen=True)
class SQLTypeSpec:
    name: str
    type_class: str
    parametric: bool = False


_SPECS = [
    SQLTypeSpec("SMALLINT", NUMERIC),
    SQLTypeSpec("INT", NUMERIC),
    SQLTypeSpec("INTEGER", NUMERIC),
    SQLTypeSpec("BIGINT", NUMERIC),
    SQLTypeSpec("INT2", NUMERIC),
    SQLTypeSpec("INT4", NUMERIC),
    SQLTypeSpec("INT8", NUMERIC),
    SQLTypeSpec("SERIAL", NUMERIC),
    SQLTypeSpec("BIGSERIAL", NUMERIC),
    SQLTypeSpec("SMALLSERIAL", NUMERIC),
    SQLTypeSpec("DECIMAL", NUMERIC, parametric=True),
    SQLTypeSpec("NUMERIC", NUMERIC, parametric=True),
    SQLTypeSpec("REAL", NUMERIC),
    SQLTypeSpec("FLOAT", NUMERIC, parametric=True),
    SQLTypeSpec("DOUBLE", NUMERIC),
    SQLTypeSpec("FLOAT4", NUMERIC),
    SQLTypeSpec("FLOAT8", NUMERIC),
    SQLTypeSpec("MONEY", NUMERIC),
    SQLTypeSpec("TEXT", TEXT),
    SQLTypeSpec("VARCHAR", TEXT, parametric=True),
    SQLTypeSpec("CHAR", TEXT, parametric=True),
    SQLTypeSpec("CHARACTER", TEXT, parametric=True),
    SQLTypeSpec("CITEXT", TEXT),
    SQLTypeSpec("STRING", TEXT),
    SQLTypeSpec("BOOL", BOOLEAN),
    SQLTypeSpec("BOOLEAN", BOOLEAN),
    SQLTypeSpec("DATE", TEMPORAL),
    SQLTypeSpec("TIME", TEMPORAL, parametric=True),
    SQLTypeSpec("TIMETZ", TEMPORAL),
    SQLTypeSpec("TIMESTAMP", TEMPORAL, parametric=True),
    SQLTypeSpec("TIMESTAMPTZ", TEMPORAL),
    SQLTypeSpec("DATETIME", TEMPORAL),
    SQLTypeSpec("INTERVAL", TEMPORAL),
    SQLTypeSpec("UUID", UUID),
    SQLTypeSpec("JSON", JSON),
    SQLTypeSpec("JSONB", JSON),
    SQLTypeSpec("XML", TEXT),
    SQLTypeSpec("BYTEA", BINARY),
    SQLTypeSpec("BLOB", BINARY),
    SQLTypeSpec("BIT", BINARY, parametric=True),
    SQLTypeSpec("VARBIT", BINARY, parametric=True),
    SQLTypeSpec("INET", NETWORK),
    SQLTypeSpec("CIDR", NETWORK),
    SQLTypeSpec("MACADDR", NETWORK),
    SQLTypeSpec("TSVECTOR", TEXT),
    SQLTypeSpec("TSQUERY", TEXT),
    SQLTypeSpec("POINT", GEOMETRIC),
    SQLTypeSpec("LINE", GEOMETRIC),
    SQLTypeSpec("BOX", GEOMETRIC),
    SQLTypeSpec("POLYGON", GEOMETRIC),
    SQLTypeSpec("CIRCLE", GEOMETRIC),
    SQLTypeSpec("GEOMETRY", GEOMETRIC, parametric=True),
    SQLTypeSpec("GEOGRAPHY", GEOMETRIC, parametric=True),
    SQLTypeSpec("HSTORE", MAP),
    SQLTypeSpec("MAP", MAP),
]

SQL_TYPES: Dict[str, SQLTypeSpec] = {spec.name: spec for spec in _SPECS}

# Literal kinds accepted as DEFAULT for each type class
_COMPATIBLE_LITERALS: Dict[str, FrozenSet[str]] = {
    NUMERIC: frozenset({"number"}),
    TEXT: frozenset({"string"}),
    BOOLEAN: frozenset({"boolean"}),
    TEMPORAL: frozenset({"string"}),
    UUID: frozenset({"string"}),
    JSON: frozenset({"string", "list"}),
    BINARY: frozenset({"string"}),
    NETWORK: frozenset({"string"}),
    MAP: frozenset({"string"}),
    GEOMETRIC: frozenset({"string"}),
}

# Literal kinds the checker cannot type and always accepts
UNCHECKED_LITERALS: FrozenSet[str] = frozenset({"call", "identifier", "null"})


def lookup_type(name: str) -> Optional[SQLTypeSpec]:
    """Look up a base SQL type by name (case-insensitive)."""
    return SQL_TYPES.get(name.upper())


def is_builtin_type(name: str) -> bool:
    return lookup_type(name) is not None


def type_class(name: str) -> Optional[str]:
    spec = lookup_type(name)
    return spec.type_class if spec is not None else None


def is_json_type(name: str) -> bool:
    return type_class(name) == JSON


def is_map_type(name: str) -> bool:
    return type_class(name) == MAP


def literal_compatible(type_name: str, literal_kind: str) -> bool:
    """Whether a DEFAULT literal kind fits a base SQL type.

    Unknown types and untypeable literal kinds are always accepted.
    """
    if literal_kind in UNCHECKED_LITERALS:
        return True
    cls = type_class(type_name)
    if cls is None:
        return True
    return literal_kind in _COMPATIBLE_LITERALS.get(cls, frozenset())

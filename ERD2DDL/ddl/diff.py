"""Structural diff between two DDL artifacts.

Both artifacts are normalised before comparison: ``--`` and ``/* */``
comments, blank lines and whitespace runs outside string literals are
dropped, and the text is split into statements on top-level ``;``.
Statements are keyed by a stable identity (``table:Post``,
``constraint:Post.fk_post_author_id``, ``index:idx_post_fts``, ...), so
reordering statements is not drift. Pure functions; no I/O.
"""

from __future__ import annotations

import hashlib
import re
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ERD2DDL.utils.logging import get_logger

logger = get_logger(__name__)

_IDENT_PART = r'(?:"(?:[^"]|"")*"|[^\s(;".]+)'
_NAME = r"(" + _IDENT_PART + r"(?:\." + _IDENT_PART + r")*)"

_IDENTITY_PATTERNS: List[Tuple[str, "re.Pattern[str]"]] = [
    ("table", re.compile(r"^CREATE\s+(?:UNLOGGED\s+)?TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?" + _NAME, re.I)),
    ("constraint", re.compile(
        r"^ALTER\s+TABLE\s+(?:ONLY\s+)?" + _NAME + r"\s+ADD\s+CONSTRAINT\s+" + _NAME, re.I
    )),
    ("rls", re.compile(r"^ALTER\s+TABLE\s+" + _NAME + r"\s+ENABLE\s+ROW\s+LEVEL\s+SECURITY", re.I)),
    ("index", re.compile(
        r"^CREATE\s+(?:UNIQUE\s+)?INDEX\s+(?:CONCURRENTLY\s+)?(?:IF\s+NOT\s+EXISTS\s+)?" + _NAME, re.I
    )),
    ("materialized_view", re.compile(
        r"^CREATE\s+(?:OR\s+REPLACE\s+)?MATERIALIZED\s+VIEW\s+(?:IF\s+NOT\s+EXISTS\s+)?" + _NAME, re.I
    )),
    ("view", re.compile(r"^CREATE\s+(?:OR\s+REPLACE\s+)?VIEW\s+" + _NAME, re.I)),
    ("trigger", re.compile(r"^CREATE\s+(?:OR\s+REPLACE\s+)?(?:CONSTRAINT\s+)?TRIGGER\s+" + _NAME, re.I)),
    ("policy", re.compile(r"^CREATE\s+POLICY\s+" + _NAME + r"\s+ON\s+" + _NAME, re.I)),
    ("type", re.compile(r"^CREATE\s+TYPE\s+" + _NAME, re.I)),
    ("extension", re.compile(r"^CREATE\s+EXTENSION\s+(?:IF\s+NOT\s+EXISTS\s+)?" + _NAME, re.I)),
    ("comment", re.compile(r"^COMMENT\s+ON\s+(?:TABLE|COLUMN)\s+" + _NAME, re.I)),
]

# DO block the compiler wraps around statements with no IF NOT EXISTS form
_DUPLICATE_GUARD = re.compile(
    r"^DO\s+\$\$\s*BEGIN\s+(.+?);\s*EXCEPTION\s+WHEN\s+duplicate_object\s+THEN\s+NULL;\s*END\s*\$\$$",
    re.I | re.S,
)

# Leading words of table elements that are constraints, not columns
_TABLE_CONSTRAINT_WORDS = frozenset({"PRIMARY", "UNIQUE", "CHECK", "CONSTRAINT", "FOREIGN", "EXCLUDE"})


# ============================================================================
# Normalisation
# ============================================================================

def strip_sql_comments(text: str) -> str:
    """Remove ``--`` and ``/* */`` comments outside quoted text and ``$$`` bodies."""
    out: List[str] = []
    quote: Optional[str] = None
    i, n = 0, len(text)
    while i < n:
        if quote is not None:
            if text.startswith(quote, i):
                out.append(quote)
                i += len(quote)
                quote = None
            else:
                out.append(text[i])
                i += 1
            continue
        if text.startswith("$$", i):
            quote = "$$"
            out.append("$$")
            i += 2
        elif text[i] in ("'", '"'):
            quote = text[i]
            out.append(text[i])
            i += 1
        elif text.startswith("--", i):
            end = text.find("\n", i)
            i = n if end == -1 else end
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end == -1 else end + 2
            out.append(" ")
        else:
            out.append(text[i])
            i += 1
    return "".join(out)


def _collapse_whitespace(statement: str) -> str:
    out: List[str] = []
    quote: Optional[str] = None
    pending_space = False
    i, n = 0, len(statement)
    while i < n:
        ch = statement[i]
        if quote is not None:
            if statement.startswith(quote, i):
                out.append(quote)
                i += len(quote)
                quote = None
            else:
                out.append(ch)
                i += 1
            continue
        if ch.isspace():
            pending_space = True
            i += 1
            continue
        # no space just inside parentheses or before a comma
        if pending_space and out and out[-1] != "(" and ch not in "),":
            out.append(" ")
        pending_space = False
        if statement.startswith("$$", i):
            quote = "$$"
            out.append("$$")
            i += 2
            continue
        if ch in ("'", '"'):
            quote = ch
        out.append(ch)
        i += 1
    return "".join(out)


def split_statements(ddl: str) -> List[str]:
    """Split DDL into normalised statements (without the trailing ``;``)."""
    text = strip_sql_comments(ddl)
    statements: List[str] = []
    buf: List[str] = []
    quote: Optional[str] = None
    depth = 0
    i, n = 0, len(text)
    while i < n:
        ch = text[i]
        if quote is not None:
            if text.startswith(quote, i):
                buf.append(quote)
                i += len(quote)
                quote = None
            else:
                buf.append(ch)
                i += 1
            continue
        if text.startswith("$$", i):
            quote = "$$"
            buf.append("$$")
            i += 2
            continue
        if ch in ("'", '"'):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(0, depth - 1)
        elif ch == ";" and depth == 0:
            statement = _collapse_whitespace("".join(buf)).strip()
            if statement:
                statements.append(statement)
            buf = []
            i += 1
            continue
        buf.append(ch)
        i += 1

    statement = _collapse_whitespace("".join(buf)).strip()
    if statement:
        statements.append(statement)
    return statements


def normalize_ddl(ddl: str) -> str:
    """Canonical text of a DDL artifact: one normalised statement per line."""
    return "\n".join(statement + ";" for statement in split_statements(ddl))


# ============================================================================
# Identities and table columns
# ============================================================================

def statement_identity(statement: str) -> str:
    """Stable identity key of a normalised statement."""
    guarded = _DUPLICATE_GUARD.match(statement)
    if guarded is not None:
        statement = guarded.group(1).strip()
    for kind, pattern in _IDENTITY_PATTERNS:
        match = pattern.match(statement)
        if match is None:
            continue
        if kind in ("constraint", "policy"):
            first, second = match.group(1), match.group(2)
            owner, name = (first, second) if kind == "constraint" else (second, first)
            return f"{kind}:{owner}.{name}"
        return f"{kind}:{match.group(1)}"
    digest = hashlib.sha1(statement.encode("utf-8")).hexdigest()[:12]
    return f"statement:{digest}"


def unquote_identifier(name: str) -> str:
    """``"a/b"`` -> ``a/b``; dotted parts are unquoted independently."""
    parts: List[str] = []
    buf: List[str] = []
    in_quote = False
    i = 0
    while i < len(name):
        ch = name[i]
        if ch == '"':
            if in_quote and name.startswith('""', i):
                buf.append('"')
                i += 2
                continue
            in_quote = not in_quote
        elif ch == "." and not in_quote:
            parts.append("".join(buf))
            buf = []
        else:
            buf.append(ch)
        i += 1
    parts.append("".join(buf))
    return ".".join(parts)


def split_sql_list(expr: str) -> List[str]:
    """Split on top-level commas, ignoring commas inside parentheses and quotes."""
    out: List[str] = []
    buf: List[str] = []
    depth = 0
    quote: Optional[str] = None
    for ch in expr:
        if quote is not None:
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(0, depth - 1)
        elif ch == "," and depth == 0:
            token = "".join(buf).strip()
            if token:
                out.append(token)
            buf = []
            continue
        buf.append(ch)

    token = "".join(buf).strip()
    if token:
        out.append(token)
    return out


def _table_body(statement: str) -> Optional[str]:
    start = statement.find("(")
    if start == -1:
        return None
    depth = 0
    quote: Optional[str] = None
    for i in range(start, len(statement)):
        ch = statement[i]
        if quote is not None:
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return statement[start + 1:i]
    return None


def _first_word(element: str) -> str:
    match = re.match(r'"(?:[^"]|"")*"|\S+', element)
    return match.group(0) if match else ""


def table_column_definitions(statement: str) -> Dict[str, str]:
    """Column name -> column definition for one CREATE TABLE statement."""
    body = _table_body(statement)
    if body is None:
        return {}
    columns: Dict[str, str] = {}
    for element in split_sql_list(body):
        word = _first_word(element)
        if not word or word.upper() in _TABLE_CONSTRAINT_WORDS:
            continue
        columns[unquote_identifier(word)] = element
    return columns


def extract_table_columns(ddl: str) -> Dict[str, List[str]]:
    """Table name -> column names, for every CREATE TABLE in a DDL artifact."""
    tables: Dict[str, List[str]] = {}
    for statement in split_statements(ddl):
        identity = statement_identity(statement)
        if not identity.startswith("table:"):
            continue
        name = unquote_identifier(identity[len("table:"):])
        tables[name] = list(table_column_definitions(statement))
    return tables


# ============================================================================
# Diff
# ============================================================================

class StatementChange(BaseModel):
    """One structural difference between two artifacts."""

    kind: Literal["added", "removed", "changed"]
    identity: str = Field(description="Stable statement identity")
    previous: Optional[str] = Field(None, description="Normalised previous statement")
    current: Optional[str] = Field(None, description="Normalised current statement")
    details: List[str] = Field(default_factory=list, description="Column-level details for changed tables")

    model_config = ConfigDict(frozen=True)


class DDLDiff(BaseModel):
    """Ordered structural delta: additions and changes in current order, then removals."""

    changes: List[StatementChange] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @property
    def has_drift(self) -> bool:
        return bool(self.changes)

    def of_kind(self, kind: str) -> List[StatementChange]:
        return [c for c in self.changes if c.kind == kind]

    def summary(self) -> str:
        if not self.changes:
            return "No drift"
        counts = {kind: len(self.of_kind(kind)) for kind in ("added", "removed", "changed")}
        lines = [
            f"{len(self.changes)} change(s): {counts['added']} added, "
            f"{counts['removed']} removed, {counts['changed']} changed"
        ]
        marks = {"added": "+", "removed": "-", "changed": "~"}
        for change in self.changes:
            lines.append(f"  {marks[change.kind]} {change.identity}")
            for detail in change.details:
                lines.append(f"      {detail}")
        return "\n".join(lines)


def _keyed_statements(ddl: str) -> Dict[str, str]:
    keyed: Dict[str, str] = {}
    for statement in split_statements(ddl):
        identity = statement_identity(statement)
        key, n = identity, 1
        while key in keyed:
            n += 1
            key = f"{identity}#{n}"
        keyed[key] = statement
    return keyed


def _table_details(previous: str, current: str) -> List[str]:
    old_cols = table_column_definitions(previous)
    new_cols = table_column_definitions(current)
    details = [f"column removed: {c}" for c in old_cols if c not in new_cols]
    details += [f"column added: {c}" for c in new_cols if c not in old_cols]
    details += [
        f"column changed: {old_cols[c]} -> {new_cols[c]}"
        for c in new_cols
        if c in old_cols and old_cols[c] != new_cols[c]
    ]
    if not details:
        details.append("table constraints or options changed")
    return details


def diff_ddl(previous: str, current: str) -> DDLDiff:
    """Compare a previously committed artifact with a freshly generated one.

    Args:
        previous: DDL text of the committed artifact
        current: Newly generated DDL text

    Returns:
        DDLDiff with added/changed statements in ``current`` order followed by
        removed statements in ``previous`` order
    """
    old = _keyed_statements(previous)
    new = _keyed_statements(current)

    changes: List[StatementChange] = []
    for identity, statement in new.items():
        if identity not in old:
            changes.append(StatementChange(kind="added", identity=identity, current=statement))
        elif old[identity] != statement:
            details = _table_details(old[identity], statement) if identity.startswith("table:") else []
            changes.append(StatementChange(
                kind="changed", identity=identity, previous=old[identity], current=statement, details=details,
            ))
    for identity, statement in old.items():
        if identity not in new:
            changes.append(StatementChange(kind="removed", identity=identity, previous=statement))

    logger.debug(f"DDL diff: {len(old)} previous, {len(new)} current, {len(changes)} change(s)")
    return DDLDiff(changes=changes)

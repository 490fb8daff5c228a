"""Lark grammars and keyword tables for the ERD language.

``ERD_TERMINAL_GRAMMAR`` drives the lexer. It only defines terminals;
``start`` references every one of them because LALR compilation drops
terminals no rule uses.

``ERD_STATEMENT_GRAMMAR`` drives the parser. It runs over tokens the lexer
already produced, so all of its terminals are ``%declare``d; punctuation
terminals start with ``_`` and never reach the parse tree.

Keywords are not separate lexer terminals. They are lexed as NAME and
promoted by exact (case-sensitive) value, so identifiers such as
``PKColumn`` or ``checked_at`` never collide with keywords. Context words
(BY, ON, USING, TRUE, ...) are not promoted by the lexer at all: the parser
reads a NAME as one of them only where its current state accepts it.
"""

from __future__ import annotations

from typing import Dict, FrozenSet


ERD_TERMINAL_GRAMMAR = r"""
start: _token*

_token: ENTITY
      | FIELD
      | NAME
      | NUMBER
      | STRING
      | LPAREN
      | RPAREN
      | LBRACK
      | RBRACK
      | LBRACE
      | RBRACE
      | COMMA
      | EQ
      | NEWLINE
      | OTHER

ENTITY.2: /:[A-Za-z_][A-Za-z0-9_.\/]*/
FIELD.2: /[$@%]\.[A-Za-z_][A-Za-z0-9_]*/
NAME.2: /[A-Za-z_][A-Za-z0-9_.\/]*/
NUMBER.2: /-?\d+(\.\d+)?/
STRING.2: /'(?:[^'\n]|'')*'/
        | /"(?:[^"\n\\]|\\.)*"/
LPAREN.2: "("
RPAREN.2: ")"
LBRACK.2: "["
RBRACK.2: "]"
LBRACE.2: "{"
RBRACE.2: "}"
COMMA.2: ","
EQ.2: "="
NEWLINE.2: /\n/
OTHER: /./

COMMENT: /#[^\n]*/ | /;;[^\n]*/
WS: /[ \t\r\f]+/

%ignore COMMENT
%ignore WS
"""


# Constraint and extended-feature keywords (exact upper-case match)
CONSTRAINT_KEYWORDS: FrozenSet[str] = frozenset({
    "PK",
    "UNIQUE",
    "NOT",
    "NULL",
    "DEFAULT",
    "FK",
    "CHECK",
})

FEATURE_KEYWORDS: FrozenSet[str] = frozenset({
    "PARTITION",
    "TTL",
    "FTS",
    "RLS",
    "POLICY",
    "AUDITABLE",
    "SOFT_DELETE",
})

STATEMENT_KEYWORDS: FrozenSet[str] = frozenset({
    "INDEX",
    "MATERIALIZED",
    "VIEW",
    "TRIGGER",
    "EXECUTE",
    "PROCEDURE",
    "EXTENSION",
})

# Lower-case keywords mapped to their token type
SOFT_KEYWORDS: Dict[str, str] = {
    "has": "HAS",
    "enum": "ENUM",
    "ENUM": "ENUM",
}

KEYWORDS: FrozenSet[str] = CONSTRAINT_KEYWORDS | FEATURE_KEYWORDS | STATEMENT_KEYWORDS

# Keywords that may start a top-level statement at column 1
TOP_LEVEL_KEYWORDS: FrozenSet[str] = frozenset({"ENUM", "INDEX", "MATERIALIZED", "TRIGGER", "EXTENSION"})

# A '(' right after one of these opens an opaque expression span
EXPRESSION_OPENERS: FrozenSet[str] = frozenset({"CHECK", "USING"})

RESERVED_WORDS: FrozenSet[str] = KEYWORDS | frozenset(SOFT_KEYWORDS)


def token_type_for_name(value: str) -> str:
    """Token type of a NAME lexeme after keyword promotion."""
    if value in KEYWORDS:
        return value
    return SOFT_KEYWORDS.get(value, "NAME")


# Upper-cased NAME spellings the statement grammar treats as terminals in context
CONTEXT_WORDS: FrozenSet[str] = frozenset({
    "BY",
    "USING",
    "ENABLE",
    "FOR",
    "TO",
    "WITH",
    "ON",
    "TRUE",
    "FALSE",
})

# Lexer punctuation types and the filtered terminals the parser knows them by
PUNCTUATION_TERMINALS: Dict[str, str] = {
    "LPAREN": "_LPAREN",
    "RPAREN": "_RPAREN",
    "LBRACK": "_LBRACK",
    "RBRACK": "_RBRACK",
    "LBRACE": "_LBRACE",
    "RBRACE": "_RBRACE",
    "COMMA": "_COMMA",
    "EQ": "_EQ",
}

_VALUE_TERMINALS = ("NAME", "NUMBER", "STRING", "EXPR", "ENTITY", "FIELD", "OTHER")
_WORD_TERMINALS = tuple(sorted(KEYWORDS | frozenset(SOFT_KEYWORDS.values())))

_STATEMENT_RULES = r"""
// Each unit handed to the parser is one entity head, one entity member line
// or one whole top-level statement.

entity_head: ENTITY

?member: field_line
       | entity_key
       | entity_check
       | partition
       | ttl
       | fts
       | rls
       | policy
       | auditable
       | soft_delete

field_line: [HAS] NAME [type_args] FIELD _constraint*
type_args: _LPAREN [literal (_COMMA literal)*] _RPAREN

_constraint: pk_constraint
           | unique_constraint
           | not_null
           | null_constraint
           | default
           | fk
           | check_constraint

pk_constraint: PK
unique_constraint: UNIQUE
not_null: NOT NULL
null_constraint: NULL
default: DEFAULT literal
fk: FK [fk_args]
check_constraint: CHECK EXPR

fk_args: _LPAREN [fk_arg (_COMMA fk_arg)*] _RPAREN
fk_arg: NAME _EQ _arg_value -> named_arg
      | _arg_value -> positional_arg
_arg_value: literal | phrase
// Multi-word referential actions: SET NULL, SET DEFAULT, NO ACTION
phrase: NAME (NAME | NULL | DEFAULT)+

literal: NUMBER -> number
       | STRING -> string
       | NULL -> null_literal
       | TRUE -> boolean
       | FALSE -> boolean
       | NAME -> identifier
       | NAME _group -> call
       | _LBRACK [literal (_COMMA literal)*] _RBRACK -> list_literal

entity_key: (PK | UNIQUE) name_list
entity_check: CHECK EXPR
name_list: _LPAREN [NAME (_COMMA NAME)*] _RPAREN

partition: PARTITION BY NAME name_list
ttl: TTL _LPAREN NAME _COMMA literal _RPAREN
fts: FTS name_list [USING NAME]
rls: RLS ENABLE
policy: POLICY (NAME | STRING) policy_clause*
policy_clause: FOR NAME -> policy_for
             | TO NAME -> policy_to
             | USING EXPR -> policy_using
             | WITH CHECK EXPR -> policy_check
auditable: AUDITABLE
soft_delete: SOFT_DELETE name_list

enum_decl: ENUM NAME _LBRACE [variant (_COMMA variant)* [_COMMA]] _RBRACE
variant: NAME | STRING

index_stmt: INDEX NAME ON NAME [USING NAME] [index_columns] [index_tail]
index_columns: _LPAREN index_column (_COMMA index_column)* _RPAREN
index_column: (_atom | _group)+
index_tail: (_atom | _COMMA | _EQ) _tail_item*

view_stmt: MATERIALIZED VIEW NAME [tail]
trigger_stmt: TRIGGER NAME [tail]
extension_stmt: EXTENSION (NAME | STRING) [tail]

// Opaque statement text: any token, brackets already balanced by the lexer
tail: _tail_item+
_tail_item: _atom | _LPAREN | _RPAREN | _LBRACK | _RBRACK | _LBRACE | _RBRACE | _COMMA | _EQ
_group: _LPAREN (_atom | _group | _COMMA | _EQ | _LBRACK | _RBRACK)* _RPAREN
"""

ERD_STATEMENT_GRAMMAR = (
    _STATEMENT_RULES
    + "\n_atom: " + "\n     | ".join(_VALUE_TERMINALS + _WORD_TERMINALS) + "\n"
    + "\n%declare " + " ".join(
        _VALUE_TERMINALS
        + _WORD_TERMINALS
        + tuple(sorted(CONTEXT_WORDS))
        + tuple(PUNCTUATION_TERMINALS.values())
    ) + "\n"
)

# Start rule for each top-level statement keyword
STATEMENT_START_RULES: Dict[str, str] = {
    "ENUM": "enum_decl",
    "INDEX": "index_stmt",
    "MATERIALIZED": "view_stmt",
    "TRIGGER": "trigger_stmt",
    "EXTENSION": "extension_stmt",
}

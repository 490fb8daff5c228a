"""Parser for the ERD schema language using Lark.

The statement grammar (``grammar.py``) is run by Lark's LALR parser over the
lexer's token stream, and ``ERDTransformer`` turns each parse tree into the
untyped statement nodes of ``ast_nodes.py``. The document is cut into parse
units before Lark sees it, so every ParseError is collected instead of
stopping at the first one:
- each line of an entity block is its own unit; a malformed line is reported
  and dropped, the rest of the block still parses;
- a top-level statement (with its indented continuation lines) is one unit;
  when it does not parse it is reported and skipped as a whole.

A logical line runs to the first NEWLINE outside brackets, so an enum body
spread over several lines is a single unit.

Entity block layout::

    :Name
      [has] TYPE[(args)] $.field CONSTRAINT*
      PK(a, b) | UNIQUE(a, b) | CHECK(expr)
      PARTITION BY RANGE (col) | TTL(col, '30 days') | FTS(a, b) [USING GIN]
      RLS ENABLE | POLICY name [FOR cmd] [TO role] [USING (expr)] [WITH CHECK (expr)]
      AUDITABLE | SOFT_DELETE(col)

A block ends at the first line that starts at column 1.
"""

from __future__ import annotations

import re
from copy import copy
from dataclasses import replace
from typing import Dict, Iterator, List, Optional, Tuple

from lark import Lark, Token, Transformer, UnexpectedInput, UnexpectedToken, v_args
from lark.exceptions import VisitError
from lark.lexer import Lexer

from ERD2DDL.utils.error_handling import ErrorContext, handle_stage_error
from ERD2DDL.utils.logging import get_logger
from .ast_nodes import (
    ArgNode,
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
    Statement,
    TypeNode,
)
from .errors import ParseError, build_context_snippet
from .grammar import (
    CONTEXT_WORDS,
    ERD_STATEMENT_GRAMMAR,
    PUNCTUATION_TERMINALS,
    STATEMENT_START_RULES,
    TOP_LEVEL_KEYWORDS,
)
from .lexer import ERDToken, tokenize_erd
from .models import CompilationStage, Diagnostic
from .registry import PluginRegistry

logger = get_logger(__name__)


_TOP_LEVEL_EXPECTED = [":Entity", "enum", "INDEX", "MATERIALIZED VIEW", "TRIGGER", "EXTENSION"]
_PARTITION_METHODS = {"RANGE", "LIST", "HASH"}
_CONSTRAINT_TERMINALS = {"PK", "UNIQUE", "NOT", "NULL", "DEFAULT", "FK", "CHECK"}
_OPENERS = {"LPAREN", "LBRACK", "LBRACE"}
_CLOSERS = {"RPAREN", "RBRACK", "RBRACE"}
_ESCAPE = re.compile(r"\\(.)")

# How expected terminals are shown in error messages
_EXPECTED_NAMES: Dict[str, str] = {
    "$END": "end of line",
    "NAME": "identifier",
    "NUMBER": "number",
    "STRING": "string",
    "EXPR": "(expression)",
    "FIELD": "sigil field ($.name, @.name or %.name)",
    "ENTITY": ":Entity",
    "NOT": "NOT NULL",
    "DEFAULT": "DEFAULT <literal>",
    "CHECK": "CHECK(expr)",
    "_LPAREN": "'('",
    "_RPAREN": "')'",
    "_LBRACK": "'['",
    "_RBRACK": "']'",
    "_LBRACE": "'{'",
    "_RBRACE": "'}'",
    "_COMMA": "','",
    "_EQ": "'='",
}

_START_RULES = ["entity_head", "member"] + sorted(set(STATEMENT_START_RULES.values()))


def unquote(text: str) -> str:
    """Strip the quotes of a STRING token and resolve its escapes."""
    quote, inner = text[0], text[1:-1]
    if quote == "'":
        return inner.replace("''", "'")
    return _ESCAPE.sub(r"\1", inner)


def _number_value(text: str):
    return float(text) if "." in text else int(text)


# ----------------------------------------------------------------------
# Token feed
# ----------------------------------------------------------------------

def _accepts(parser_state, terminal: str) -> bool:
    """Whether ``terminal`` can be shifted in the current parser state (after any reductions)."""
    if terminal not in parser_state.parse_conf.states[parser_state.position]:
        return False
    trial = parser_state.copy(deepcopy_values=False)
    trial.parse_conf = copy(parser_state.parse_conf)
    trial.parse_conf.callbacks = {}
    try:
        trial.feed_token(Token(terminal, ""))
    except UnexpectedToken:
        return False
    return True


def _terminal_for(tok: ERDToken, parser_state) -> str:
    native = PUNCTUATION_TERMINALS.get(tok.type, tok.type)
    if tok.type == "NAME" and tok.value.upper() in CONTEXT_WORDS:
        candidates = [tok.value.upper(), native]
    elif tok.category == "keyword":
        # keywords are ordinary names wherever the grammar has no use for them
        candidates = [native, "NAME"]
    else:
        return native
    for terminal in candidates:
        if _accepts(parser_state, terminal):
            return terminal
    return native


class ERDTokenFeed(Lexer):
    """Hands already-lexed ERDTokens to the LALR parser.

    NAME tokens spelled like a context word and keyword tokens are resolved
    against the parser state they arrive in; every other token keeps its
    lexer type.
    """

    __future_interface__ = 2

    def __init__(self, lexer_conf):
        self.lexer_conf = lexer_conf

    def lex(self, lexer_state, parser_state) -> Iterator[Token]:
        for tok in lexer_state.text:
            yield Token(
                _terminal_for(tok, parser_state),
                tok.value,
                tok.start_pos,
                tok.line,
                tok.column,
                tok.line,
                tok.column + len(tok.value),
                tok.end_pos,
            )


_PARSER_CACHE: Dict[str, Lark] = {}


def _get_parser(grammar: str = ERD_STATEMENT_GRAMMAR) -> Lark:
    cached = _PARSER_CACHE.get(grammar)
    if cached is not None:
        return cached
    parser = Lark(
        grammar,
        parser="lalr",
        lexer=ERDTokenFeed,
        start=_START_RULES,
        propagate_positions=True,
        maybe_placeholders=False,
    )
    _PARSER_CACHE[grammar] = parser
    return parser


# ----------------------------------------------------------------------
# Parse tree -> ast_nodes
# ----------------------------------------------------------------------

@v_args(meta=True)
class ERDTransformer(Transformer):
    """Builds statement nodes from parse trees of the statement grammar.

    Literal texts, call texts and index columns are cut from the source, so
    they keep the spelling and spacing of the document.
    """

    def __init__(self, source: str):
        super().__init__(visit_tokens=False)
        self.source = source

    def _text(self, meta) -> str:
        return self.source[meta.start_pos:meta.end_pos]

    def _error(self, message: str, expected: List[str], token: Token) -> ParseError:
        return ParseError(
            message,
            line=token.line,
            column=token.column,
            expected=expected,
            found=str(token.value),
            context=build_context_snippet(self.source, token.line, token.column),
        )

    # Literals

    def number(self, meta, children):
        text = str(children[0])
        return LiteralNode(kind="number", text=text, value=_number_value(text), line=meta.line, column=meta.column)

    def string(self, meta, children):
        text = str(children[0])
        return LiteralNode(kind="string", text=text, value=unquote(text), line=meta.line, column=meta.column)

    def null_literal(self, meta, children):
        return LiteralNode(kind="null", text="NULL", value=None, line=meta.line, column=meta.column)

    def boolean(self, meta, children):
        text = str(children[0]).upper()
        return LiteralNode(kind="boolean", text=text, value=text == "TRUE", line=meta.line, column=meta.column)

    def identifier(self, meta, children):
        text = str(children[0])
        return LiteralNode(kind="identifier", text=text, value=text, line=meta.line, column=meta.column)

    def call(self, meta, children):
        return LiteralNode(
            kind="call", text=self._text(meta), value=str(children[0]), line=meta.line, column=meta.column
        )

    def list_literal(self, meta, children):
        return LiteralNode(
            kind="list",
            text=self._text(meta),
            value=[item.value for item in children],
            items=tuple(children),
            line=meta.line,
            column=meta.column,
        )

    def phrase(self, meta, children):
        text = " ".join(str(tok) for tok in children)
        return LiteralNode(kind="identifier", text=text, value=text, line=meta.line, column=meta.column)

    # Field lines

    def type_args(self, meta, children):
        return tuple(children)

    def named_arg(self, meta, children):
        return ArgNode(value=children[1], name=str(children[0]))

    def positional_arg(self, meta, children):
        return ArgNode(value=children[0])

    def fk_args(self, meta, children):
        return tuple(children)

    def pk_constraint(self, meta, children):
        return ConstraintNode(kind="PK", line=meta.line, column=meta.column)

    def unique_constraint(self, meta, children):
        return ConstraintNode(kind="UNIQUE", line=meta.line, column=meta.column)

    def not_null(self, meta, children):
        return ConstraintNode(kind="NOT_NULL", line=meta.line, column=meta.column)

    def null_constraint(self, meta, children):
        return ConstraintNode(kind="NULL", line=meta.line, column=meta.column)

    def default(self, meta, children):
        return ConstraintNode(kind="DEFAULT", literal=children[1], line=meta.line, column=meta.column)

    def fk(self, meta, children):
        args = children[1] if len(children) > 1 else ()
        return ConstraintNode(kind="FK", args=args, line=meta.line, column=meta.column)

    def check_constraint(self, meta, children):
        return ConstraintNode(kind="CHECK", expression=str(children[1]), line=meta.line, column=meta.column)

    def field_line(self, meta, children):
        has_keyword = children[0].type == "HAS"
        rest = list(children[1:] if has_keyword else children)
        type_tok = rest.pop(0)
        args = rest.pop(0) if isinstance(rest[0], tuple) else ()
        field_tok = rest.pop(0)
        return FieldLine(
            sigil=field_tok[0],
            name=field_tok[2:],
            type=TypeNode(name=str(type_tok), args=args, line=type_tok.line, column=type_tok.column),
            constraints=tuple(rest),
            has_keyword=has_keyword,
            line=meta.line,
            column=meta.column,
        )

    # Entity-scoped lines

    def name_list(self, meta, children):
        return tuple(str(tok) for tok in children)

    def entity_key(self, meta, children):
        return EntityLine(kind=children[0].type, columns=children[1], line=meta.line, column=meta.column)

    def entity_check(self, meta, children):
        return EntityLine(kind="CHECK", expression=str(children[1]), line=meta.line, column=meta.column)

    def partition(self, meta, children):
        method_tok = children[2]
        method = str(method_tok).upper()
        if method not in _PARTITION_METHODS:
            raise self._error(f"Unknown partition method '{method_tok}'", sorted(_PARTITION_METHODS), method_tok)
        return DirectiveNode(kind="PARTITION", method=method, columns=children[3], line=meta.line, column=meta.column)

    def ttl(self, meta, children):
        interval = children[2]
        value = str(interval.value) if interval.kind == "string" else interval.text
        return DirectiveNode(
            kind="TTL", columns=(str(children[1]),), value=value, line=meta.line, column=meta.column
        )

    def fts(self, meta, children):
        method = str(children[3]) if len(children) > 2 else None
        return DirectiveNode(kind="FTS", columns=children[1], method=method, line=meta.line, column=meta.column)

    def rls(self, meta, children):
        return DirectiveNode(kind="RLS", value="ENABLE", line=meta.line, column=meta.column)

    def policy_for(self, meta, children):
        return "command", str(children[1]).upper()

    def policy_to(self, meta, children):
        return "role", str(children[1])

    def policy_using(self, meta, children):
        return "using", str(children[1])

    def policy_check(self, meta, children):
        return "with_check", str(children[2])

    def policy(self, meta, children):
        name_tok = children[1]
        name = unquote(name_tok) if name_tok.type == "STRING" else str(name_tok)
        return DirectiveNode(kind="POLICY", name=name, line=meta.line, column=meta.column, **dict(children[2:]))

    def auditable(self, meta, children):
        return DirectiveNode(kind="AUDITABLE", line=meta.line, column=meta.column)

    def soft_delete(self, meta, children):
        if len(children[1]) != 1:
            raise self._error("SOFT_DELETE takes exactly one field", ["single field name"], children[0])
        return DirectiveNode(kind="SOFT_DELETE", columns=children[1], line=meta.line, column=meta.column)

    # Top-level statements. Pass-through bodies are filled in by the parser.

    def entity_head(self, meta, children):
        return str(children[0])[1:]

    def variant(self, meta, children):
        tok = children[0]
        return unquote(tok) if tok.type == "STRING" else str(tok)

    def enum_decl(self, meta, children):
        return EnumNode(name=str(children[1]), variants=tuple(children[2:]), line=meta.line, column=meta.column)

    def index_column(self, meta, children):
        return self._text(meta)

    def index_columns(self, meta, children):
        return tuple(children)

    def index_tail(self, meta, children):
        return None

    def index_stmt(self, meta, children):
        columns = next((c for c in children if isinstance(c, tuple)), ())
        return PassThroughStatement(
            keyword="INDEX",
            body="",
            name=str(children[1]),
            target=str(children[3]),
            columns=columns,
            line=meta.line,
            column=meta.column,
        )

    def tail(self, meta, children):
        return list(children)

    def view_stmt(self, meta, children):
        return PassThroughStatement(
            keyword="MATERIALIZED VIEW", body="", name=str(children[2]), line=meta.line, column=meta.column
        )

    def trigger_stmt(self, meta, children):
        words = children[2] if len(children) > 2 else []
        target = None
        for tok, following in zip(words, words[1:]):
            if tok.type == "NAME" and tok.upper() == "ON" and following.type == "NAME":
                target = str(following)
                break
        return PassThroughStatement(
            keyword="TRIGGER", body="", name=str(children[1]), target=target, line=meta.line, column=meta.column
        )

    def extension_stmt(self, meta, children):
        name_tok = children[1]
        name = unquote(name_tok) if name_tok.type == "STRING" else str(name_tok)
        return PassThroughStatement(keyword="EXTENSION", body="", name=name, line=meta.line, column=meta.column)


# ----------------------------------------------------------------------
# Document
# ----------------------------------------------------------------------

def _logical_lines(tokens: List[ERDToken]) -> List[List[ERDToken]]:
    """Split tokens at NEWLINEs that are outside every bracket; blank lines vanish."""
    lines: List[List[ERDToken]] = []
    current: List[ERDToken] = []
    depth = 0
    for tok in tokens:
        if tok.type == "NEWLINE":
            if current and depth == 0:
                lines.append(current)
                current = []
            continue
        if tok.type in _OPENERS:
            depth += 1
        elif tok.type in _CLOSERS:
            depth = max(depth - 1, 0)
        current.append(tok)
    if current:
        lines.append(current)
    return lines


def _syntax_message(token: Token, expected: set) -> str:
    if token.type == "FIELD" and "HAS" in expected:
        return "Field is missing its type"
    if "FIELD" in expected:
        return "Expected a sigil field ($.name, @.name or %.name) after the type"
    if _CONSTRAINT_TERMINALS <= expected:
        return "Unknown field constraint"
    if expected == {"EXPR"}:
        return "Expected a parenthesized expression"
    if token.type == "$END":
        return "Unexpected end of line"
    return f"Unexpected token {str(token.value)!r}"


class ERDParser:
    """Parser for one ERD document: cuts it into units and runs Lark on each."""

    def __init__(self, tokens: List[ERDToken], source: str, registry: Optional[PluginRegistry] = None):
        self.tokens = list(tokens)
        self.source = source or ""
        self.registry = registry or PluginRegistry()
        self.transformer = ERDTransformer(self.source)
        self.errors: List[ParseError] = []
        self.plugin_diagnostics: List[Diagnostic] = []

    def parse(self) -> Document:
        lines = _logical_lines(self.tokens)
        statements: List[Statement] = []
        index = 0
        while index < len(lines):
            head = lines[index][0]
            if head.type == "ENTITY":
                statement, index = self._parse_entity(lines, index)
            elif head.type in STATEMENT_START_RULES or self._is_plugin_start(head):
                statement, index = self._parse_statement(lines, index)
            else:
                error = self._error(
                    "Expected an entity block or a top-level statement",
                    _TOP_LEVEL_EXPECTED + self.registry.keywords,
                    head,
                )
                logger.debug(f"Parse error at {error.line}:{error.column}: {error.message}")
                self.errors.append(error)
                index = self._next_statement(lines, index + 1)
                continue
            if statement is not None:
                statements.append(statement)

        logger.debug(f"Parsed {len(statements)} statements with {len(self.errors)} errors")
        return Document(
            statements=tuple(statements),
            errors=tuple(self.errors),
            plugin_diagnostics=tuple(self.plugin_diagnostics),
        )

    def _error(self, message: str, expected: List[str], tok: ERDToken) -> ParseError:
        return ParseError(
            message,
            line=tok.line,
            column=tok.column,
            expected=expected,
            found=tok.value,
            context=build_context_snippet(self.source, tok.line, tok.column),
        )

    def _syntax_error(self, e: UnexpectedInput) -> ParseError:
        token = getattr(e, "token", None)
        expected = set(getattr(e, "expected", None) or ())
        if token is None:
            token = Token("$END", "")
        found = "end of line" if token.type == "$END" else str(token.value)
        line = token.line or getattr(e, "line", None)
        column = token.column or getattr(e, "column", None)
        return ParseError(
            _syntax_message(token, expected),
            line=line,
            column=column,
            expected=sorted({_EXPECTED_NAMES.get(name, name) for name in expected}),
            found=found,
            context=build_context_snippet(self.source, line, column),
        )

    def _parse_unit(self, tokens: List[ERDToken], start: str):
        try:
            tree = _get_parser().parse(tokens, start=start)
        except UnexpectedInput as e:
            raise self._syntax_error(e) from e
        try:
            return self.transformer.transform(tree)
        except VisitError as e:
            if isinstance(e.orig_exc, ParseError):
                raise e.orig_exc from e
            raise

    def _is_plugin_start(self, tok: ERDToken) -> bool:
        return tok.type == "NAME" and tok.column == 1 and tok.value in self.registry

    def _starts_statement(self, tok: ERDToken) -> bool:
        if tok.type == "ENTITY":
            return True
        return tok.column == 1 and (tok.type in TOP_LEVEL_KEYWORDS or self._is_plugin_start(tok))

    def _next_statement(self, lines: List[List[ERDToken]], index: int) -> int:
        while index < len(lines) and not self._starts_statement(lines[index][0]):
            index += 1
        return index

    # ------------------------------------------------------------------
    # Entity blocks
    # ------------------------------------------------------------------

    def _block_ended(self, tok: ERDToken) -> bool:
        return tok.column == 1 or tok.type == "ENTITY" or tok.type in TOP_LEVEL_KEYWORDS

    def _parse_entity(self, lines: List[List[ERDToken]], index: int) -> Tuple[EntityBlock, int]:
        head = lines[index][0]
        name = head.value[1:]
        try:
            self._parse_unit(lines[index], "entity_head")
        except ParseError as e:
            self.errors.append(
                ParseError(
                    f"Unexpected token after entity name '{name}'",
                    line=e.line,
                    column=e.column,
                    expected=["end of line"],
                    found=e.found,
                    context=e.context,
                )
            )

        members = []
        index += 1
        while index < len(lines) and not self._block_ended(lines[index][0]):
            try:
                members.append(self._parse_unit(lines[index], "member"))
            except ParseError as e:
                e.entity = name
                logger.debug(f"Parse error in '{name}' at {e.line}:{e.column}: {e.message}")
                self.errors.append(e)
            index += 1

        logger.debug(f"Parsed entity block '{name}' with {len(members)} lines")
        return EntityBlock(name=name, members=tuple(members), line=head.line, column=head.column), index

    # ------------------------------------------------------------------
    # Top-level statements
    # ------------------------------------------------------------------

    def _parse_statement(self, lines: List[List[ERDToken]], index: int) -> Tuple[Optional[Statement], int]:
        head = lines[index][0]
        end = index + 1
        if head.type == "ENUM":
            # the opening brace may sit on the next line
            if end < len(lines) and lines[end][0].type == "LBRACE" and len(lines[index]) == 2:
                end += 1
        else:
            while end < len(lines) and lines[end][0].column > 1 and lines[end][0].type != "ENTITY":
                end += 1
        tokens = [tok for line in lines[index:end] for tok in line]

        if head.type not in STATEMENT_START_RULES:
            return self._parse_plugin(head, tokens), end
        try:
            statement = self._parse_unit(tokens, STATEMENT_START_RULES[head.type])
        except ParseError as e:
            logger.debug(f"Parse error at {e.line}:{e.column}: {e.message}")
            self.errors.append(e)
            return None, end
        if isinstance(statement, PassThroughStatement):
            statement = replace(statement, body=self._body_text(tokens))
        return statement, end

    def _body_text(self, tokens: List[ERDToken]) -> str:
        """Statement text as written: one segment per source line, continuation indentation kept."""
        segments: List[str] = []
        first = last = tokens[0]
        for tok in tokens[1:]:
            if "\n" in self.source[last.end_pos:tok.start_pos]:
                segments.append(self._segment(first, last, continuation=bool(segments)))
                first = tok
            last = tok
        segments.append(self._segment(first, last, continuation=bool(segments)))
        return "\n".join(segments)

    def _segment(self, first: ERDToken, last: ERDToken, continuation: bool) -> str:
        start = first.start_pos
        if continuation:
            start = self.source.rfind("\n", 0, start) + 1
        return self.source[start:last.end_pos]

    def _parse_plugin(self, head: ERDToken, tokens: List[ERDToken]) -> Optional[PluginStatement]:
        plugin = self.registry.get(head.value)
        text = self._body_text(tokens)[len(head.value):].strip()
        payload = text
        if plugin.parse is not None:
            try:
                payload = plugin.parse(text)
            except Exception as e:
                context = ErrorContext(stage="parse", statement=head.value, line=head.line, column=head.column)
                response = handle_stage_error(e, context)
                self.plugin_diagnostics.append(
                    Diagnostic.from_error_response(response, code="plugin-parse-failed", stage=CompilationStage.SYNTAX)
                )
                return None
        return PluginStatement(keyword=head.value, body=text, payload=payload, line=head.line, column=head.column)


def parse_tokens(
    tokens: List[ERDToken],
    source: str,
    registry: Optional[PluginRegistry] = None,
) -> Document:
    """Parse a token list into a Document; parse errors are collected on the Document."""
    return ERDParser(tokens, source, registry=registry).parse()


def parse_erd(source: str, registry: Optional[PluginRegistry] = None) -> Document:
    """Tokenize and parse ERD source text.

    Raises:
        LexError: If tokenization fails
    """
    tokens = tokenize_erd(source, return_model=False)
    return parse_tokens(tokens, source, registry=registry)

"""Lexer/tokenizer for the ERD schema language.

This module provides pure tokenization, independent of parsing. Lark lexes
the raw text with the terminal grammar from ``grammar.py``; a thin
post-processing layer then
- promotes NAME lexemes to keyword tokens by exact value,
- folds the balanced parenthesis span after CHECK / USING into one EXPR token,
- rejects unterminated strings and unbalanced brackets with a LexError, or,
  in recovery mode, drops the offending line and resumes at the next NEWLINE
  (an opener still unclosed at end of input is always fatal).

Architecture:
- Lexer: Pure tokenization (this module)
- Parser: Builds statement nodes from tokens (parser.py)
- Builder: Resolves nodes into the semantic model (builder.py)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, List, Literal, Optional, Union

from lark import Lark

from ERD2DDL.utils.logging import get_logger
from .errors import LexError, build_context_snippet
from .grammar import ERD_TERMINAL_GRAMMAR, EXPRESSION_OPENERS, KEYWORDS, SOFT_KEYWORDS, token_type_for_name
from .models import TokenizationResult

logger = get_logger(__name__)


TokenCategory = Literal[
    "keyword", "identifier", "entity", "field", "literal",
    "expression", "punctuation", "newline", "unknown",
]


@dataclass(frozen=True)
class ERDToken:
    type: str
    value: str
    category: TokenCategory
    line: int
    column: int
    start_pos: int
    end_pos: int


_PUNCTUATION = {"LPAREN", "RPAREN", "LBRACK", "RBRACK", "LBRACE", "RBRACE", "COMMA", "EQ"}

_OPENERS = {"LPAREN": "RPAREN", "LBRACK": "RBRACK", "LBRACE": "RBRACE"}
_CLOSERS = {closer: opener for opener, closer in _OPENERS.items()}

_KEYWORD_TYPES = set(KEYWORDS) | set(SOFT_KEYWORDS.values())


def _categorize_token_type(token_type: str) -> TokenCategory:
    """Categorize a token type into a semantic category."""
    if token_type in _KEYWORD_TYPES:
        return "keyword"
    if token_type == "NAME":
        return "identifier"
    if token_type == "ENTITY":
        return "entity"
    if token_type == "FIELD":
        return "field"
    if token_type in ("NUMBER", "STRING"):
        return "literal"
    if token_type == "EXPR":
        return "expression"
    if token_type in _PUNCTUATION:
        return "punctuation"
    if token_type == "NEWLINE":
        return "newline"
    return "unknown"


# Lexer cache keyed by grammar text
_LEXER_CACHE: Dict[str, Lark] = {}


def _get_lexer(grammar: str = ERD_TERMINAL_GRAMMAR) -> Lark:
    cached = _LEXER_CACHE.get(grammar)
    if cached is not None:
        return cached
    lexer = Lark(
        grammar,
        parser="lalr",
        lexer="basic",
        start="start",
        propagate_positions=True,
        maybe_placeholders=False,
    )
    _LEXER_CACHE[grammar] = lexer
    return lexer


def _make_token(token_type: str, value: str, line: int, column: int, start_pos: int, end_pos: int) -> ERDToken:
    return ERDToken(
        type=token_type,
        value=value,
        category=_categorize_token_type(token_type),
        line=line,
        column=column,
        start_pos=start_pos,
        end_pos=end_pos,
    )


def _raw_tokens(source: str) -> Iterator[ERDToken]:
    """Lark tokens converted to ERDToken, with keyword promotion."""
    for t in _get_lexer().lex(source):
        token_type = str(t.type)
        if token_type == "NAME":
            token_type = token_type_for_name(str(t.value))
        yield _make_token(token_type, str(t.value), t.line, t.column, t.start_pos, t.end_pos)


def _lex_error(source: str, message: str, token: ERDToken) -> LexError:
    return LexError(
        message,
        line=token.line,
        column=token.column,
        invalid_char=token.value[:1] or None,
        context=build_context_snippet(source, token.line, token.column),
    )


def _opens_expression(previous: Optional[ERDToken]) -> bool:
    return (
        previous is not None
        and previous.value in EXPRESSION_OPENERS
        and previous.type in ("CHECK", "NAME")
    )


def _capture_expression(source: str, opening: ERDToken, stream: Iterator[ERDToken]) -> Optional[ERDToken]:
    """Consume tokens up to the parenthesis matching ``opening``; return one EXPR token.

    Returns None when the input ends before the span is closed.
    """
    depth = 1
    for tok in stream:
        if tok.type == "OTHER" and tok.value in ("'", '"'):
            raise _lex_error(source, "Unterminated string literal", tok)
        if tok.type == "LPAREN":
            depth += 1
        elif tok.type == "RPAREN":
            depth -= 1
            if depth == 0:
                text = source[opening.end_pos:tok.start_pos].strip()
                return _make_token(
                    "EXPR", text, opening.line, opening.column, opening.start_pos, tok.end_pos
                )
    return None


class _UnclosedAtEnd(Exception):
    """An opened span reaches the end of input; never recoverable."""

    def __init__(self, error: LexError):
        self.error = error
        super().__init__(str(error))


def _check_token(
    source: str,
    tok: ERDToken,
    previous: Optional[ERDToken],
    stream: Iterator[ERDToken],
    stack: List[ERDToken],
) -> ERDToken:
    if tok.type == "OTHER" and tok.value in ("'", '"'):
        raise _lex_error(source, "Unterminated string literal", tok)

    if tok.type == "LPAREN" and _opens_expression(previous):
        expression = _capture_expression(source, tok, stream)
        if expression is None:
            raise _UnclosedAtEnd(_lex_error(source, "Unbalanced parenthesis: expression is never closed", tok))
        return expression
    if tok.type in _OPENERS:
        stack.append(tok)
    elif tok.type in _CLOSERS:
        if not stack or stack[-1].type != _CLOSERS[tok.type]:
            raise _lex_error(source, f"Unbalanced bracket: unexpected {tok.value!r}", tok)
        stack.pop()
    return tok


def _skip_line(stream: Iterator[ERDToken]) -> Optional[ERDToken]:
    """Discard tokens up to the next NEWLINE and return it (None at end of input)."""
    for tok in stream:
        if tok.type == "NEWLINE":
            return tok
    return None


def _iter_tokens(source: str, errors: Optional[List[LexError]] = None) -> Iterator[ERDToken]:
    """Yield checked tokens one physical line at a time.

    With ``errors`` given, a malformed line is recorded there, dropped, and
    lexing resumes after its NEWLINE. An opener still unclosed at the end
    of input always raises.
    """
    stream = _raw_tokens(source)
    stack: List[ERDToken] = []
    line_stack: List[ERDToken] = []
    pending: List[ERDToken] = []
    previous: Optional[ERDToken] = None

    for tok in stream:
        try:
            tok = _check_token(source, tok, previous, stream, stack)
        except _UnclosedAtEnd as e:
            raise e.error from None
        except LexError as e:
            if errors is None:
                raise
            logger.warning(f"Skipping line {e.line}: {e.message}")
            errors.append(e)
            pending = []
            stack[:] = line_stack
            tok = _skip_line(stream)
            if tok is None:
                break

        pending.append(tok)
        previous = tok
        if tok.type == "NEWLINE":
            yield from pending
            pending = []
            line_stack = list(stack)

    yield from pending
    if stack:
        raise _lex_error(source, f"Unbalanced bracket: {stack[-1].value!r} is never closed", stack[-1])


class ERDTokenStream:
    """Lazy, restartable token sequence over one source text.

    Every iteration re-lexes the source from the start, so a stream can be
    consumed any number of times. Errors surface as LexError during iteration
    unless ``recover`` is set, in which case a malformed line is skipped and
    its error is collected in ``errors`` (reset on each iteration).
    """

    def __init__(self, source: str, recover: bool = False):
        self.source = source or ""
        self.recover = recover
        self.errors: List[LexError] = []

    def __iter__(self) -> Iterator[ERDToken]:
        self.errors = []
        return _iter_tokens(self.source, self.errors if self.recover else None)

    def to_list(self) -> List[ERDToken]:
        return list(self)


def tokenize_erd(
    source: str,
    return_model: bool = False,
) -> Union[List[ERDToken], TokenizationResult]:
    """Tokenize ERD source text into a list of typed tokens.

    Args:
        source: The ERD document text
        return_model: If True, returns TokenizationResult (Pydantic model) instead of List[ERDToken]

    Returns:
        If return_model=False: List of ERDToken objects
        If return_model=True: TokenizationResult with structured tokenization information

    Raises:
        LexError: On an unterminated string or unbalanced bracket (only when return_model=False)

    Notes:
    - Comments (``#`` and ``;;`` to end of line) are discarded
    - NEWLINE tokens are kept; the parser is line oriented
    - Unrecognised characters become single-character OTHER tokens
    """
    try:
        tokens = ERDTokenStream(source).to_list()
    except LexError as e:
        logger.warning(f"Tokenization failed at line {e.line}, column {e.column}: {e.message}")
        if return_model:
            return TokenizationResult.from_error(e.message, e.line, e.column)
        raise

    logger.debug(f"Tokenized {len(tokens)} tokens")
    if return_model:
        return TokenizationResult.from_tokens(tokens)
    return tokens

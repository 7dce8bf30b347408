"""
Tokenizer and recursive-descent parser for metric expressions.

Grammar::

    expr    := term (("+" | "-") term)*
    term    := unary (("*" | "/" | "%") unary)*
    unary   := "-" unary | primary
    primary := NUMBER | STRING | "(" expr ")" | call | identifier
    call    := NAME "(" [arg ("," arg)*] ")"
    arg     := "*" | ["DISTINCT"] expr

Unquoted identifiers may contain spaces (``Order Amount``): adjacent name
tokens in operand position are merged.  An aggregate whose single argument
has no parentheses or commas takes the argument text verbatim as the field
(``SUM(Order-Amount)``, ``SUM(Amount $)``).  Double-quoted identifiers
(``"Unit Price"``) are taken verbatim.  Other function calls must name an
allowed scalar function.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from src.core.errors import InvalidExpressionError
from src.metrics.nodes import (
    AGG_FUNCS,
    SCALAR_FUNCS,
    TIME_FUNCS,
    Aggregate,
    BinaryOp,
    FunctionCall,
    Identifier,
    Node,
    NumberLiteral,
    Star,
    StringLiteral,
    TimeIntelCall,
    UnaryOp,
)

# ── Tokenizer ────────────────────────────────────────────


@dataclass(frozen=True)
class Token:
    kind: str   # NUMBER | STRING | NAME | QNAME | OP | PUNCT | LPAREN | RPAREN | COMMA | EOF
    text: str
    pos: int


_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<NUMBER>(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?)
  | (?P<STRING>'(?:[^']|'')*')
  | (?P<QNAME>"(?:[^"]|"")+")
  | (?P<NAME>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<OP>[-+*/%])
  | (?P<PUNCT>[$#.&@?!])
  | (?P<LPAREN>\()
  | (?P<RPAREN>\))
  | (?P<COMMA>,)
    """,
    re.VERBOSE,
)


def tokenize(text: str) -> list[Token]:
    tokens: list[Token] = []
    pos = 0
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if m is None:
            raise InvalidExpressionError(f"Unexpected character {text[pos]!r} at position {pos}")
        kind = m.lastgroup
        if kind != "ws":
            tokens.append(Token(kind, m.group(), pos))
        pos = m.end()
    tokens.append(Token("EOF", "", len(text)))
    return tokens


def check_parentheses(text: str) -> None:
    """Raise when the running parenthesis depth goes negative or ends non-zero."""
    depth = 0
    for char in text:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise InvalidExpressionError("Unbalanced parentheses")
    if depth != 0:
        raise InvalidExpressionError("Unbalanced parentheses")


# ── Parser ───────────────────────────────────────────────


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = tokenize(text)
        self.index = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def peek(self, offset: int = 1) -> Token:
        return self.tokens[min(self.index + offset, len(self.tokens) - 1)]

    def advance(self) -> Token:
        tok = self.current
        self.index += 1
        return tok

    def expect(self, kind: str) -> Token:
        if self.current.kind != kind:
            raise self.error(f"expected {kind.lower()}")
        return self.advance()

    def error(self, message: str) -> InvalidExpressionError:
        tok = self.current
        found = tok.text or "end of expression"
        return InvalidExpressionError(f"Syntax error at position {tok.pos}: {message}, found {found!r}")

    # ── Entry point ────────────────────────────────

    def parse(self) -> Node:
        node = self.expr()
        if self.current.kind != "EOF":
            raise self.error("unexpected trailing input")
        return node

    # ── Productions ────────────────────────────────

    def expr(self) -> Node:
        node = self.term()
        while self.current.kind == "OP" and self.current.text in "+-":
            op = self.advance().text
            node = BinaryOp(op, node, self.term())
        return node

    def term(self) -> Node:
        node = self.unary()
        while self.current.kind == "OP" and self.current.text in "*/%":
            op = self.advance().text
            node = BinaryOp(op, node, self.unary())
        return node

    def unary(self) -> Node:
        if self.current.kind == "OP" and self.current.text == "-":
            self.advance()
            return UnaryOp("-", self.unary())
        return self.primary()

    def primary(self) -> Node:
        tok = self.current
        if tok.kind == "NUMBER":
            self.advance()
            return NumberLiteral(tok.text)
        if tok.kind == "STRING":
            self.advance()
            return StringLiteral(tok.text[1:-1].replace("''", "'"))
        if tok.kind == "QNAME":
            self.advance()
            return Identifier(tok.text[1:-1].replace('""', '"'))
        if tok.kind == "LPAREN":
            self.advance()
            node = self.expr()
            self.expect("RPAREN")
            return node
        if tok.kind == "NAME":
            if self.peek().kind == "LPAREN":
                return self.call()
            return self.identifier()
        raise self.error("expected a value, field or function call")

    def identifier(self) -> Identifier:
        first = last = self.advance()
        while self.current.kind == "NAME":
            if self.peek().kind == "LPAREN":
                raise self.error("function name cannot follow a field name")
            last = self.advance()
        return Identifier(self.text[first.pos:last.pos + len(last.text)])

    def bare_field(self) -> tuple[Identifier, bool] | None:
        """Consume ``[DISTINCT] field)`` when the argument is plain text up to the closing paren.

        The text is the column name verbatim (``Order-Amount``, ``Net  Sales``),
        so header punctuation is never read as arithmetic.
        """
        start = self.index
        distinct = False
        if self.current.kind == "NAME" and self.current.text.upper() == "DISTINCT" \
                and self.peek().kind not in ("RPAREN", "OP"):
            start += 1
            distinct = True
        end = start
        while self.tokens[end].kind not in ("LPAREN", "RPAREN", "COMMA", "EOF"):
            end += 1
        arg_tokens = self.tokens[start:end]
        if self.tokens[end].kind != "RPAREN" or not arg_tokens:
            return None
        if len(arg_tokens) == 1 and arg_tokens[0].kind in ("NUMBER", "STRING", "OP"):
            return None
        if len(arg_tokens) > 1 and any(t.kind in ("STRING", "QNAME") for t in arg_tokens):
            return None
        self.index = end + 1
        if arg_tokens[0].kind == "QNAME":
            return Identifier(arg_tokens[0].text[1:-1].replace('""', '"')), distinct
        return Identifier(self.text[arg_tokens[0].pos:self.tokens[end].pos].rstrip()), distinct

    def call(self) -> Node:
        name_tok = self.advance()
        open_tok = self.expect("LPAREN")
        upper = name_tok.text.upper()

        if upper == "COUNT" and self.current.kind == "OP" and self.current.text == "*":
            self.advance()
            self.expect("RPAREN")
            return Aggregate(AGG_FUNCS["COUNT"], Star())
        if upper in AGG_FUNCS:
            bare = self.bare_field()
            if bare is not None:
                return Aggregate(AGG_FUNCS[upper], *bare)
        distinct = False
        if upper in AGG_FUNCS and self.current.kind == "NAME" and self.current.text.upper() == "DISTINCT" \
                and self.peek().kind in ("NAME", "QNAME"):
            self.advance()
            distinct = True
        if upper not in AGG_FUNCS and upper not in TIME_FUNCS and upper not in SCALAR_FUNCS:
            raise InvalidExpressionError(f"Unsupported function '{name_tok.text}'")

        args: list[Node] = []
        if self.current.kind != "RPAREN":
            args.append(self.expr())
            while self.current.kind == "COMMA":
                self.advance()
                args.append(self.expr())
        close_tok = self.expect("RPAREN")

        if upper in TIME_FUNCS:
            if not args:
                raise InvalidExpressionError(f"{name_tok.text}() requires an argument")
            args_text = self.text[open_tok.pos + 1:close_tok.pos].strip()
            return TimeIntelCall(TIME_FUNCS[upper], tuple(args), args_text)
        if upper in AGG_FUNCS:
            if len(args) != 1:
                raise InvalidExpressionError(f"{upper} expects exactly one argument, got {len(args)}")
            return Aggregate(AGG_FUNCS[upper], args[0], distinct)
        return FunctionCall(name_tok.text, tuple(args))


def parse_expression(text: str) -> Node:
    """Parse *text* into an AST, raising ``InvalidExpressionError`` on bad input."""
    if not text or not text.strip():
        raise InvalidExpressionError("Expression is empty")
    check_parentheses(text)
    return _Parser(text.strip()).parse()

"""
Parser for the structured query language.

    query    := expr
    expr     := operator | term
    operator := '#' name ['/' distance] '(' arg* ')'
    arg      := expr                    (#and, #or, #sum, #near, #window)
              | weight expr             (#wand)
    term     := word ['.' field]

Terms go through the index tokenizer; a term that tokenizes to nothing is
dropped, and operators left without arguments are dropped with it.
Inverted-list arguments of score operators are wrapped in ``Score``.
"""

from __future__ import annotations

import re

from qryeval.errors import QuerySyntaxError
from qryeval.index import TEXT_FIELDS, tokenize
from qryeval.operators import (
    And,
    Near,
    Or,
    Qry,
    QryIop,
    QrySop,
    Score,
    Sum,
    Term,
    Wand,
    Window,
)

_TOKEN_PATTERN = re.compile(r"\(|\)|[^\s()]+")

_SCORE_OPERATORS = {"and": And, "or": Or, "sum": Sum}
_PROXIMITY_OPERATORS = {"near": Near, "window": Window}


def parse_query(query: str) -> QrySop | None:
    """
    Parse ``query`` into an operator tree rooted at a score operator.

    Returns ``None`` when nothing of the query survives tokenization.

    Raises:
        QuerySyntaxError: Unbalanced parentheses, unknown operators, bad weights.
    """
    parser = _Parser(_TOKEN_PATTERN.findall(query), query)
    root = parser.parse_expr()
    if parser.pos != len(parser.tokens):
        raise QuerySyntaxError(f"Unexpected {parser.tokens[parser.pos]!r} in query {query!r}")
    if isinstance(root, list):
        if len(root) > 1:
            raise QuerySyntaxError(f"Query {query!r} must have a single root operator.")
        root = root[0] if root else None
    if isinstance(root, QryIop):
        root = Score(root)
    return root


def wrap_query(query: str, default_operator: str) -> str:
    """Wrap a bare query in the retrieval model's default operator."""
    return f"{default_operator}( {query} )"


def split_term(token: str) -> tuple[str, str]:
    """Split ``word.field`` into (word, field); unknown suffixes stay part of the word."""
    word, dot, field = token.rpartition(".")
    if dot and word and field.lower() in TEXT_FIELDS:
        return word, field.lower()
    return token, "body"


class _Parser:
    def __init__(self, tokens: list[str], query: str):
        self.tokens = tokens
        self.query = query
        self.pos = 0

    def _peek(self) -> str | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self) -> str:
        token = self._peek()
        if token is None:
            raise QuerySyntaxError(f"Unexpected end of query {self.query!r}")
        self.pos += 1
        return token

    def _expect(self, expected: str) -> None:
        token = self._next()
        if token != expected:
            raise QuerySyntaxError(f"Expected {expected!r} but found {token!r} in {self.query!r}")

    def parse_expr(self) -> Qry | list[Qry] | None:
        """An operator, or the list of terms one query word tokenizes into."""
        token = self._next()
        if token.startswith("#"):
            return self._parse_operator(token)
        if token in ("(", ")"):
            raise QuerySyntaxError(f"Unexpected {token!r} in query {self.query!r}")
        word, field = split_term(token)
        return [Term(term, field) for term in tokenize(word)]

    def _parse_args(self) -> list[Qry]:
        args: list[Qry] = []
        while self._peek() != ")":
            if self._peek() is None:
                raise QuerySyntaxError(f"Missing ')' in query {self.query!r}")
            args.extend(_as_list(self.parse_expr()))
        self._expect(")")
        return args

    def _parse_weighted_args(self) -> tuple[list[Qry], list[float]]:
        args: list[Qry] = []
        weights: list[float] = []
        while self._peek() != ")":
            if self._peek() is None:
                raise QuerySyntaxError(f"Missing ')' in query {self.query!r}")
            weight_token = self._next()
            try:
                weight = float(weight_token)
            except ValueError:
                raise QuerySyntaxError(
                    f"Expected a weight but found {weight_token!r} in {self.query!r}"
                ) from None
            for arg in _as_list(self.parse_expr()):
                args.append(arg)
                weights.append(weight)
        self._expect(")")
        return args, weights

    def _parse_operator(self, token: str) -> Qry | None:
        name, _, distance = token[1:].lower().partition("/")
        self._expect("(")

        if name == "wand":
            args, weights = self._parse_weighted_args()
            if not args:
                return None
            return Wand([_as_score(arg) for arg in args], weights)

        if name in _SCORE_OPERATORS:
            args = self._parse_args()
            if not args:
                return None
            return _SCORE_OPERATORS[name]([_as_score(arg) for arg in args])

        if name in _PROXIMITY_OPERATORS:
            try:
                n = int(distance)
            except ValueError:
                raise QuerySyntaxError(f"{token} needs an integer distance, e.g. #{name}/3") from None
            args = self._parse_args()
            if not args:
                return None
            for arg in args:
                if not isinstance(arg, QryIop):
                    raise QuerySyntaxError(f"{token} arguments must be terms or proximity operators.")
            return _PROXIMITY_OPERATORS[name](args, n)

        raise QuerySyntaxError(f"Unknown query operator {token!r}")


def _as_list(node: Qry | list[Qry] | None) -> list[Qry]:
    if node is None:
        return []
    return node if isinstance(node, list) else [node]


def _as_score(arg: Qry) -> QrySop:
    return Score(arg) if isinstance(arg, QryIop) else arg

"""
Query operators: posting-list merges, proximity, and model-specific scoring.

Operators form a tree. Two families exist:

* Inverted-list operators (``Term``, ``Near``, ``Window``) are fully evaluated
  in ``initialize``; the result is an ``InvertedList`` that parents read
  through a forward-only cursor.
* Score operators (``Score``, ``And``, ``Or``, ``Sum``, ``Wand``) are
  evaluated document-at-a-time. ``has_match`` positions the operator on its
  next candidate document, ``get_score`` scores it, and ``advance_past``
  moves every cursor beyond it.

Which documents a score operator matches and how it scores them depends on
the retrieval model. Both are looked up once per query, in ``initialize``,
from tables indexed by (operator kind, model kind). Combinations missing from
``SCORE_STRATEGIES`` raise ``UnsupportedCombinatorError`` when a score is
requested.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from enum import Enum
from typing import TYPE_CHECKING, ClassVar

from qryeval.errors import QuerySyntaxError, UnsupportedCombinatorError
from qryeval.postings import InvertedList, Posting, PostingCursor
from qryeval.retrieval_models import (
    ModelKind,
    RetrievalModel,
    bm25_term_score,
    indri_term_score,
)

if TYPE_CHECKING:
    from qryeval.index import IndexStore


class OperatorKind(Enum):
    TERM = "term"
    NEAR = "near"
    WINDOW = "window"
    SCORE = "score"
    AND = "and"
    OR = "or"
    SUM = "sum"
    WAND = "wand"


class MatchRule(Enum):
    ALL = "all"
    MIN = "min"
    FIRST = "first"


def match_rule(operator: OperatorKind, model: ModelKind) -> MatchRule:
    """How a score operator combines its children's candidates under ``model``."""
    if operator is OperatorKind.SCORE:
        return MatchRule.FIRST
    if operator in (OperatorKind.AND, OperatorKind.WAND):
        return MatchRule.MIN if model is ModelKind.INDRI else MatchRule.ALL
    return MatchRule.MIN


# =============================================================================
# Base operator and match combinators
# =============================================================================


class Qry:
    """Base class for all query operators."""

    kind: ClassVar[OperatorKind]
    display_name: ClassVar[str]

    def __init__(self, args: Sequence[Qry] = ()):
        self.args: list[Qry] = list(args)
        self._match: int | None = None
        self._model: RetrievalModel | None = None
        self._index: IndexStore | None = None

    def initialize(self, model: RetrievalModel, index: IndexStore) -> None:
        self._model = model
        self._index = index
        self._match = None
        for arg in self.args:
            arg.initialize(model, index)

    def has_match(self) -> bool:
        raise NotImplementedError

    def doc(self) -> int:
        """The docid found by the last successful ``has_match``."""
        if self._match is None:
            raise RuntimeError(f"{self.display_name} has no current match.")
        return self._match

    def advance_past(self, docid: int) -> None:
        for arg in self.args:
            arg.advance_past(docid)
        self._match = None

    # ----- Match combinators -----

    def _match_all(self) -> bool:
        """Intersection: advance lagging children until all sit on one docid."""
        self._match = None
        if not self.args:
            return False
        while True:
            target = -1
            for arg in self.args:
                if not arg.has_match():
                    return False
                target = max(target, arg.doc())
            lagging = [arg for arg in self.args if arg.doc() < target]
            if not lagging:
                self._match = target
                return True
            for arg in lagging:
                arg.advance_past(target - 1)

    def _match_min(self) -> bool:
        """Union: the smallest current docid among children that still have data."""
        best: int | None = None
        for arg in self.args:
            if arg.has_match():
                docid = arg.doc()
                if best is None or docid < best:
                    best = docid
        self._match = best
        return best is not None

    def _match_first(self) -> bool:
        arg = self.args[0]
        self._match = arg.doc() if arg.has_match() else None
        return self._match is not None

    def __repr__(self) -> str:
        return f"{self.display_name}( {' '.join(map(repr, self.args))} )"


# =============================================================================
# Inverted-list operators
# =============================================================================


class QryIop(Qry):
    """An operator whose result is an inverted list, read through a cursor."""

    field: str

    def __init__(self, args: Sequence[QryIop] = (), field: str = "body"):
        super().__init__(args)
        self.field = field
        self.inverted_list = InvertedList(field)
        self._cursor: PostingCursor | None = None

    def initialize(self, model: RetrievalModel, index: IndexStore) -> None:
        super().initialize(model, index)
        self.inverted_list = self.evaluate(index)
        self._cursor = self.inverted_list.cursor()

    def evaluate(self, index: IndexStore) -> InvertedList:
        raise NotImplementedError

    @property
    def cursor(self) -> PostingCursor:
        if self._cursor is None:
            raise RuntimeError(f"{self.display_name} used before initialize().")
        return self._cursor

    @property
    def df(self) -> int:
        return self.inverted_list.df

    @property
    def ctf(self) -> int:
        return self.inverted_list.ctf

    def has_match(self) -> bool:
        return self.cursor.has_doc()

    def doc(self) -> int:
        return self.cursor.doc()

    def posting(self) -> Posting:
        return self.cursor.posting()

    def advance_past(self, docid: int) -> None:
        self.cursor.advance_past(docid)

    def has_loc(self) -> bool:
        return self.cursor.has_loc()

    def loc(self) -> int:
        return self.cursor.loc()

    def advance_loc(self) -> None:
        self.cursor.advance_loc()

    def advance_loc_past(self, position: int) -> None:
        self.cursor.advance_loc_past(position)


class Term(QryIop):
    kind = OperatorKind.TERM
    display_name = "#TERM"

    def __init__(self, term: str, field: str = "body"):
        super().__init__((), field)
        self.term = term

    def evaluate(self, index: IndexStore) -> InvertedList:
        return index.postings(self.field, self.term)

    def __repr__(self) -> str:
        return f"{self.term}.{self.field}"


class _ProximityOp(QryIop):
    """Shared evaluation for Near and Window: one scan per document all children match."""

    def __init__(self, args: Sequence[QryIop], distance: int):
        if distance < 0:
            raise QuerySyntaxError(f"{self.display_name} distance must be non-negative: {distance}")
        fields = {arg.field for arg in args}
        if len(fields) > 1:
            raise QuerySyntaxError(
                f"{self.display_name} arguments must share a field, got {sorted(fields)}"
            )
        super().__init__(args, fields.pop() if fields else "body")
        self.distance = distance

    def evaluate(self, index: IndexStore) -> InvertedList:
        result = InvertedList(self.field)
        if not self.args:
            return result
        while self._match_all():
            docid = self._match
            positions = self.scan(self.args)
            if positions:
                result.append_posting(docid, positions)
            for arg in self.args:
                arg.advance_past(docid)
        self._match = None
        return result

    def scan(self, children: list[QryIop]) -> list[int]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.display_name}/{self.distance}( {' '.join(map(repr, self.args))} )"


class Near(_ProximityOp):
    """
    Ordered proximity: positions p_1 < p_2 < ... < p_n, one per argument in
    argument order, with every consecutive gap at most ``distance``.
    """

    kind = OperatorKind.NEAR
    display_name = "#NEAR"

    def scan(self, children: list[QryIop]) -> list[int]:
        # Each pass advances at least one location cursor, so the scan is
        # linear in the number of positions in the document.
        matches: list[int] = []
        first = children[0]
        while first.has_loc():
            previous = first.loc()
            for child in children[1:]:
                child.advance_loc_past(previous)
                if not child.has_loc():
                    return matches
                if child.loc() - previous > self.distance:
                    break
                previous = child.loc()
            else:
                matches.append(previous)
                for child in children:
                    child.advance_loc()
                continue
            first.advance_loc()
        return matches


class Window(_ProximityOp):
    """
    Unordered proximity: one position per argument, all within a span
    ``max - min < distance``. The match is recorded at the largest position.
    """

    kind = OperatorKind.WINDOW
    display_name = "#WINDOW"

    def scan(self, children: list[QryIop]) -> list[int]:
        matches: list[int] = []
        while all(child.has_loc() for child in children):
            locations = [child.loc() for child in children]
            lo, hi = min(locations), max(locations)
            if hi - lo < self.distance:
                matches.append(hi)
                for child in children:
                    child.advance_loc()
            else:
                children[locations.index(lo)].advance_loc()
        return matches


# =============================================================================
# Score operators
# =============================================================================


class QrySop(Qry):
    """An operator evaluated document-at-a-time that produces a score."""

    def __init__(self, args: Sequence[Qry] = ()):
        super().__init__(args)
        self._rule = MatchRule.MIN
        self._scorer: Callable[[QrySop], float] | None = None

    @property
    def model(self) -> RetrievalModel:
        if self._model is None:
            raise RuntimeError(f"{self.display_name} used before initialize().")
        return self._model

    @property
    def index(self) -> IndexStore:
        if self._index is None:
            raise RuntimeError(f"{self.display_name} used before initialize().")
        return self._index

    def initialize(self, model: RetrievalModel, index: IndexStore) -> None:
        super().initialize(model, index)
        self._rule = match_rule(self.kind, model.kind)
        self._scorer = SCORE_STRATEGIES.get((self.kind, model.kind))

    def has_match(self) -> bool:
        if self._rule is MatchRule.ALL:
            return self._match_all()
        if self._rule is MatchRule.FIRST:
            return self._match_first()
        return self._match_min()

    def get_score(self) -> float:
        """Score the current match under the model given to ``initialize``."""
        if self._scorer is None:
            raise UnsupportedCombinatorError(self.display_name, self.model.name)
        return self._scorer(self)

    def default_score(self, docid: int) -> float:
        """Indri score when ``docid`` contains none of the operator's terms."""
        score = 1.0
        exponent = 1.0 / len(self.args)
        for arg in self.args:
            score *= arg.default_score(docid) ** exponent
        return score

    def child_matches(self, arg: QrySop, docid: int) -> bool:
        return arg.has_match() and arg.doc() == docid


class Score(QrySop):
    """Adapts an inverted-list operator to the score operators."""

    kind = OperatorKind.SCORE
    display_name = "#SCORE"

    def __init__(self, arg: QryIop):
        super().__init__((arg,))

    @property
    def iop(self) -> QryIop:
        return self.args[0]

    def default_score(self, docid: int) -> float:
        model = self.model
        if model.kind is not ModelKind.INDRI:
            raise UnsupportedCombinatorError(self.display_name, model.name)
        return self._indri(0, docid)

    def _indri(self, tf: int, docid: int) -> float:
        field = self.iop.field
        return indri_term_score(
            tf=tf,
            doc_length=self.index.field_length(field, docid),
            ctf=self.iop.ctf,
            collection_length=self.index.sum_of_field_lengths(field),
            mu=self.model.mu,
            lambda_=self.model.lambda_,
        )

    def __repr__(self) -> str:
        return repr(self.iop)


class And(QrySop):
    kind = OperatorKind.AND
    display_name = "#AND"


class Or(QrySop):
    kind = OperatorKind.OR
    display_name = "#OR"


class Sum(QrySop):
    kind = OperatorKind.SUM
    display_name = "#SUM"


class Wand(QrySop):
    """Weighted AND; ``weights[i]`` belongs to ``args[i]``."""

    kind = OperatorKind.WAND
    display_name = "#WAND"

    def __init__(self, args: Sequence[Qry], weights: Sequence[float]):
        if len(args) != len(weights):
            raise QuerySyntaxError("#WAND needs exactly one weight per argument.")
        if any(not (w > 0) or not math.isfinite(w) for w in weights):
            raise QuerySyntaxError(f"#WAND weights must be positive and finite: {list(weights)}")
        super().__init__(args)
        self.weights = [float(w) for w in weights]
        self.weight_sum = sum(self.weights)

    def default_score(self, docid: int) -> float:
        score = 1.0
        for arg, weight in zip(self.args, self.weights):
            score *= arg.default_score(docid) ** (weight / self.weight_sum)
        return score

    def __repr__(self) -> str:
        pairs = " ".join(f"{w} {arg!r}" for w, arg in zip(self.weights, self.args))
        return f"{self.display_name}( {pairs} )"


# =============================================================================
# Scoring strategies, indexed by (operator kind, model kind)
# =============================================================================


def _score_matched(op: QrySop) -> float:
    """Unranked Boolean: every match scores 1."""
    return 1.0


def _score_term_frequency(op: Score) -> float:
    return float(op.iop.posting().tf)


def _score_term_bm25(op: Score) -> float:
    model, index, iop = op.model, op.index, op.iop
    docid = iop.doc()
    avg_doc_length = index.sum_of_field_lengths(iop.field) / max(index.doc_count(iop.field), 1)
    return bm25_term_score(
        tf=iop.posting().tf,
        df=iop.df,
        num_docs=index.num_docs(),
        doc_length=index.field_length(iop.field, docid),
        avg_doc_length=avg_doc_length,
        k1=model.k1,
        b=model.b,
    )


def _score_term_indri(op: Score) -> float:
    return op._indri(op.iop.posting().tf, op.iop.doc())


def _matching_scores(op: QrySop) -> list[float]:
    """Children's scores for the current document; non-matching children score 0."""
    docid = op.doc()
    return [arg.get_score() if op.child_matches(arg, docid) else 0.0 for arg in op.args]


def _score_min(op: QrySop) -> float:
    return min(_matching_scores(op))


def _score_max(op: QrySop) -> float:
    return max(_matching_scores(op))


def _score_sum(op: QrySop) -> float:
    return sum(_matching_scores(op))


def _score_geometric_mean(op: QrySop) -> float:
    weights = op.weights if isinstance(op, Wand) else [1.0] * len(op.args)
    total = sum(weights)
    docid = op.doc()
    score = 1.0
    for arg, weight in zip(op.args, weights):
        if op.child_matches(arg, docid):
            child_score = arg.get_score()
        else:
            child_score = arg.default_score(docid)
        score *= child_score ** (weight / total)
    return score


SCORE_STRATEGIES: dict[tuple[OperatorKind, ModelKind], Callable[[QrySop], float]] = {
    (OperatorKind.SCORE, ModelKind.UNRANKED_BOOLEAN): _score_matched,
    (OperatorKind.SCORE, ModelKind.RANKED_BOOLEAN): _score_term_frequency,
    (OperatorKind.SCORE, ModelKind.BM25): _score_term_bm25,
    (OperatorKind.SCORE, ModelKind.INDRI): _score_term_indri,
    (OperatorKind.AND, ModelKind.UNRANKED_BOOLEAN): _score_matched,
    (OperatorKind.AND, ModelKind.RANKED_BOOLEAN): _score_min,
    (OperatorKind.AND, ModelKind.INDRI): _score_geometric_mean,
    (OperatorKind.OR, ModelKind.UNRANKED_BOOLEAN): _score_matched,
    (OperatorKind.OR, ModelKind.RANKED_BOOLEAN): _score_max,
    (OperatorKind.SUM, ModelKind.BM25): _score_sum,
    (OperatorKind.WAND, ModelKind.INDRI): _score_geometric_mean,
}

SUPPORTED_COMBINATIONS = frozenset(SCORE_STRATEGIES)


def is_supported(operator: OperatorKind, model: ModelKind) -> bool:
    return (operator, model) in SUPPORTED_COMBINATIONS

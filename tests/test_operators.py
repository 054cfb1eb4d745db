import math

import pytest

from conftest import positional_index
from qryeval.engine import QueryEvaluator
from qryeval.errors import QuerySyntaxError, UnsupportedCombinatorError
from qryeval.index import InMemoryIndex
from qryeval.operators import (
    MatchRule,
    Near,
    OperatorKind,
    Term,
    Window,
    is_supported,
    match_rule,
)
from qryeval.parser import parse_query
from qryeval.retrieval_models import (
    BM25,
    Indri,
    ModelKind,
    RankedBoolean,
    UnrankedBoolean,
    bm25_term_score,
    indri_term_score,
)


def _postings(op):
    return [(p.docid, p.positions) for p in op.inverted_list]


# =============================================================================
# Proximity
# =============================================================================


def test_near_requires_order_and_gap():
    index = positional_index(
        ["x"] * 5 + ["a", "b"],
        ["x"] * 5 + ["a", "x", "x", "b"],
        ["b", "a"],
    )
    near = Near([Term("a"), Term("b")], 1)
    near.initialize(UnrankedBoolean(), index)
    assert _postings(near) == [(0, (6,))]


def test_near_wider_distance():
    index = positional_index(["a", "x", "x", "b", "a", "b"])
    near = Near([Term("a"), Term("b")], 3)
    near.initialize(UnrankedBoolean(), index)
    # a@0..b@3, then a@4..b@5
    assert _postings(near) == [(0, (3, 5))]


def test_near_retries_after_gap_failure():
    index = positional_index(["a", "x", "x", "a", "b"])
    near = Near([Term("a"), Term("b")], 1)
    near.initialize(UnrankedBoolean(), index)
    # a@0 is too far from b@4; a@3 matches
    assert _postings(near) == [(0, (4,))]


def test_near_three_terms():
    index = positional_index(["a", "b", "c"], ["a", "c", "b"])
    near = Near([Term("a"), Term("b"), Term("c")], 1)
    near.initialize(UnrankedBoolean(), index)
    assert _postings(near) == [(0, (2,))]


def test_window_span():
    index = positional_index(
        ["x"] * 5 + ["a", "b", "c"],
        ["x"] * 5 + ["a", "b", "x", "x", "c"],
        ["c", "b", "a"],
    )
    window = Window([Term("a"), Term("b"), Term("c")], 3)
    window.initialize(UnrankedBoolean(), index)
    assert _postings(window) == [(0, (7,)), (2, (2,))]


def test_window_slides_minimum_cursor():
    index = positional_index(["x"] * 5 + ["a", "b", "x", "x", "c", "a", "b"])
    window = Window([Term("a"), Term("b"), Term("c")], 3)
    window.initialize(UnrankedBoolean(), index)
    # a5 b6 c9 spans too far; a10 b11 c9 fits
    assert _postings(window) == [(0, (11,))]


def test_window_boundary_is_exclusive():
    index = positional_index(["a", "x", "x", "b"])
    window = Window([Term("a"), Term("b")], 3)
    window.initialize(UnrankedBoolean(), index)
    assert _postings(window) == []


def test_proximity_rejects_mixed_fields():
    with pytest.raises(QuerySyntaxError):
        Near([Term("a", "title"), Term("b", "body")], 1)


def test_proximity_rejects_negative_distance():
    with pytest.raises(QuerySyntaxError):
        Window([Term("a")], -1)


# =============================================================================
# Match rules
# =============================================================================


@pytest.mark.parametrize(
    "operator, model, expected",
    [
        (OperatorKind.SCORE, ModelKind.BM25, MatchRule.FIRST),
        (OperatorKind.AND, ModelKind.RANKED_BOOLEAN, MatchRule.ALL),
        (OperatorKind.AND, ModelKind.INDRI, MatchRule.MIN),
        (OperatorKind.WAND, ModelKind.INDRI, MatchRule.MIN),
        (OperatorKind.OR, ModelKind.UNRANKED_BOOLEAN, MatchRule.MIN),
        (OperatorKind.SUM, ModelKind.BM25, MatchRule.MIN),
    ],
)
def test_match_rule(operator, model, expected):
    assert match_rule(operator, model) is expected


def test_supported_combinations():
    assert is_supported(OperatorKind.SUM, ModelKind.BM25)
    assert not is_supported(OperatorKind.SUM, ModelKind.INDRI)
    assert not is_supported(OperatorKind.AND, ModelKind.BM25)
    assert not is_supported(OperatorKind.OR, ModelKind.INDRI)


# =============================================================================
# Boolean models
# =============================================================================


def test_and_is_intersection(index):
    ranking = QueryEvaluator(index, UnrankedBoolean()).evaluate("#and( apple cherry )")
    assert ranking.as_dict() == {2: 1.0}


def test_or_is_union(index):
    ranking = QueryEvaluator(index, UnrankedBoolean()).evaluate("apple cherry")
    assert ranking.as_dict() == {0: 1.0, 1: 1.0, 2: 1.0}


def test_ranked_boolean_or_takes_max(index):
    ranking = QueryEvaluator(index, RankedBoolean()).rank("apple cherry")
    assert ranking.docids() == [0, 1, 2]
    assert ranking.as_dict() == {0: 2.0, 1: 1.0, 2: 1.0}


def test_ranked_boolean_and_takes_min(index):
    ranking = QueryEvaluator(index, RankedBoolean()).evaluate("#and( apple banana )")
    assert ranking.as_dict() == {0: 1.0}


# =============================================================================
# BM25 and Indri
# =============================================================================


def test_bm25_sum(index):
    ranking = QueryEvaluator(index, BM25()).rank("apple banana")
    assert ranking.docids() == [0, 1, 2]
    expected = bm25_term_score(1, 2, 6, 2, 16 / 6, 1.2, 0.75)
    assert ranking.as_dict()[1] == pytest.approx(expected)


def test_bm25_near_inside_sum(index):
    ranking = QueryEvaluator(index, BM25()).evaluate("#near/1( apple banana )")
    assert ranking.docids() == [0]
    assert ranking.score(0) > 0


def test_indri_and_uses_default_scores(index):
    model = Indri()
    ranking = QueryEvaluator(index, model).evaluate("apple fig")
    scores = ranking.as_dict()
    assert sorted(scores) == [0, 2, 3, 4, 5]

    # d3 has fig but not apple
    apple = indri_term_score(0, 3, 3, 16, model.mu, model.lambda_)
    fig = indri_term_score(1, 3, 3, 16, model.mu, model.lambda_)
    assert scores[3] == pytest.approx(math.sqrt(apple * fig))


def test_indri_unknown_term_is_smoothed(index):
    ranking = QueryEvaluator(index, Indri()).evaluate("apple zzyzx")
    assert sorted(ranking.as_dict()) == [0, 2]
    assert all(score > 0 for score in ranking.as_dict().values())


def test_indri_empty_field_without_dirichlet_prior():
    index = InMemoryIndex.from_texts([{"body": "apple", "title": "apple"}, {"body": "fig"}])
    scores = QueryEvaluator(index, Indri(mu=0.0, lambda_=0.4)).evaluate("#and( apple.title fig )").as_dict()
    assert sorted(scores) == [0, 1]
    # d1 has no title: apple.title scores P(t|C) = 1, fig scores 0.6 * 1 + 0.4 * 0.5
    assert scores[1] == pytest.approx(math.sqrt(1.0 * 0.8))


def test_wand_with_equal_weights_matches_and(index):
    evaluator = QueryEvaluator(index, Indri())
    wand = evaluator.evaluate("#wand( 2 apple 2 fig )").as_dict()
    and_ = evaluator.evaluate("#and( apple fig )").as_dict()
    assert wand.keys() == and_.keys()
    for docid, score in and_.items():
        assert wand[docid] == pytest.approx(score)


def test_wand_weights_shift_ranking(index):
    evaluator = QueryEvaluator(index, Indri())
    apple_heavy = evaluator.rank("#wand( 9 apple 1 fig )")
    fig_heavy = evaluator.rank("#wand( 1 apple 9 fig )")
    assert apple_heavy.docid(0) in (0, 2)
    assert fig_heavy.docid(0) in (3, 4, 5)


# =============================================================================
# Unsupported combinations
# =============================================================================


def test_unsupported_combination_is_raised_when_scoring(index):
    root = parse_query("#and( apple banana )")
    root.initialize(BM25(), index)
    assert root.has_match()
    with pytest.raises(UnsupportedCombinatorError, match="BM25 doesn't support the #AND operator"):
        root.get_score()


def test_unsupported_combination_through_evaluator(index):
    with pytest.raises(UnsupportedCombinatorError):
        QueryEvaluator(index, Indri()).evaluate("#or( apple )")
    with pytest.raises(UnsupportedCombinatorError):
        QueryEvaluator(index, Indri()).evaluate("#sum( apple )")
